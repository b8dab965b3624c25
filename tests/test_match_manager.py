import json

import fakeredis
import fakeredis.aioredis
import pytest

from wheelapp.entities import InvariantViolation
from wheelapp.match_manager import MatchManager
from wheelapp.state_validator import ValidationIssue
from wheelapp.transitions import (
    add_player,
    add_points,
    advance_turn,
    create_match,
    increment_timeout,
    open_solve_attempt,
    reveal_letter,
    start_play,
    with_board_ref,
)


CHAT = -500


def _match():
    state = create_match("שלום", "ברכות", 99, 10)
    return add_player(state, 1, "דני")


def _match_in_play():
    state = create_match("תל אביב", "ערים", 1, 12)
    for user_id, name in ((1, "דני"), (2, "רותי"), (3, "יוסי")):
        state = add_player(state, user_id, name)
    state = start_play(state, 100.5)
    state = add_points(add_points(state, 1, 3), 2, 5)
    state = increment_timeout(increment_timeout(state, 3), 2)
    state = reveal_letter(reveal_letter(state, "ב"), "ל")
    state = with_board_ref(advance_turn(state), 4242)
    return state


@pytest.fixture
def manager():
    server = fakeredis.FakeServer()
    redis_async = fakeredis.aioredis.FakeRedis(server=server)
    return MatchManager(redis_async, key_prefix="test:", ttl_seconds=600)


@pytest.mark.asyncio
async def test_load_missing_match_returns_none(manager):
    assert await manager.load_match(CHAT) is None
    assert await manager.load_match_with_version(CHAT) == (None, 0)
    assert not await manager.match_exists(CHAT)


@pytest.mark.asyncio
async def test_create_and_load_match(manager):
    assert await manager.create_match(CHAT, _match())

    loaded, version = await manager.load_match_with_version(CHAT)

    assert loaded == _match()
    assert version == 1
    assert await manager.match_exists(CHAT)


@pytest.mark.asyncio
async def test_match_in_play_survives_save_and_load(manager):
    state = _match_in_play()
    await manager.create_match(CHAT, state)
    _, version = await manager.load_match_with_version(CHAT)

    solving = open_solve_attempt(state, 2, 777, 130.25)
    assert await manager.save_match_with_version_check(CHAT, solving, version)

    loaded, _ = await manager.load_match_with_version(CHAT)
    assert loaded == solving
    assert loaded.solve_attempt.prompt_message_ref == 777
    assert loaded.board_message_ref == 4242
    assert loaded.players_data[2].score == 5
    assert loaded.players_data[2].timeout_count == 1
    assert loaded.revealed_letters == frozenset({"ב", "ל"})


@pytest.mark.asyncio
async def test_awaiting_turn_survives_save_and_load(manager):
    state = _match_in_play()
    await manager.save_match(CHAT, state)

    loaded = await manager.load_match(CHAT)

    assert loaded == state
    assert loaded.turn_deadline_at == 100.5
    assert loaded.current_player_id == 2


@pytest.mark.asyncio
async def test_create_refuses_existing_match(manager):
    assert await manager.create_match(CHAT, _match())

    assert not await manager.create_match(CHAT, create_match("חיפה", "ערים", 5, 3))
    loaded = await manager.load_match(CHAT)
    assert loaded.word == "שלום"


@pytest.mark.asyncio
async def test_persisted_payload_uses_flat_layout(manager):
    state = open_solve_attempt(start_play(_match(), 10.0), 1, 321, 12.0)
    await manager.create_match(CHAT, state)

    raw = await manager._redis.get("test:game:-500")
    payload = json.loads(raw)

    assert payload["word"] == "שלום"
    assert payload["playerOrder"] == [1]
    assert payload["playersData"]["1"] == {"displayName": "דני", "score": 0, "timeoutCount": 0}
    assert payload["status"] == "playing"
    assert payload["solveAttempt"] == {"solverId": 1, "promptMessageRef": 321, "deadlineAt": 12.0}
    assert "turnDeadlineAt" not in payload


@pytest.mark.asyncio
async def test_keys_carry_ttl(manager):
    await manager.create_match(CHAT, _match())

    assert 0 < await manager._redis.ttl("test:game:-500") <= 600
    assert 0 < await manager._redis.ttl("test:version:-500") <= 600


@pytest.mark.asyncio
async def test_version_checked_save(manager):
    await manager.create_match(CHAT, _match())
    state, version = await manager.load_match_with_version(CHAT)

    updated = add_player(state, 2, "רותי")
    assert await manager.save_match_with_version_check(CHAT, updated, version)

    stale = add_player(state, 3, "יוסי")
    assert not await manager.save_match_with_version_check(CHAT, stale, version)

    loaded, new_version = await manager.load_match_with_version(CHAT)
    assert loaded.player_order == (1, 2)
    assert new_version == version + 1


@pytest.mark.asyncio
async def test_unconditional_save_bumps_version(manager):
    await manager.create_match(CHAT, _match())
    _, version = await manager.load_match_with_version(CHAT)

    await manager.save_match(CHAT, add_player(_match(), 2, "רותי"))

    _, new_version = await manager.load_match_with_version(CHAT)
    assert new_version == version + 1


@pytest.mark.asyncio
async def test_delete_keeps_version_monotonic(manager):
    await manager.create_match(CHAT, _match())
    _, old_version = await manager.load_match_with_version(CHAT)

    await manager.delete_match(CHAT)
    assert await manager.load_match(CHAT) is None

    await manager.create_match(CHAT, _match())
    recreated = add_player(_match(), 2, "רותי")
    assert not await manager.save_match_with_version_check(CHAT, recreated, old_version)


@pytest.mark.asyncio
async def test_version_checked_delete(manager):
    await manager.create_match(CHAT, _match())
    state, version = await manager.load_match_with_version(CHAT)
    await manager.save_match_with_version_check(CHAT, add_player(state, 2, "רותי"), version)

    assert not await manager.delete_match_with_version_check(CHAT, version)
    assert await manager.match_exists(CHAT)

    assert await manager.delete_match_with_version_check(CHAT, version + 1)
    assert not await manager.match_exists(CHAT)


@pytest.mark.asyncio
async def test_corrupted_payload_raises_invariant_violation(manager):
    await manager._redis.set("test:game:-500", "{not json")

    with pytest.raises(InvariantViolation) as excinfo:
        await manager.load_match(CHAT)

    assert excinfo.value.issues == [ValidationIssue.CORRUPTED_PAYLOAD]


@pytest.mark.asyncio
async def test_invalid_state_raises_invariant_violation(manager):
    payload = _match().to_payload()
    payload["turnIndex"] = 5
    await manager._redis.set("test:game:-500", json.dumps(payload))

    with pytest.raises(InvariantViolation) as excinfo:
        await manager.load_match_with_version(CHAT)

    assert ValidationIssue.TURN_INDEX_OUT_OF_RANGE in excinfo.value.issues


@pytest.mark.asyncio
async def test_end_of_life_delete_works_on_corrupted_state(manager):
    await manager._redis.set("test:game:-500", "garbage")

    await manager.delete_match(CHAT)

    assert not await manager.match_exists(CHAT)


@pytest.mark.asyncio
async def test_list_session_ids(manager):
    await manager.create_match(10, _match())
    await manager.create_match(-20, _match())
    await manager._redis.set("test:game:oops", "x")
    await manager._redis.set("other:game:30", "x")

    assert await manager.list_session_ids() == [-20, 10]
