import logging
import os
from copy import deepcopy
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import yaml


logger = logging.getLogger(__name__)


_BASE_DIR = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG_DIR = _BASE_DIR / "config"
_DEFAULT_GAME_CONSTANTS_PATH = _DEFAULT_CONFIG_DIR / "game_constants.yaml"

_DEFAULT_GAME_CONSTANTS_DATA: Dict[str, Any] = {
    "game": {
        "default_win_limit": 10,
        "max_win_limit": 100,
        "points_letter": 1,
        "points_solve": 2,
        "turn_timeout_seconds": 30,
        "solve_timeout_seconds": 30,
        "max_timeouts": 3,
    },
    "redis": {
        "key_prefix": "wheel:",
        "state_ttl_seconds": 86400,
    },
    "sweep": {
        "interval_seconds": 30,
    },
}

DEFAULT_WEBHOOK_LISTEN = "127.0.0.1"
DEFAULT_WEBHOOK_PORT = 3000
DEFAULT_WEBHOOK_PATH = "/telegram/webhook-wheel"


def _resolve_config_path(candidate: Optional[str], default: Path) -> Path:
    if not candidate:
        return default
    path = Path(candidate)
    if not path.is_absolute():
        path = _BASE_DIR / path
    return path


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and isinstance(base.get(key), dict)
        ):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


class GameConstants:
    def __init__(
        self,
        path: Optional[str] = None,
        *,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> None:
        resolved_path = _resolve_config_path(
            path or os.getenv("WHEELBOT_GAME_CONSTANTS_FILE"),
            _DEFAULT_GAME_CONSTANTS_PATH,
        )
        self._path: Path = resolved_path
        self._defaults: Dict[str, Any] = deepcopy(defaults or _DEFAULT_GAME_CONSTANTS_DATA)
        self._data: Dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        raw_data: Dict[str, Any] = {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
                if not isinstance(loaded, dict):
                    logger.warning(
                        "Game constants file did not contain a mapping; using defaults.",
                        extra={
                            "category": "config",
                            "config_path": str(self._path),
                            "stage": "game_constants_load",
                            "error_type": "InvalidMapping",
                        },
                    )
                else:
                    raw_data = loaded
        except FileNotFoundError:
            logger.warning(
                "Game constants file not found; using default values.",
                extra={
                    "category": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": "FileNotFoundError",
                },
            )
        except yaml.YAMLError as exc:
            logger.warning(
                "Failed to parse game constants file; using defaults.",
                extra={
                    "category": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )

        merged = deepcopy(self._defaults)
        if raw_data:
            merged = _deep_merge(merged, raw_data)
        self._data = merged

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        return deepcopy(value)

    def section(self, key: str) -> Dict[str, Any]:
        section = self._data.get(key, {})
        if isinstance(section, dict):
            return deepcopy(section)
        return {}

    @property
    def game(self) -> Dict[str, Any]:
        return self.section("game")

    @property
    def redis(self) -> Dict[str, Any]:
        return self.section("redis")

    @property
    def sweep(self) -> Dict[str, Any]:
        return self.section("sweep")


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class GameSettings:
    """Game rules and timing shared by the orchestrator and the arbiter."""

    default_win_limit: int = 10
    max_win_limit: int = 100
    points_letter: int = 1
    points_solve: int = 2
    turn_timeout_seconds: float = 30.0
    solve_timeout_seconds: float = 30.0
    max_timeouts: int = 3
    state_ttl_seconds: int = 86400
    sweep_interval_seconds: float = 30.0
    key_prefix: str = "wheel:"

    @classmethod
    def from_constants(cls, constants: GameConstants) -> "GameSettings":
        game = constants.game
        redis_section = constants.redis
        sweep = constants.sweep
        defaults = cls()
        return cls(
            default_win_limit=_coerce_int(game.get("default_win_limit"), defaults.default_win_limit),
            max_win_limit=_coerce_int(game.get("max_win_limit"), defaults.max_win_limit),
            points_letter=_coerce_int(game.get("points_letter"), defaults.points_letter),
            points_solve=_coerce_int(game.get("points_solve"), defaults.points_solve),
            turn_timeout_seconds=float(
                game.get("turn_timeout_seconds", defaults.turn_timeout_seconds)
            ),
            solve_timeout_seconds=float(
                game.get("solve_timeout_seconds", defaults.solve_timeout_seconds)
            ),
            max_timeouts=max(1, _coerce_int(game.get("max_timeouts"), defaults.max_timeouts)),
            state_ttl_seconds=_coerce_int(
                redis_section.get("state_ttl_seconds"), defaults.state_ttl_seconds
            ),
            sweep_interval_seconds=float(
                sweep.get("interval_seconds", defaults.sweep_interval_seconds)
            ),
            key_prefix=str(redis_section.get("key_prefix") or defaults.key_prefix),
        )


GAME_CONSTANTS = GameConstants()


def get_game_constants() -> GameConstants:
    return GAME_CONSTANTS


class Config:
    def __init__(self):
        self.constants: GameConstants = GAME_CONSTANTS
        self.REDIS_HOST: str = os.getenv(
            "WHEELBOT_REDIS_HOST",
            default="localhost",
        )
        self.REDIS_PORT: int = self._parse_int_env(
            os.getenv("WHEELBOT_REDIS_PORT"),
            default=6379,
            env_var="WHEELBOT_REDIS_PORT",
        )
        self.REDIS_PASS: str = os.getenv(
            "WHEELBOT_REDIS_PASS",
            default="",
        )
        self.REDIS_DB: int = self._parse_int_env(
            os.getenv("WHEELBOT_REDIS_DB"),
            default=3,
            env_var="WHEELBOT_REDIS_DB",
        )
        self.REDIS_MAX_RETRIES: int = max(
            self._parse_int_env(
                os.getenv("WHEELBOT_REDIS_MAX_RETRIES"),
                default=0,
                env_var="WHEELBOT_REDIS_MAX_RETRIES",
            ),
            0,
        )
        self.REDIS_TIMEOUT_SECONDS: float = (
            self._parse_positive_float(
                os.getenv("WHEELBOT_REDIS_TIMEOUT_SECONDS"),
                env_var="WHEELBOT_REDIS_TIMEOUT_SECONDS",
            )
            or 5.0
        )
        self.TOKEN: str = os.getenv(
            "WHEELBOT_TOKEN",
            default="",
        )
        self.DEBUG: bool = bool(
            os.getenv("WHEELBOT_DEBUG", default="0") == "1"
        )
        allow_polling_raw = os.getenv("WHEELBOT_ALLOW_POLLING_FALLBACK")
        self.ALLOW_POLLING_FALLBACK: bool = (
            allow_polling_raw is not None
            and allow_polling_raw.strip().lower() in {"1", "true", "yes", "on"}
        )
        self.WEBHOOK_LISTEN: str = (
            os.getenv("WHEELBOT_WEBHOOK_LISTEN", DEFAULT_WEBHOOK_LISTEN).strip()
            or DEFAULT_WEBHOOK_LISTEN
        )
        self.WEBHOOK_PORT: int = self._parse_int_env(
            os.getenv("WHEELBOT_WEBHOOK_PORT"),
            default=DEFAULT_WEBHOOK_PORT,
            env_var="WHEELBOT_WEBHOOK_PORT",
        )
        webhook_path_env = os.getenv("WHEELBOT_WEBHOOK_PATH")
        raw_webhook_path = (
            webhook_path_env.strip()
            if webhook_path_env is not None
            else DEFAULT_WEBHOOK_PATH
        )
        self.WEBHOOK_PATH: str = self._normalize_webhook_path(raw_webhook_path)
        raw_webhook_domain = os.getenv("WHEELBOT_WEBHOOK_DOMAIN", "")
        self.WEBHOOK_DOMAIN: str = self._normalize_webhook_domain(raw_webhook_domain)
        self.WEBHOOK_PUBLIC_URL: str = self._build_public_url(
            explicit_public_url=os.getenv("WHEELBOT_WEBHOOK_PUBLIC_URL", default=""),
        )
        self.WEBHOOK_SECRET: str = os.getenv(
            "WHEELBOT_WEBHOOK_SECRET",
            default="",
        )

        settings = GameSettings.from_constants(self.constants)
        sweep_override = self._parse_positive_float(
            os.getenv("WHEELBOT_SWEEP_INTERVAL_SECONDS"),
            env_var="WHEELBOT_SWEEP_INTERVAL_SECONDS",
        )
        if sweep_override is not None:
            settings = replace(settings, sweep_interval_seconds=sweep_override)
        self.GAME: GameSettings = settings

    @staticmethod
    def _normalize_webhook_path(path: str) -> str:
        normalized_path = path.strip()
        if not normalized_path:
            return ""
        if not normalized_path.startswith("/"):
            normalized_path = f"/{normalized_path}"
        return normalized_path

    @staticmethod
    def _normalize_webhook_domain(domain: str) -> str:
        normalized_domain = domain.strip()
        if not normalized_domain:
            return ""
        if not normalized_domain.startswith(("http://", "https://")):
            logger.debug(
                "WHEELBOT_WEBHOOK_DOMAIN missing scheme; defaulting to https://%s",
                normalized_domain,
            )
            normalized_domain = f"https://{normalized_domain}"
        return normalized_domain.rstrip("/")

    def _build_public_url(self, explicit_public_url: str) -> str:
        explicit_public_url = explicit_public_url.strip()
        if explicit_public_url:
            return explicit_public_url

        if self.WEBHOOK_DOMAIN and self.WEBHOOK_PATH:
            return urljoin(
                f"{self.WEBHOOK_DOMAIN.rstrip('/')}/",
                self.WEBHOOK_PATH.lstrip("/"),
            )

        return ""

    @staticmethod
    def _parse_int_env(
        raw_value: Optional[str], *, default: int, env_var: str
    ) -> int:
        if raw_value is None:
            return default
        raw_value = raw_value.strip()
        if not raw_value:
            return default
        try:
            return int(raw_value)
        except ValueError:
            logger.warning(
                "Invalid integer value '%s' for %s; falling back to default %s.",
                raw_value,
                env_var,
                default,
            )
            return default

    @staticmethod
    def _parse_positive_float(
        raw_value: Optional[str], *, env_var: str
    ) -> Optional[float]:
        if not raw_value:
            return None
        try:
            value = float(raw_value)
        except ValueError:
            logger.warning(
                "Invalid float value '%s' for %s; ignoring it.",
                raw_value,
                env_var,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                env_var,
                raw_value,
            )
            return None
        return value
