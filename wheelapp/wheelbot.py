#!/usr/bin/env python3
from dataclasses import dataclass
from typing import Optional, Sequence, TYPE_CHECKING

from telegram import (
    BotCommand,
    BotCommandScopeAllChatAdministrators,
    BotCommandScopeAllGroupChats,
    BotCommandScopeAllPrivateChats,
)
from telegram.error import TelegramError
from telegram.ext import ApplicationBuilder, ContextTypes

from wheelapp.background_jobs import TimeoutSweepJob
from wheelapp.config import Config
from wheelapp.match_manager import MatchManager
from wheelapp.translations import TranslationService
from wheelapp.utils.logging_helpers import ContextLoggerAdapter, add_context
from wheelapp.wheelbotcontrol import WheelBotController
from wheelapp.wheelbotmodel import WheelBotModel
from wheelapp.wheelbotview import WheelBotViewer
from wheelapp.words import WordBank


if TYPE_CHECKING:
    from telegram.ext import Application


ALLOWED_UPDATES: Sequence[str] = ("message", "callback_query")


@dataclass(frozen=True)
class WebhookSettings:
    secret_token: Optional[str]
    allowed_updates: Optional[Sequence[str]]
    drop_pending_updates: bool = True


class WheelBot:
    """Telegram bot wrapper using PTB v20 async Application.

    ``main.py`` injects the logger, the match store, translations and the
    word bank. ``WheelBot`` wires the viewer, the model and the controller
    around the shared ``Application`` and owns the timeout sweep lifecycle.
    """

    def __init__(
        self,
        token: str,
        cfg: Config,
        *,
        logger: ContextLoggerAdapter,
        match_manager: MatchManager,
        translations: TranslationService,
        word_bank: WordBank,
    ):
        self._cfg = cfg
        self._token = token
        self._logger = add_context(logger)
        self._webhook_settings = WebhookSettings(
            secret_token=cfg.WEBHOOK_SECRET or None,
            allowed_updates=list(ALLOWED_UPDATES),
            drop_pending_updates=True,
        )
        self._match_manager = match_manager
        self._translations = translations
        self._word_bank = word_bank

        self._application: Optional["Application"] = None
        self._view: Optional[WheelBotViewer] = None
        self._model: Optional[WheelBotModel] = None
        self._controller: Optional[WheelBotController] = None
        self._sweep_job: Optional[TimeoutSweepJob] = None
        self._build_application()

    @property
    def application(self) -> Optional["Application"]:
        return self._application

    @property
    def model(self) -> Optional[WheelBotModel]:
        return self._model

    @property
    def sweep_job(self) -> Optional[TimeoutSweepJob]:
        return self._sweep_job

    def run(self) -> None:
        """Start the bot using the webhook listener."""
        try:
            self.run_webhook()
        except (TelegramError, OSError) as exc:
            if not self._handle_webhook_start_failure(exc):
                raise

    def run_webhook(self) -> None:
        """Start the bot using webhook delivery."""
        if self._application is None:
            self._build_application()
        self._logger.info(
            "Starting webhook listener on %s:%s%s targeting %s",
            self._cfg.WEBHOOK_LISTEN,
            self._cfg.WEBHOOK_PORT,
            self._cfg.WEBHOOK_PATH,
            self._cfg.WEBHOOK_PUBLIC_URL,
        )
        settings = self._webhook_settings
        try:
            self._application.run_webhook(
                listen=self._cfg.WEBHOOK_LISTEN,
                port=self._cfg.WEBHOOK_PORT,
                url_path=self._cfg.WEBHOOK_PATH,
                webhook_url=self._cfg.WEBHOOK_PUBLIC_URL,
                secret_token=settings.secret_token,
                allowed_updates=settings.allowed_updates,
                drop_pending_updates=settings.drop_pending_updates,
            )
        except Exception:
            self._logger.exception("Webhook run terminated due to an error.")
            raise
        finally:
            self._logger.info("Webhook listener stopped.")

    def run_polling(self) -> None:
        """Start the bot using long polling."""
        if self._application is None:
            self._build_application()
        self._logger.info(
            "Starting polling mode for development; webhook configuration will be ignored."
        )
        try:
            self._application.run_polling(
                allowed_updates=self._webhook_settings.allowed_updates,
                drop_pending_updates=self._webhook_settings.drop_pending_updates,
            )
        except Exception:
            self._logger.exception("Polling run terminated due to an error.")
            raise
        finally:
            self._logger.info("Polling stopped.")

    def _handle_webhook_start_failure(self, exc: Exception) -> bool:
        """Fall back to polling when allowed; ``False`` means re-raise."""

        if not getattr(self._cfg, "ALLOW_POLLING_FALLBACK", False):
            return False

        self._logger.error(
            "Webhook startup failed; falling back to polling mode because "
            "ALLOW_POLLING_FALLBACK is enabled. Error: %s",
            exc,
        )
        self._build_application()
        self.run_polling()
        return True

    def _build_application(self) -> None:
        builder = (
            ApplicationBuilder()
            .token(self._token)
            .post_init(self._on_application_post_init)
            .post_shutdown(self._on_application_post_shutdown)
            .post_stop(self._cleanup_webhook)
        )
        self._application = builder.build()
        self._application.add_error_handler(self._handle_error)

        settings = self._cfg.GAME
        self._view = WheelBotViewer(bot=self._application.bot)
        self._model = WheelBotModel(
            self._match_manager,
            self._view,
            self._word_bank,
            settings,
            self._translations,
        )
        self._controller = WheelBotController(
            self._model,
            self._view,
            self._application,
            self._translations,
            help_kwargs={
                "default_limit": settings.default_win_limit,
                "points_letter": settings.points_letter,
                "points_solve": settings.points_solve,
            },
        )
        self._sweep_job = TimeoutSweepJob(
            self._model,
            interval_seconds=settings.sweep_interval_seconds,
            logger=self._logger.getChild("sweep"),
        )

    def _command(self, name: str) -> BotCommand:
        return BotCommand(name, self._translations.get(f"commands.{name}"))

    async def _register_commands(self, application: "Application") -> None:
        scopes = (
            (BotCommandScopeAllPrivateChats(), ("start", "help")),
            (BotCommandScopeAllGroupChats(), ("help",)),
            (
                BotCommandScopeAllChatAdministrators(),
                ("start_game", "end_game", "help"),
            ),
        )
        for scope, names in scopes:
            try:
                await application.bot.set_my_commands(
                    [self._command(name) for name in names], scope=scope
                )
            except TelegramError:
                self._logger.warning(
                    "Failed to register bot commands for scope %s",
                    type(scope).__name__,
                    exc_info=True,
                )

    async def _on_application_post_init(self, application: "Application") -> None:
        await self._register_commands(application)
        if self._sweep_job is None:
            self._logger.warning(
                "Timeout sweep job missing during post_init; stale turns rely on player actions."
            )
            return
        await self._sweep_job.start()

    async def _on_application_post_shutdown(self, application: "Application") -> None:
        if self._sweep_job is None:
            return
        try:
            await self._sweep_job.stop()
        except Exception:
            self._logger.exception("Failed to stop the timeout sweep job")

    async def _cleanup_webhook(self, application: "Application") -> None:
        drop_updates = bool(self._webhook_settings.drop_pending_updates)
        self._logger.info("Removing webhook; drop_pending_updates=%s", drop_updates)
        try:
            await application.bot.delete_webhook(drop_pending_updates=drop_updates)
        except Exception:
            self._logger.exception("Failed to delete webhook during shutdown.")

    async def _handle_error(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        error = getattr(context, "error", None)
        if isinstance(error, BaseException):
            self._logger.error(
                "Error while processing update %s", getattr(update, "update_id", update),
                exc_info=error,
            )
        else:
            self._logger.error(
                "Error while processing update %s with payload %s",
                getattr(update, "update_id", update),
                error,
            )
