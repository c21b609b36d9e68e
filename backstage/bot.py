"""Chat bot composition for backstage.

Wires the database, one registry per entity kind, the handler
registry and the detached-task tracker together, and exposes the
single entry point a chat transport needs: handle_message().

Key classes:
    ChatBot: Owns every subsystem and the message pipeline.
"""

from typing import Callable, Optional

import structlog

from .commands.base import BotContext, HandlerRegistry
from .commands.entity import (
    BadWordHandlers,
    CommandHandlers,
    CounterHandlers,
    make_invoke_fallback,
)
from .config import Config, get_config
from .db import Database, EntityStore
from .registry import BAD_WORDS, COMMANDS, COUNTERS, Registry
from .tasks import BackgroundTasks

logger = structlog.get_logger("backstage.bot")


class ChatBot:
    """Chat bot backed by cached entity registries.

    Initialized in two phases: __init__ for sync setup and start() for
    the async work (opening the database, warm-starting registries).

    Args:
        config: Config instance, defaults to the global one.
        is_moderator: Authorization collaborator; defaults to
            Config.is_moderator.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        is_moderator: Optional[Callable[[str, str], bool]] = None,
    ):
        self.config = config or get_config()
        self.is_moderator = is_moderator or self.config.is_moderator
        self.database = Database(self.config.database_path)
        self.tasks = BackgroundTasks()
        self.running = False

        self.commands: Optional[Registry] = None
        self.counters: Optional[Registry] = None
        self.bad_words: Optional[Registry] = None
        self.router: Optional[HandlerRegistry] = None

    async def start(self):
        """Open storage, load every registry and register handlers.

        Raises:
            StorageError: The database cannot be opened.
            LoadError: A registry failed to warm-start.
        """
        await self.database.initialize()

        self.commands = await Registry.load(EntityStore(self.database, COMMANDS.table), COMMANDS)
        self.counters = await Registry.load(EntityStore(self.database, COUNTERS.table), COUNTERS)
        self.bad_words = await Registry.load(
            EntityStore(self.database, BAD_WORDS.table), BAD_WORDS
        )

        bot_context = BotContext(
            config=self.config,
            commands=self.commands,
            counters=self.counters,
            bad_words=self.bad_words,
            tasks=self.tasks,
        )

        self.router = HandlerRegistry(
            is_moderator=self.is_moderator,
            prefix=self.config.command_prefix,
            scope_enabled=self.config.feature_enabled,
        )
        self.router.register(CommandHandlers(bot_context))
        self.router.register(CounterHandlers(bot_context))
        self.router.register(BadWordHandlers(bot_context))
        self.router.set_fallback(make_invoke_fallback(bot_context))

        self.running = True
        logger.info("bot_started", commands=sorted(self.router.command_names))

    async def handle_message(self, channel: str, caller: str, text: str) -> Optional[str]:
        """Process one inbound chat message.

        Returns:
            The response to send back to the channel, or None.
        """
        if not self.running:
            logger.warning("message_before_start", channel=channel)
            return None

        logger.debug("message_received", channel=channel, length=len(text))
        response = await self.router.dispatch(channel, caller, text)
        if response is not None:
            logger.debug("message_answered", channel=channel, length=len(response))
        return response

    async def stop(self):
        """Drain in-flight usage increments, then close the database."""
        if not self.running:
            return
        self.running = False
        await self.tasks.drain(timeout=self.config.shutdown_timeout)
        await self.database.close()
        logger.info("bot_stopped")
