"""Base classes for the command handler framework.

Defines the abstractions for registering and dispatching chat
commands. Feature modules group their handlers into classes that
extend BaseCommandHandler, then register them with a HandlerRegistry
that maps command words to async callables and routes each incoming
message.

Key classes:
    BotContext: Dependency container shared by all handlers.
    CommandContext: Per-invocation state (channel, caller, tokens).
    BaseCommandHandler: ABC that handler groups must implement.
    MessageMatcher: Priority-ordered interceptor for plain messages.
    HandlerRegistry: Maps command words to handlers and dispatches.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

import structlog

from ..exceptions import (
    BackstageError,
    CompileError,
    NotFound,
    PermissionDenied,
    StorageError,
)
from .words import Words

if TYPE_CHECKING:
    from ..config import Config
    from ..registry import Registry
    from ..tasks import BackgroundTasks

logger = structlog.get_logger("backstage.commands")

# Opaque authorization collaborator: is_moderator(channel, caller)
ModeratorCheck = Callable[[str, str], bool]


@dataclass
class BotContext:
    """Dependency container for command handlers.

    Provides typed access to shared services without coupling handlers
    to ChatBot.
    """

    config: "Config"
    commands: "Registry"
    counters: "Registry"
    bad_words: "Registry"
    tasks: "BackgroundTasks"


class CommandContext:
    """State for one command invocation.

    Lives for a single message. Handlers consume tokens with next() and
    rest(), and answer through respond(); at most one response leaves
    the router per invocation.

    Args:
        channel: Channel the message arrived in.
        caller: User who sent it.
        words: Remaining tokens after the command word.
        alias: The command as typed, used in usage messages ("!command").
        is_moderator: Capability predicate for this channel.
    """

    def __init__(
        self,
        channel: str,
        caller: str,
        words: Words,
        alias: str,
        is_moderator: ModeratorCheck,
    ):
        self.channel = channel
        self.caller = caller
        self.alias = alias
        self._words = words
        self._is_moderator = is_moderator
        self.response: Optional[str] = None

    def next(self) -> Optional[str]:
        """Next token, or None when the line is exhausted."""
        return self._words.next()

    def rest(self) -> str:
        """Everything not yet tokenized, leading whitespace removed."""
        return self._words.rest().strip()

    def respond(self, text: str) -> None:
        if self.response is not None:
            logger.debug("response_already_set", alias=self.alias)
            return
        self.response = text

    def check_moderator(self) -> None:
        """Raise PermissionDenied unless the caller moderates this channel."""
        if not self._is_moderator(self.channel, self.caller):
            raise PermissionDenied(
                "moderator required",
                scope="moderator",
                channel=self.channel,
                caller=self.caller,
            )


# Handler signature: async (ctx: CommandContext) -> None
Handler = Callable[[CommandContext], Awaitable[None]]


@dataclass
class MessageMatcher:
    """A priority-ordered message interceptor.

    Attributes:
        priority: Lower numbers are checked first (0-99).
        match_fn: Sync function (channel, message) -> bool.
        handle_fn: Async function (channel, caller, message) -> Optional[str].
        description: Human-readable label for logging.
    """
    priority: int
    match_fn: Callable[[str, str], bool]
    handle_fn: Callable[[str, str, str], Awaitable[Optional[str]]]
    description: str = ""


class BaseCommandHandler(ABC):
    """Abstract base class for command handler groups.

    Subclasses implement get_commands() to return a dict mapping
    command words to async handler functions, and set ``scope`` to the
    capability tag they expose.

    Args:
        ctx: Shared BotContext dependency container.
    """

    scope: Optional[str] = None

    def __init__(self, ctx: BotContext):
        self.ctx = ctx

    @abstractmethod
    def get_commands(self) -> Dict[str, Handler]:
        """Return {command_word: async_handler} mapping."""
        ...

    def message_matchers(self) -> List[MessageMatcher]:
        """Return matchers for messages that are not commands."""
        return []


class HandlerRegistry:
    """Maps command words to handler callables and routes messages.

    Populated once at startup through explicit register() calls from
    each feature module, then passed by reference to whatever composes
    the bot.

    Args:
        is_moderator: Capability predicate supplied by the authorization
            collaborator.
        prefix: Leading character(s) that mark a message as a command.
        scope_enabled: Predicate over capability tags. Commands whose
            scope it rejects are ignored; untagged commands always run.
    """

    def __init__(
        self,
        is_moderator: ModeratorCheck,
        prefix: str = "!",
        scope_enabled: Optional[Callable[[str], bool]] = None,
    ):
        self.prefix = prefix
        self._is_moderator = is_moderator
        self._scope_enabled = scope_enabled
        self._handlers: Dict[str, Handler] = {}
        self._scopes: Dict[str, Optional[str]] = {}
        self._matchers: List[MessageMatcher] = []
        self._fallback: Optional[Handler] = None

    def register(self, handler: BaseCommandHandler) -> None:
        """Register all commands and matchers from a handler group.

        Args:
            handler: Handler instance whose get_commands() dict
                will be merged into the registry.
        """
        for cmd_name, method in handler.get_commands().items():
            if cmd_name in self._handlers:
                logger.warning(
                    "command_handler_conflict",
                    command=cmd_name,
                    handler=type(handler).__name__,
                )
            self._handlers[cmd_name] = method
            self._scopes[cmd_name] = handler.scope
        self._matchers.extend(handler.message_matchers())

    def register_external(
        self, commands: Dict[str, Handler], scope: Optional[str] = None
    ) -> None:
        """Register commands from a plain dict.

        Args:
            commands: Mapping of command word to async handler.
            scope: Capability tag for every command in the dict.
        """
        for cmd_name, method in commands.items():
            if cmd_name in self._handlers:
                logger.warning(
                    "command_handler_conflict",
                    command=cmd_name,
                    source="external",
                )
            self._handlers[cmd_name] = method
            self._scopes[cmd_name] = scope

    def set_fallback(self, handler: Handler) -> None:
        """Handler for command words nothing is registered under.

        It receives the full token stream, unknown word included.
        """
        self._fallback = handler

    def get(self, command: str) -> Optional[Handler]:
        """Look up a handler for a command word."""
        return self._handlers.get(command)

    def scope_of(self, command: str) -> Optional[str]:
        """Capability tag of a registered command."""
        return self._scopes.get(command)

    @property
    def command_names(self) -> frozenset:
        """All registered command words."""
        return frozenset(self._handlers.keys())

    async def dispatch(self, channel: str, caller: str, raw_text: str) -> Optional[str]:
        """Route one chat message and return the response, if any.

        Routing order: registered command word -> fallback invocation
        for unknown words -> message matchers for plain text.
        """
        text = raw_text.strip()
        if not text:
            return None

        if not text.startswith(self.prefix):
            return await self._match(channel, caller, text)

        line = text[len(self.prefix):]
        words = Words(line)
        command = words.next()
        if command is None:
            return None
        command = command.lower()

        handler = self._handlers.get(command)
        if handler is None:
            if self._fallback is None:
                return None
            handler = self._fallback
            words = Words(line)
            logger.debug("command_routing", command=command, routing_path="fallback")
        else:
            scope = self.scope_of(command)
            if scope is not None and self._scope_enabled is not None and not self._scope_enabled(scope):
                logger.debug("command_routing", command=command, routing_path="scope_disabled", scope=scope)
                return None
            logger.debug("command_routing", command=command, routing_path="handler")

        ctx = CommandContext(
            channel=channel,
            caller=caller,
            words=words,
            alias=f"{self.prefix}{command}",
            is_moderator=self._is_moderator,
        )
        await self._run(handler, ctx, command)
        return ctx.response

    async def _run(self, handler: Handler, ctx: CommandContext, command: str) -> None:
        """Run a handler, turning scoped failures into chat responses."""
        try:
            await handler(ctx)
        except PermissionDenied:
            logger.info("permission_denied", command=command, channel=ctx.channel)
            ctx.respond("You need to be a moderator to use this command.")
        except (CompileError, NotFound) as e:
            ctx.respond(e.message)
        except StorageError as e:
            logger.error(
                "command_storage_error",
                command=command,
                operation=e.operation,
                error=str(e),
            )
            ctx.respond("Something went wrong, please try again later.")
        except BackstageError as e:
            logger.warning("command_failed", command=command, error=str(e))
            ctx.respond("Something went wrong, please try again later.")
        except Exception as e:
            logger.error(
                "command_handler_error",
                command=command,
                error=str(e),
                exc_type=type(e).__name__,
            )
            ctx.respond("Something went wrong, please try again later.")

    async def _match(self, channel: str, caller: str, text: str) -> Optional[str]:
        for matcher in sorted(self._matchers, key=lambda m: m.priority):
            if not matcher.match_fn(channel, text):
                continue
            logger.debug("message_routing", routing_path="matcher", matcher=matcher.description)
            try:
                return await matcher.handle_fn(channel, caller, text)
            except Exception as e:
                logger.error(
                    "matcher_error",
                    matcher=matcher.description,
                    error=str(e),
                    exc_type=type(e).__name__,
                )
                return None
        return None
