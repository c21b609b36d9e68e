"""Command handler framework for backstage.

Provides the BaseCommandHandler ABC, BotContext dependency container,
HandlerRegistry for routing chat messages to async handlers, and the
shared entity administration routine.
"""

from .base import (
    BaseCommandHandler,
    BotContext,
    CommandContext,
    HandlerRegistry,
    MessageMatcher,
)
from .entity import (
    BadWordHandlers,
    CommandHandlers,
    CounterHandlers,
    EntityCommandHandler,
    handle_entity_admin,
    make_invoke_fallback,
)
from .words import Words, trimmed_words

__all__ = [
    "BaseCommandHandler",
    "BotContext",
    "CommandContext",
    "HandlerRegistry",
    "MessageMatcher",
    "EntityCommandHandler",
    "CommandHandlers",
    "CounterHandlers",
    "BadWordHandlers",
    "handle_entity_admin",
    "make_invoke_fallback",
    "Words",
    "trimmed_words",
]
