"""Entity administration and invocation commands.

One routine, handle_entity_admin(), interprets the shared sub-command
vocabulary for every entity kind:

    !command list
    !command show <name>
    !command edit <name> <template>
    !command delete <name>
    !command rename <from> <to>
    !command enable <name>
    !command disable <name>
    !command group <name> [<group>]
    !command clear-group <name>
    !command <name>             (invoke)

Any first token outside that vocabulary is taken as an entity name and
invoked. Administrative words check the moderator capability before
their arguments are parsed, and a missing argument produces a usage
message with no side effect.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from ..exceptions import NotFound, RenameConflict, RenderError
from ..registry import Entity, Registry
from .base import BaseCommandHandler, BotContext, CommandContext, MessageMatcher
from .words import trimmed_words

logger = structlog.get_logger("backstage.commands")


def invocation_context(ctx: CommandContext, entity: Entity, count: int) -> Dict[str, Any]:
    """Variables a template can reference when invoked from chat."""
    return {
        "name": entity.key.name,
        "channel": ctx.channel,
        "caller": ctx.caller,
        "count": count,
        "rest": ctx.rest(),
    }


async def invoke_entity(
    ctx: CommandContext,
    bot: BotContext,
    registry: Registry,
    name: str,
    count_offset: int = 0,
) -> None:
    """Render an enabled entity and record the use in the background.

    Args:
        count_offset: Added to the stored count for the ``count``
            variable; counters pass 1 so the reply shows the new total.

    Raises:
        NotFound: No enabled entity of that name in the channel.
    """
    what = registry.kind.what
    entity = registry.get(ctx.channel, name)
    if entity is None:
        raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)

    try:
        text = entity.render(invocation_context(ctx, entity, entity.count + count_offset))
    except RenderError as e:
        logger.info("render_failed", kind=registry.kind.name, name=entity.name, error=str(e))
        ctx.respond(f"Failed to render {what} `{entity.name}`: {e}")
        return

    ctx.respond(text)
    schedule_increment(bot, registry, entity)


def schedule_increment(bot: BotContext, registry: Registry, entity: Entity) -> None:
    """Fire-and-forget usage increment; failures are logged, never surfaced."""
    try:
        bot.tasks.spawn(
            registry.increment(entity),
            name=f"increment:{registry.kind.name}:{entity.key}",
        )
    except RuntimeError as e:
        logger.warning("increment_not_scheduled", name=entity.name, error=str(e))


async def handle_entity_admin(
    ctx: CommandContext,
    bot: BotContext,
    registry: Registry,
    count_offset: int = 0,
    template_required: bool = True,
) -> None:
    """Interpret one sub-command against a registry."""
    what = registry.kind.what
    sub = ctx.next()

    if sub == "list":
        names = sorted(entity.key.name for entity in registry.list(ctx.channel))
        if names:
            ctx.respond(", ".join(names))
        else:
            ctx.respond(f"No custom {what}s.")

    elif sub == "show":
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} show <name>")
            return
        entity = registry.get_any(ctx.channel, name)
        if entity is None:
            raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)
        ctx.respond(f"{entity.key.name} -> {entity}")

    elif sub == "edit":
        ctx.check_moderator()
        name = ctx.next()
        source = ctx.rest()
        if name is None or (template_required and not source):
            ctx.respond(f"Expected: {ctx.alias} edit <name> <template>")
            return
        await registry.edit(ctx.channel, name, source)
        ctx.respond(f"Edited {what}.")

    elif sub == "delete":
        ctx.check_moderator()
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} delete <name>")
            return
        if await registry.delete(ctx.channel, name):
            ctx.respond(f"Deleted {what} `{name}`")
        else:
            raise NotFound(f"No such {what}", channel=ctx.channel, name=name)

    elif sub == "rename":
        ctx.check_moderator()
        source, target = ctx.next(), ctx.next()
        if source is None or target is None:
            ctx.respond(f"Expected: {ctx.alias} rename <from> <to>")
            return
        try:
            renamed = await registry.rename(ctx.channel, source, target)
        except RenameConflict:
            ctx.respond(f"Already a {what} named `{target}`.")
            return
        if renamed:
            ctx.respond(f"Renamed {what} {source} -> {target}.")
        else:
            raise NotFound(f"No {what} named `{source}`.", channel=ctx.channel, name=source)

    elif sub == "enable":
        ctx.check_moderator()
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} enable <name>")
            return
        if await registry.enable(ctx.channel, name):
            ctx.respond(f"Enabled {what} `{name}`")
        else:
            raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)

    elif sub == "disable":
        ctx.check_moderator()
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} disable <name>")
            return
        if await registry.disable(ctx.channel, name):
            ctx.respond(f"Disabled {what} `{name}`")
        else:
            raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)

    elif sub == "group":
        ctx.check_moderator()
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} group <name> [<group>]")
            return
        group = ctx.next()
        if group is None:
            entity = registry.get(ctx.channel, name)
            if entity is None:
                raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)
            if entity.group:
                ctx.respond(f"{what} `{entity.name}` belongs to group: {entity.group}")
            else:
                ctx.respond(f"{what} `{entity.name}` does not belong to a group")
            return
        if await registry.set_group(ctx.channel, name, group):
            ctx.respond(f"Set group for {what} `{name}` to {group}")
        else:
            raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)

    elif sub == "clear-group":
        ctx.check_moderator()
        name = ctx.next()
        if name is None:
            ctx.respond(f"Expected: {ctx.alias} clear-group <name>")
            return
        if await registry.clear_group(ctx.channel, name):
            ctx.respond(f"Removed {what} `{name}` from its group")
        else:
            raise NotFound(f"No {what} named `{name}`.", channel=ctx.channel, name=name)

    elif sub is None:
        ctx.respond(
            f"Expected: {ctx.alias} <name>, or one of: "
            "show, list, edit, delete, rename, enable, disable, group, clear-group."
        )

    else:
        await invoke_entity(ctx, bot, registry, sub, count_offset=count_offset)


class EntityCommandHandler(BaseCommandHandler):
    """Exposes one registry under its kind's command word.

    Args:
        ctx: Shared BotContext.
        registry: The registry this command administers.
        count_offset: Passed through to invocation rendering.
        template_required: Whether edit needs template text.
    """

    def __init__(
        self,
        ctx: BotContext,
        registry: Registry,
        count_offset: int = 0,
        template_required: bool = True,
    ):
        super().__init__(ctx)
        self.registry = registry
        self.count_offset = count_offset
        self.template_required = template_required
        self.scope = registry.kind.name

    def get_commands(self):
        return {self.registry.kind.name: self.handle}

    @property
    def enabled(self) -> bool:
        return self.ctx.config.feature_enabled(self.registry.kind.name)

    async def handle(self, ctx: CommandContext) -> None:
        await handle_entity_admin(
            ctx,
            self.ctx,
            self.registry,
            count_offset=self.count_offset,
            template_required=self.template_required,
        )


class CommandHandlers(EntityCommandHandler):
    """!command: custom text commands."""

    def __init__(self, ctx: BotContext):
        super().__init__(ctx, ctx.commands)


class CounterHandlers(EntityCommandHandler):
    """!counter: commands whose reply shows how often they were used."""

    def __init__(self, ctx: BotContext):
        super().__init__(ctx, ctx.counters, count_offset=1)


class BadWordHandlers(EntityCommandHandler):
    """!badword: banned words, answered with an optional reason template."""

    def __init__(self, ctx: BotContext):
        super().__init__(ctx, ctx.bad_words, template_required=False)

    def message_matchers(self) -> List[MessageMatcher]:
        return [
            MessageMatcher(
                priority=10,
                match_fn=self._matches,
                handle_fn=self._handle_match,
                description="bad_words",
            )
        ]

    def _find(self, channel: str, message: str) -> Optional[Entity]:
        for word in trimmed_words(message):
            entity = self.registry.get(channel, word)
            if entity is not None:
                return entity
        return None

    def _matches(self, channel: str, message: str) -> bool:
        return self.enabled and self._find(channel, message) is not None

    async def _handle_match(self, channel: str, caller: str, message: str) -> Optional[str]:
        entity = self._find(channel, message)
        if entity is None:
            return None

        logger.info("bad_word_matched", channel=channel, word=entity.name)
        try:
            reply = entity.render({
                "word": entity.name,
                "channel": channel,
                "caller": caller,
                "count": entity.count + 1,
            })
        except RenderError as e:
            logger.warning("bad_word_render_failed", word=entity.name, error=str(e))
            return f"Failed to render bad word `{entity.name}`: {e}"
        schedule_increment(self.ctx, self.registry, entity)
        return reply or None


def make_invoke_fallback(ctx: BotContext):
    """Fallback for unknown command words: invoke a command or counter by name.

    ``!hello`` behaves like ``!command hello``; counters are tried when
    no command of that name exists. Unknown names stay silent.
    """
    async def invoke(cmd_ctx: CommandContext) -> None:
        name = cmd_ctx.next()
        if name is None:
            return
        if ctx.config.feature_enabled("command") and ctx.commands.get(cmd_ctx.channel, name):
            await invoke_entity(cmd_ctx, ctx, ctx.commands, name)
        elif ctx.config.feature_enabled("counter") and ctx.counters.get(cmd_ctx.channel, name):
            await invoke_entity(cmd_ctx, ctx, ctx.counters, name, count_offset=1)

    return invoke
