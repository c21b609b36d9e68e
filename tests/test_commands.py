"""Tests for the chat command router and entity sub-commands."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from backstage.bot import ChatBot
from backstage.commands.base import BaseCommandHandler, HandlerRegistry
from backstage.config import Config
from backstage.exceptions import StorageError

MOD = "mod"
USER = "bob"


def _make_bot(tmp_path, monkeypatch, **settings):
    """Create a ChatBot over a throwaway database where only MOD moderates."""
    monkeypatch.delenv("BACKSTAGE_DATABASE", raising=False)
    base = {
        "database_path": str(tmp_path / "bot.db"),
        "log_dir": str(tmp_path / "logs"),
    }
    base.update(settings)
    config = Config(config_dir=tmp_path, settings=base)
    return ChatBot(config, is_moderator=lambda channel, caller: caller == MOD)


async def _settle(bot):
    """Wait for detached usage increments to land."""
    for _ in range(200):
        if not bot.tasks.pending:
            return
        await asyncio.sleep(0.01)


# -------------------------------------------------------------------
# Sub-command vocabulary
# -------------------------------------------------------------------

class TestEntityAdmin:
    """!command sub-commands end to end through the bot."""

    @pytest.mark.asyncio
    async def test_edit_then_invoke(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        say = bot.handle_message
        assert await say("#chan", MOD, "!command edit hello Hello, {{caller}}!") == "Edited command."
        assert await say("#chan", USER, "!command hello") == "Hello, bob!"
        assert await say("#chan", USER, "!hello") == "Hello, bob!"
        await _settle(bot)
        assert bot.commands.get("#chan", "hello").count == 2
        await bot.stop()

    @pytest.mark.asyncio
    async def test_invocation_context_variables(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit echo {{caller}} in {{channel}} says {{rest}}")
        assert await bot.handle_message("#chan", USER, "!command echo hi  there") == "bob in #chan says hi  there"
        assert await bot.handle_message("#chan", USER, "!echo hi") == "bob in #chan says hi"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_list(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", USER, "!command list") == "No custom commands."
        await bot.handle_message("#chan", MOD, "!command edit zeta z")
        await bot.handle_message("#chan", MOD, "!command edit alpha a")
        await bot.handle_message("#other", MOD, "!command edit gamma g")
        assert await bot.handle_message("#chan", USER, "!command list") == "alpha, zeta"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_show(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit hello Hello, {{caller}}!")
        assert await bot.handle_message("#chan", USER, "!command show hello") == (
            'hello -> template = "Hello, {{caller}}!", group = *none*, disabled = false'
        )
        assert await bot.handle_message("#chan", USER, "!command show nope") == "No command named `nope`."
        assert await bot.handle_message("#chan", USER, "!command show") == "Expected: !command show <name>"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit hello hi")
        assert await bot.handle_message("#chan", MOD, "!command delete hello") == "Deleted command `hello`"
        assert await bot.handle_message("#chan", MOD, "!command delete hello") == "No such command"
        assert await bot.handle_message("#chan", USER, "!command hello") == "No command named `hello`."
        await bot.stop()

    @pytest.mark.asyncio
    async def test_rename(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit a first")
        await bot.handle_message("#chan", MOD, "!command edit b second")
        assert await bot.handle_message("#chan", MOD, "!command rename a b") == "Already a command named `b`."
        assert await bot.handle_message("#chan", MOD, "!command rename a c") == "Renamed command a -> c."
        assert await bot.handle_message("#chan", MOD, "!command rename a d") == "No command named `a`."
        assert await bot.handle_message("#chan", MOD, "!command rename c") == "Expected: !command rename <from> <to>"
        assert await bot.handle_message("#chan", USER, "!c") == "first"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_disable_and_enable(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit hello hi")
        assert await bot.handle_message("#chan", MOD, "!command disable hello") == "Disabled command `hello`"
        assert await bot.handle_message("#chan", USER, "!command hello") == "No command named `hello`."
        assert await bot.handle_message("#chan", USER, "!hello") is None
        assert await bot.handle_message("#chan", USER, "!command list") == "No custom commands."
        assert await bot.handle_message("#chan", MOD, "!command enable hello") == "Enabled command `hello`"
        assert await bot.handle_message("#chan", USER, "!hello") == "hi"
        assert await bot.handle_message("#chan", MOD, "!command enable ghost") == "No command named `ghost`."
        await bot.stop()

    @pytest.mark.asyncio
    async def test_group_and_clear_group(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        say = bot.handle_message
        await say("#chan", MOD, "!command edit hello hi")
        assert await say("#chan", MOD, "!command group hello") == "command `hello` does not belong to a group"
        assert await say("#chan", MOD, "!command group hello fun") == "Set group for command `hello` to fun"
        assert await say("#chan", MOD, "!command group hello") == "command `hello` belongs to group: fun"
        assert await say("#chan", MOD, "!command clear-group hello") == "Removed command `hello` from its group"
        assert await say("#chan", MOD, "!command group hello") == "command `hello` does not belong to a group"
        assert await say("#chan", MOD, "!command group ghost fun") == "No command named `ghost`."
        await bot.stop()

    @pytest.mark.asyncio
    async def test_bare_command_word_lists_vocabulary(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        response = await bot.handle_message("#chan", USER, "!command")
        assert response.startswith("Expected: !command <name>, or one of: show, list, edit")
        assert "clear-group" in response
        await bot.stop()

    @pytest.mark.asyncio
    async def test_command_word_is_case_insensitive(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", USER, "!COMMAND list") == "No custom commands."
        await bot.stop()

    @pytest.mark.asyncio
    async def test_quoted_names(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", MOD, '!command edit "good night" Sleep well') == "Edited command."
        assert await bot.handle_message("#chan", USER, '!command "good night"') == "Sleep well"
        await bot.stop()


# -------------------------------------------------------------------
# Permissions and error mapping
# -------------------------------------------------------------------

class TestPermissionsAndErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [
        "!command edit hello hi",
        "!command edit",
        "!command delete hello",
        "!command rename a b",
        "!command enable hello",
        "!command disable hello",
        "!command group hello fun",
        "!command clear-group hello",
    ])
    async def test_admin_words_need_moderator(self, tmp_path, monkeypatch, text):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit hello hi")
        response = await bot.handle_message("#chan", USER, text)
        assert response == "You need to be a moderator to use this command."
        assert bot.commands.get("#chan", "hello").template.source == "hi"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_edit_usage_has_no_side_effect(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", MOD, "!command edit hello") == (
            "Expected: !command edit <name> <template>"
        )
        assert bot.commands.get_any("#chan", "hello") is None
        await bot.stop()

    @pytest.mark.asyncio
    async def test_bad_template_reported_to_editor(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        response = await bot.handle_message("#chan", MOD, "!command edit broken {{ oops")
        assert response.startswith("Bad template:")
        assert bot.commands.get_any("#chan", "broken") is None
        await bot.stop()

    @pytest.mark.asyncio
    async def test_render_error_reported_and_not_counted(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit greet Hi {{ who }}")
        response = await bot.handle_message("#chan", USER, "!command greet")
        assert response == "Failed to render command `greet`: Template error: 'who' is undefined"
        await _settle(bot)
        assert bot.commands.get("#chan", "greet").count == 0
        await bot.stop()

    @pytest.mark.asyncio
    async def test_storage_failure_gives_generic_reply(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!command edit hello hi")
        bot.commands.store.delete = AsyncMock(
            side_effect=StorageError("disk I/O error", operation="delete", table="commands")
        )
        response = await bot.handle_message("#chan", MOD, "!command delete hello")
        assert response == "Something went wrong, please try again later."
        assert bot.commands.get("#chan", "hello") is not None
        await bot.stop()

    @pytest.mark.asyncio
    async def test_unknown_command_is_silent(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", USER, "!nope") is None
        assert await bot.handle_message("#chan", USER, "just chatting") is None
        assert await bot.handle_message("#chan", USER, "   ") is None
        await bot.stop()


# -------------------------------------------------------------------
# Counters and bad words
# -------------------------------------------------------------------

class TestCounters:

    @pytest.mark.asyncio
    async def test_counter_shows_new_total(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!counter edit deaths Deaths: {{count}}")
        assert await bot.handle_message("#chan", USER, "!counter deaths") == "Deaths: 1"
        await _settle(bot)
        assert await bot.handle_message("#chan", USER, "!deaths") == "Deaths: 2"
        await _settle(bot)
        assert bot.counters.get("#chan", "deaths").count == 2
        await bot.stop()

    @pytest.mark.asyncio
    async def test_commands_shadow_counters_in_fallback(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!counter edit dupe counter")
        await bot.handle_message("#chan", MOD, "!command edit dupe command")
        assert await bot.handle_message("#chan", USER, "!dupe") == "command"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_disabled_feature_is_silent(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch, features={"counter": {"enabled": False}})
        await bot.start()

        assert await bot.handle_message("#chan", MOD, "!counter edit deaths {{count}}") is None
        assert await bot.handle_message("#chan", USER, "!command list") == "No custom commands."
        await bot.stop()


class TestBadWords:

    @pytest.mark.asyncio
    async def test_bad_word_reply(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!badword edit darn No {{word}} here, {{caller}}!")
        assert await bot.handle_message("#chan", USER, "Oh, DARN it...") == "No darn here, bob!"
        await _settle(bot)
        assert bot.bad_words.get("#chan", "darn").count == 1
        assert await bot.handle_message("#other", USER, "darn") is None
        await bot.stop()

    @pytest.mark.asyncio
    async def test_bad_word_without_reason_is_silent(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        assert await bot.handle_message("#chan", MOD, "!badword edit darn") == "Edited bad word."
        assert await bot.handle_message("#chan", USER, "darn") is None
        await _settle(bot)
        assert bot.bad_words.get("#chan", "darn").count == 1
        await bot.stop()

    @pytest.mark.asyncio
    async def test_bad_word_render_failure(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch)
        await bot.start()

        await bot.handle_message("#chan", MOD, "!badword edit darn {{ reason }}")
        response = await bot.handle_message("#chan", USER, "darn")
        assert response == "Failed to render bad word `darn`: Template error: 'reason' is undefined"
        await bot.stop()

    @pytest.mark.asyncio
    async def test_disabled_bad_word_feature(self, tmp_path, monkeypatch):
        bot = _make_bot(tmp_path, monkeypatch, features={"badword": {"enabled": False}})
        await bot.start()

        await bot.bad_words.edit("#chan", "darn", "nope")
        assert await bot.handle_message("#chan", USER, "darn") is None
        await bot.stop()


# -------------------------------------------------------------------
# HandlerRegistry
# -------------------------------------------------------------------

class _QuoteHandlers(BaseCommandHandler):
    scope = "quote"

    def get_commands(self):
        return {"quote": self.quote}

    async def quote(self, ctx):
        ctx.respond("a quote")


class TestHandlerRegistry:

    def test_register_records_scope(self):
        registry = HandlerRegistry(is_moderator=lambda ch, c: False)
        registry.register(_QuoteHandlers(MagicMock()))

        assert registry.scope_of("quote") == "quote"
        assert registry.get("quote") is not None
        assert registry.command_names == frozenset({"quote"})

    @pytest.mark.asyncio
    async def test_register_external_dispatch(self):
        calls = []

        async def ping(ctx):
            calls.append((ctx.channel, ctx.caller, ctx.alias, ctx.rest()))
            ctx.respond("pong")
            ctx.respond("ignored")

        registry = HandlerRegistry(is_moderator=lambda ch, c: False, prefix="?")
        registry.register_external({"ping": ping}, scope="misc")

        assert registry.scope_of("ping") == "misc"
        assert await registry.dispatch("#chan", USER, "?PING  a b ") == "pong"
        assert calls == [("#chan", USER, "?ping", "a b")]
        assert await registry.dispatch("#chan", USER, "!ping") is None

    @pytest.mark.asyncio
    async def test_disabled_scope_is_ignored(self):
        calls = []

        async def ping(ctx):
            calls.append("ping")
            ctx.respond("pong")

        async def fallback(ctx):
            calls.append("fallback")

        registry = HandlerRegistry(
            is_moderator=lambda ch, c: False,
            scope_enabled=lambda scope: scope != "misc",
        )
        registry.register_external({"ping": ping}, scope="misc")
        registry.register_external({"pong": ping})
        registry.set_fallback(fallback)

        assert await registry.dispatch("#chan", USER, "!ping") is None
        assert await registry.dispatch("#chan", USER, "!pong") == "pong"
        assert calls == ["ping"]

    @pytest.mark.asyncio
    async def test_fallback_receives_full_line(self):
        seen = []

        async def fallback(ctx):
            seen.append(ctx.next())
            seen.append(ctx.rest())

        registry = HandlerRegistry(is_moderator=lambda ch, c: False)
        registry.set_fallback(fallback)

        assert await registry.dispatch("#chan", USER, "!Hello world") is None
        assert seen == ["Hello", "world"]

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_is_contained(self):
        async def boom(ctx):
            raise KeyError("missing")

        registry = HandlerRegistry(is_moderator=lambda ch, c: False)
        registry.register_external({"boom": boom})

        assert await registry.dispatch("#chan", USER, "!boom") == (
            "Something went wrong, please try again later."
        )
