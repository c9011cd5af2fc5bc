"""
Tests for the Telegram command handler and the command line wiring.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.constants import ParseMode

from vault_monitor.commands import ERROR_MESSAGE, CommandListener
from vault_monitor.config import Config
from vault_monitor.main import build_sink, main, parse_args
from vault_monitor.notifier import AppriseNotifier, FileNotifier

TOKEN = "123456:TEST-TOKEN"


class StubLiveVaults:
    def __init__(self, message="📊 *Live Vaults* (0)", error=None):
        self.message = message
        self.error = error

    async def render(self):
        if self.error:
            raise self.error
        return self.message


def make_update():
    return SimpleNamespace(
        effective_chat=SimpleNamespace(id=42),
        message=SimpleNamespace(reply_text=AsyncMock()),
    )


def test_live_vaults_command_replies_with_markdown():
    listener = CommandListener(TOKEN, StubLiveVaults("hello"))
    update = make_update()

    asyncio.run(listener.live_vaults_command(update, None))

    args, kwargs = update.message.reply_text.await_args
    assert args == ("hello",)
    assert kwargs["parse_mode"] == ParseMode.MARKDOWN
    assert kwargs["link_preview_options"].is_disabled is True


def test_live_vaults_command_reports_errors():
    listener = CommandListener(TOKEN, StubLiveVaults(error=RuntimeError("rpc down")))
    update = make_update()

    asyncio.run(listener.live_vaults_command(update, None))

    update.message.reply_text.assert_awaited_once_with(ERROR_MESSAGE)


def test_command_is_registered_case_insensitively():
    listener = CommandListener(TOKEN, StubLiveVaults())
    handlers = [h for group in listener.application.handlers.values() for h in group]
    assert [sorted(h.commands) for h in handlers] == [["livevaults"]]


def test_parse_args_defaults():
    args = parse_args([])
    assert args.file_output is None
    assert args.no_commands is False
    assert args.state_file == Config.STATE_FILE


def test_parse_args_file_output():
    assert parse_args(["--file-output"]).file_output == Config.NOTIFICATION_FILE
    assert parse_args(["--file-output", "out.log"]).file_output == "out.log"


def test_build_sink(monkeypatch, tmp_path):
    assert isinstance(build_sink(parse_args(["--file-output", str(tmp_path / "n.log")])), FileNotifier)

    monkeypatch.setattr(Config, "NOTIFY_URLS", "")
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "1:abc")
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "-100")
    sink = build_sink(parse_args([]))
    assert isinstance(sink, AppriseNotifier)
    assert sink.urls == ["tgram://1:abc/-100/?format=markdown"]


def test_notify_urls_take_precedence(monkeypatch):
    monkeypatch.setattr(Config, "NOTIFY_URLS", "json://a, mailto://b ")
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "1:abc")
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "-100")
    assert Config.get_notification_urls() == ["json://a", "mailto://b"]


def test_invalid_configuration_exits_with_code_2(monkeypatch):
    monkeypatch.setattr(Config, "AMM_FACTORY_ADDRESS", "nope")
    monkeypatch.setattr("vault_monitor.main.setup_logging", lambda: None)

    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 2
