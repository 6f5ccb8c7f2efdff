from __future__ import annotations

import json

import httpx
import pytest

from gov_alerts.config import GovAlertsConfig, SlackSettings, TelegramSettings
from gov_alerts.errors import ConfigError, SinkError
from gov_alerts.sinks import LogSink, SlackSink, TelegramSink, build_sink, split_message


TOKEN = "123456:SECRET-token"


def test_split_message_prefers_line_boundaries() -> None:
    text = "\n".join(f"line {i:03d} " + "x" * 40 for i in range(100))
    parts = split_message(text, max_len=500)
    assert len(parts) > 1
    assert all(len(p) <= 500 for p in parts)
    assert all(p.startswith("line ") for p in parts)
    assert "\n".join(parts) == text


def test_split_message_short_and_empty() -> None:
    assert split_message("  hello  ") == ["hello"]
    assert split_message("") == [""]
    assert split_message("a" * 25, max_len=10) == ["a" * 10, "a" * 10, "a" * 5]


@pytest.mark.asyncio
async def test_telegram_sends_each_part() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/bot{TOKEN}/sendMessage"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await TelegramSink(client, TOKEN, "-100123").send("vote now")

    assert seen == [{"chat_id": "-100123", "text": "vote now"}]


@pytest.mark.asyncio
async def test_telegram_api_error_raises_sink_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SinkError) as excinfo:
            await TelegramSink(client, TOKEN, "-100123").send("vote now")

    assert "chat not found" in str(excinfo.value)


@pytest.mark.asyncio
async def test_telegram_error_names_failing_part() -> None:
    texts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        texts.append(json.loads(request.content)["text"])
        if len(texts) == 2:
            return httpx.Response(429, json={"ok": False, "description": "Too Many Requests"})
        return httpx.Response(200, json={"ok": True, "result": {}})

    message = "\n".join(f"line {i:04d} " + "y" * 60 for i in range(200))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SinkError) as excinfo:
            await TelegramSink(client, TOKEN, "-100123").send(message)

    total = len(split_message(message))
    assert total > 2
    assert len(texts) == 2
    assert f"part=2/{total}" in str(excinfo.value)


@pytest.mark.asyncio
async def test_telegram_transport_error_redacts_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SinkError) as excinfo:
            await TelegramSink(client, TOKEN, "-100123").send("vote now")

    assert TOKEN not in str(excinfo.value)
    assert "<redacted>" in str(excinfo.value)


@pytest.mark.asyncio
async def test_slack_ok_false_raises_sink_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer xoxb-1"
        assert json.loads(request.content) == {"channel": "C1", "text": "vote now"}
        return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SinkError) as excinfo:
            await SlackSink(client, "xoxb-1", "C1").send("vote now")

    assert "channel_not_found" in str(excinfo.value)


@pytest.mark.asyncio
async def test_log_sink_records_messages() -> None:
    sink = LogSink()
    await sink.send("first")
    await sink.send("second")
    assert sink.sent == ["first", "second"]


@pytest.mark.asyncio
async def test_build_sink() -> None:
    async with httpx.AsyncClient() as client:
        assert isinstance(build_sink(GovAlertsConfig(sink="log"), client), LogSink)

        telegram = GovAlertsConfig(telegram=TelegramSettings(bot_token=TOKEN, chat_id="1"))
        assert isinstance(build_sink(telegram, client), TelegramSink)
        assert isinstance(build_sink(telegram, client, dry_run=True), LogSink)

        slack = GovAlertsConfig(sink="slack", slack=SlackSettings(bot_token="xoxb-1", channel_id="C1"))
        assert isinstance(build_sink(slack, client), SlackSink)

        with pytest.raises(ConfigError):
            build_sink(GovAlertsConfig(), client)
