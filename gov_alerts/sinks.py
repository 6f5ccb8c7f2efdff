from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from gov_alerts.config import GovAlertsConfig
from gov_alerts.errors import ConfigError, SinkError


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900
SINK_TIMEOUT_SECONDS = 15.0


class AlertSink(Protocol):
    async def send(self, message: str) -> None:
        """Deliver one notification or raise SinkError."""
        ...


def split_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        parts.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    return parts


def _redact(text: str, secret: str) -> str:
    return text.replace(secret, "<redacted>") if secret else text


class TelegramSink:
    """
    Bot API ``sendMessage``; long alerts are split on line boundaries.

    Parts are sent in order. If a later part fails, the earlier ones have
    already been delivered and a retry of the whole alert sends them again.
    The raised SinkError names the failing part as ``part=i/n``.
    """

    def __init__(self, client: httpx.AsyncClient, bot_token: str, chat_id: str) -> None:
        if not bot_token or not chat_id:
            raise ConfigError("Telegram sink needs TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")
        self._client = client
        self._bot_token = bot_token
        self._chat_id = chat_id

    async def send(self, message: str) -> None:
        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        parts = split_message(message)
        for idx, part in enumerate(parts, start=1):
            where = f"part={idx}/{len(parts)}"
            try:
                resp = await self._client.post(
                    url, json={"chat_id": self._chat_id, "text": part}, timeout=SINK_TIMEOUT_SECONDS
                )
                data = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise SinkError(_redact(f"telegram: {where} {type(exc).__name__}: {exc}", self._bot_token)) from exc
            if not isinstance(data, dict) or not data.get("ok"):
                desc = data.get("description") if isinstance(data, dict) else None
                raise SinkError(f"telegram: {where} status={resp.status_code} description={desc!r}")


class SlackSink:
    """``chat.postMessage`` with a bot token."""

    API_URL = "https://slack.com/api/chat.postMessage"

    def __init__(self, client: httpx.AsyncClient, bot_token: str, channel_id: str) -> None:
        if not bot_token or not channel_id:
            raise ConfigError("Slack sink needs SLACK_BOT_TOKEN and SLACK_CHANNEL_ID")
        self._client = client
        self._bot_token = bot_token
        self._channel_id = channel_id

    async def send(self, message: str) -> None:
        try:
            resp = await self._client.post(
                self.API_URL,
                headers={"Authorization": f"Bearer {self._bot_token}"},
                json={"channel": self._channel_id, "text": message},
                timeout=SINK_TIMEOUT_SECONDS,
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SinkError(_redact(f"slack: {type(exc).__name__}: {exc}", self._bot_token)) from exc
        # Slack answers 200 with ok=false on API errors.
        if resp.status_code >= 300 or not isinstance(data, dict) or not data.get("ok"):
            err = data.get("error") if isinstance(data, dict) else None
            raise SinkError(f"slack: status={resp.status_code} error={err!r}")


class LogSink:
    """Writes alerts to the log instead of a chat; used for dry runs."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send(self, message: str) -> None:
        self.sent.append(message)
        logger.warning("alert (log sink)", message=message)


def build_sink(config: GovAlertsConfig, client: httpx.AsyncClient, *, dry_run: bool = False) -> AlertSink:
    if dry_run or config.sink == "log":
        return LogSink()
    if config.sink == "slack":
        return SlackSink(client, config.slack.bot_token, config.slack.channel_id)
    return TelegramSink(client, config.telegram.bot_token, config.telegram.chat_id)
