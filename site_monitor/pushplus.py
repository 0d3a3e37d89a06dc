from __future__ import annotations

import html
import json
from dataclasses import dataclass

import httpx
import structlog

from site_monitor.classifier import AlertEvent, AlertReason


logger = structlog.get_logger(__name__)

PUSHPLUS_SEND_URL = "http://www.pushplus.plus/send"
EVENT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class PushplusConfig:
    token: str
    title: str
    topic: int = 0
    endpoint: str = PUSHPLUS_SEND_URL
    timeout_seconds: float = 15.0


def build_alert_message(event: AlertEvent) -> str:
    headline = "site timed out!" if event.reason is AlertReason.TIMED_OUT else "site unreachable!"
    return (
        f"<b>Notice:</b> {html.escape(event.target)} <strong>{headline}</strong></br>"
        f"<b>Event time:</b> {event.timestamp.strftime(EVENT_TIME_FORMAT)}</br>"
        f"<b>Error:</b> {html.escape(event.detail)}"
    )


def _redact(text: str, token: str) -> str:
    if token:
        return text.replace(token, "<redacted>")
    return text


async def send_pushplus_message(
    client: httpx.AsyncClient, config: PushplusConfig, content: str
) -> tuple[bool, dict]:
    payload = {
        "token": config.token,
        "title": config.title,
        "content": content,
        "template": "html",
        "topic": config.topic,
    }
    try:
        resp = await client.post(config.endpoint, json=payload, timeout=config.timeout_seconds)
        logger.debug("PushPlus response", body=_redact(resp.text, config.token)[:1000])
        data = resp.json()
    except (httpx.HTTPError, json.JSONDecodeError) as e:
        return False, {"error": _redact(f"{type(e).__name__}: {e}", config.token)}

    if not isinstance(data, dict):
        return False, {"error": f"unexpected response: {str(data)[:200]}"}
    try:
        code = int(data.get("code"))
    except (TypeError, ValueError):
        code = None
    if code != 200:
        return False, {**data, "error": str(data.get("msg") or f"code={data.get('code')}")}
    return True, data


class PushplusNotifier:
    """Sends formatted alert messages to PushPlus."""

    def __init__(self, client: httpx.AsyncClient, config: PushplusConfig):
        self.client = client
        self.config = config

    async def send(self, message: str) -> tuple[bool, dict]:
        return await send_pushplus_message(self.client, self.config, message)
