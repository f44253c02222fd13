"""Operator alerting for the background reconciliation job.

A tick has no caller to report to, so failed or lossy passes end up here.
Every alert is logged at a level matching its severity and then fanned out
to whichever webhooks are configured (Slack and/or a generic JSON endpoint
for PagerDuty, Opsgenie, ...). Webhooks are posted concurrently over one
client; a failing target never affects the other or the caller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

ALERT_SOURCE = "trip-planner-reconciler"

SEVERITY_LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
}

SLACK_COLORS = {
    "critical": "#dc2626",
    "error": "#f59e0b",
    "warning": "#facc15",
}


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict[str, Any] | None = None,
) -> None:
    """Log an alert and forward it to the configured webhooks. Never raises."""
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"
    logger.log(SEVERITY_LOG_LEVELS.get(severity, logging.ERROR), log_message)

    settings = get_settings()
    payload = build_alert_payload(title, message, severity, details)
    targets = _webhook_targets(settings, payload)
    if not targets:
        return

    async with httpx.AsyncClient(timeout=settings.alert_timeout_seconds) as client:
        results = await asyncio.gather(
            *(_post(client, url, body) for _, url, body in targets),
            return_exceptions=True,
        )

    for (name, _, _), result in zip(targets, results):
        if isinstance(result, Exception):
            logger.error(f"Failed to send {name} alert: {result}")


def build_alert_payload(
    title: str,
    message: str,
    severity: str,
    details: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": ALERT_SOURCE,
        "details": details or {},
    }


def build_slack_message(payload: dict[str, Any]) -> dict[str, Any]:
    """Render an alert payload as a Slack attachment with Block Kit blocks."""
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": payload["title"]}},
        {"type": "section", "text": {"type": "mrkdwn", "text": payload["message"]}},
    ]
    if payload["details"]:
        lines = [f"• *{key}*: {value}" for key, value in payload["details"].items()]
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}})
    blocks.append({
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": (
                f"{payload['source']} | Severity: *{payload['severity'].upper()}* "
                f"| {payload['timestamp']}"
            ),
        }],
    })

    color = SLACK_COLORS.get(payload["severity"], SLACK_COLORS["error"])
    return {"attachments": [{"color": color, "blocks": blocks}]}


def _webhook_targets(
    settings: Settings,
    payload: dict[str, Any],
) -> list[tuple[str, str, dict[str, Any]]]:
    targets = []
    if settings.slack_alerts_webhook_url:
        targets.append(("Slack", settings.slack_alerts_webhook_url, build_slack_message(payload)))
    if settings.alert_webhook_url:
        targets.append(("webhook", settings.alert_webhook_url, payload))
    return targets


async def _post(client: httpx.AsyncClient, url: str, body: dict[str, Any]) -> None:
    response = await client.post(url, json=body)
    response.raise_for_status()
