"""
Operational alerts posted to a Slack-compatible incoming webhook (WEBHOOK_URL).
No-op if unset. Sent for escalated tickets, tickets nobody could be assigned
to, and permanent classification-service failures.
"""

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Optional

from ticketai import config

logger = logging.getLogger(__name__)

# Slack attachment colors
SEVERITY_COLORS = {
    "info": "#439FE0",
    "warning": "warning",
    "critical": "danger",
}
ALERT_SEVERITY = {
    "Ticket escalated": "warning",
    "Ticket could not be routed": "warning",
    "Classification service failing permanently": "critical",
}


def build_alert_payload(title: str, fields: dict[str, Any], severity: Optional[str] = None) -> dict[str, Any]:
    """One attachment per alert: the title as fallback text, each field as a short Slack field."""
    severity = severity or ALERT_SEVERITY.get(title, "info")
    return {
        "text": title,
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"]),
                "title": title,
                "fields": [{"title": name, "value": str(value), "short": True} for name, value in fields.items()],
            },
        ],
    }


def _do_post(url: str, payload: dict[str, Any]) -> None:
    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=config.WEBHOOK_TIMEOUT_SECONDS) as resp:
        resp.read()


def send_alert(title: str, fields: dict[str, Any], url: Optional[str] = None) -> bool:
    """POST an alert. Returns True if sent; delivery failures are logged and never raised."""
    target = url if url is not None else config.WEBHOOK_URL
    if not target:
        logger.debug("No WEBHOOK_URL; alert %r not sent.", title)
        return False
    try:
        _do_post(target, build_alert_payload(title, fields))
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.warning("Alert webhook failed (%s): %s", title, e)
        return False
    logger.info("Alert sent: %s", title)
    return True
