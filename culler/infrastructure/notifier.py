# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from enum import Enum
from typing import Any, Dict, List, Optional
import requests
from ..core.models import utc_now

logger = logging.getLogger(__name__)

COLORS = {
    "success": 0x2ECC71,
    "info": 0x3498DB,
    "warning": 0xF39C12,
    "error": 0xE74C3C,
}

MAX_LISTED_ITEMS = 10


class NotificationEvent(str, Enum):
    ITEMS_MARKED = "ITEMS_MARKED"
    DELETION_IMMINENT = "DELETION_IMMINENT"
    DELETION_COMPLETE = "DELETION_COMPLETE"
    SCAN_COMPLETE = "SCAN_COMPLETE"
    SCAN_ERROR = "SCAN_ERROR"
    DELETION_ERROR = "DELETION_ERROR"
    RULE_MATCHED = "RULE_MATCHED"


def format_bytes(size: Optional[int]) -> str:
    if not size:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _item_lines(items: List[Dict[str, Any]], with_days: bool = False) -> str:
    lines = []
    for item in items[:MAX_LISTED_ITEMS]:
        line = f"• {item.get('title', 'Unknown')}"
        if with_days and item.get("days_remaining") is not None:
            line += f" ({_plural(item['days_remaining'], 'day')} left)"
        lines.append(line)
    if len(items) > MAX_LISTED_ITEMS:
        lines.append(f"... and {len(items) - MAX_LISTED_ITEMS} more")
    return "\n".join(lines)


def build_embed(event: NotificationEvent, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Renders an event payload as a Discord embed.
    """
    items = payload.get("items") or []
    fields = []

    if event == NotificationEvent.ITEMS_MARKED:
        title = "Items Marked for Deletion"
        color = COLORS["warning"]
        description = f"**{_plural(len(items), 'item')}** marked for deletion."
        if payload.get("grace_period_days") is not None:
            description += f" Grace period: {_plural(payload['grace_period_days'], 'day')}."
        if payload.get("rule_name"):
            fields.append({"name": "Rule", "value": payload["rule_name"]})
    elif event == NotificationEvent.DELETION_IMMINENT:
        urgent = payload.get("urgency") == "high"
        title = "Imminent Deletions" if urgent else "Upcoming Deletions"
        color = COLORS["error"] if urgent else COLORS["warning"]
        description = f"**{_plural(len(items), 'item')}** will be deleted soon."
        if items:
            fields.append({"name": "Items", "value": _item_lines(items, with_days=True)})
        items = []
    elif event == NotificationEvent.DELETION_COMPLETE:
        title = "Deletion Complete"
        color = COLORS["warning"] if payload.get("failed") else COLORS["success"]
        description = (
            f"Deleted **{_plural(payload.get('items_deleted', 0), 'item')}**, "
            f"freed {format_bytes(payload.get('freed_space_bytes'))}."
        )
        if payload.get("failed"):
            fields.append({"name": "Failed", "value": str(payload["failed"])})
    elif event == NotificationEvent.SCAN_COMPLETE:
        title = "Library Scan Complete"
        color = COLORS["info"] if payload.get("items_flagged") else COLORS["success"]
        description = (
            f"Scanned {_plural(payload.get('items_scanned', 0), 'item')}, "
            f"flagged {payload.get('items_flagged', 0)}, protected {payload.get('items_protected', 0)}."
        )
    elif event == NotificationEvent.SCAN_ERROR:
        title = "Scan Failed"
        color = COLORS["error"]
        description = payload.get("error") or "Unknown error"
    elif event == NotificationEvent.DELETION_ERROR:
        title = "Deletion Error"
        color = COLORS["error"]
        description = f"Failed to delete **{payload.get('title', 'Unknown')}**: {payload.get('error', 'Unknown error')}"
    elif event == NotificationEvent.RULE_MATCHED:
        title = "Rule Matched"
        color = COLORS["info"]
        description = f"**{payload.get('title', 'Unknown')}** matched rule {payload.get('rule_name', '')}".rstrip()
    else:
        title = str(event)
        color = COLORS["info"]
        description = payload.get("message", "")

    if items:
        fields.append({"name": "Items", "value": _item_lines(items)})

    return {
        "title": title,
        "description": description,
        "color": color,
        "fields": fields,
        "timestamp": utc_now().isoformat(),
    }


class Notifier:
    """
    Fire-and-forget Discord webhook notifications.

    notify() never raises: delivery failures are logged and reported as False.
    """

    def __init__(self, webhook_url: Optional[str] = None, enabled: bool = False, timeout: int = 10):
        self.webhook_url = webhook_url
        self._enabled = enabled
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self.webhook_url)

    def notify(self, event: NotificationEvent, payload: Optional[Dict[str, Any]] = None) -> bool:
        event = NotificationEvent(event)
        if not self.enabled:
            logger.debug(f"Notifications disabled, dropping {event.value}")
            return False

        message = {"username": "Culler", "embeds": [build_embed(event, payload or {})]}
        try:
            response = requests.post(self.webhook_url, json=message, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send {event.value} notification: {e}")
            return False

        logger.info(f"Sent {event.value} notification")
        return True
