# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional
from ..core.config import DeletionConfig
from ..core.errors import ItemNotFoundError, ItemProtectedError
from ..core.models import (
    BulkResult,
    DeletionAction,
    MediaItem,
    MediaStatus,
    QueueItem,
    utc_now,
)
from ..infrastructure.db.repository import MediaRepository
from ..infrastructure.notifier import NotificationEvent, Notifier
from .audit import ActivityRecorder

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# Grace-period fields only exist while an item is queued.
QUEUE_FIELDS_CLEARED = {
    "marked_at": None,
    "delete_after": None,
    "deletion_action": None,
    "reset_overseerr": False,
    "matched_rule_id": None,
}


def days_remaining(delete_after: datetime, now: datetime) -> int:
    """
    Whole days until the deadline, rounded up and clamped at zero.
    """
    return max(0, math.ceil((delete_after - now).total_seconds() / SECONDS_PER_DAY))


class DeletionQueue:
    def __init__(self, media_repo: MediaRepository, activity: ActivityRecorder, notifier: Notifier,
                 defaults: Optional[DeletionConfig] = None, clock: Callable[[], datetime] = utc_now):
        self.media_repo = media_repo
        self.activity = activity
        self.notifier = notifier
        self.defaults = defaults or DeletionConfig()
        self.clock = clock

    def _require(self, item_id: int) -> MediaItem:
        item = self.media_repo.get_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def mark_for_deletion(self, item_id: int, grace_period_days: Optional[int] = None,
                          rule_id: Optional[int] = None, action: Optional[DeletionAction] = None,
                          reset_overseerr: bool = False, rule_name: Optional[str] = None,
                          now: Optional[datetime] = None) -> MediaItem:
        """
        Queues an item for deletion once the grace period has elapsed.

        The action and the Overseerr reset flag are stored with the item and
        replayed as-is when the deletion runs.
        """
        item = self._require(item_id)
        if item.protected:
            raise ItemProtectedError(item_id, item.title)

        if grace_period_days is None:
            grace_period_days = self.defaults.default_grace_period_days
        if grace_period_days < 0:
            raise ValueError("grace_period_days must not be negative")
        action = DeletionAction.normalize(action) if action is not None else self.defaults.default_action

        now = now or self.clock()
        delete_after = now + timedelta(days=grace_period_days)
        updated = self.media_repo.update(item_id, {
            "status": MediaStatus.PENDING_DELETION,
            "marked_at": now,
            "delete_after": delete_after,
            "deletion_action": action,
            "reset_overseerr": reset_overseerr,
            "matched_rule_id": rule_id,
        })
        logger.info(f"Queued '{item.title}' for deletion after {delete_after.isoformat()} ({action.value})")

        self.activity.record(
            "rule_match" if rule_id else "manual_action",
            "item_queued",
            actor_type="rule" if rule_id else "user",
            actor_id=str(rule_id) if rule_id else None,
            actor_name=rule_name,
            item=item,
            metadata={
                "grace_period_days": grace_period_days,
                "delete_after": delete_after.isoformat(),
                "deletion_action": action.value,
                "reset_overseerr": reset_overseerr,
            },
        )
        self.notifier.notify(NotificationEvent.ITEMS_MARKED, {
            "items": [{"id": item.id, "title": item.title, "type": item.type.value}],
            "grace_period_days": grace_period_days,
            "rule_name": rule_name,
        })
        return updated

    def unmark_for_deletion(self, item_id: int) -> MediaItem:
        """
        Returns an item to monitored, or to protected when the protection flag
        is set. Always allowed, whether or not it was queued.
        """
        item = self._require(item_id)
        fields = dict(QUEUE_FIELDS_CLEARED)
        fields["status"] = MediaStatus.PROTECTED if item.is_protected else MediaStatus.MONITORED
        updated = self.media_repo.update(item_id, fields)
        logger.info(f"Removed '{item.title}' from the deletion queue")
        self.activity.record("manual_action", "item_unqueued", actor_type="user", item=item)
        return updated

    def protect(self, item_id: int, reason: Optional[str] = None) -> MediaItem:
        item = self._require(item_id)
        fields = dict(QUEUE_FIELDS_CLEARED)
        fields.update({"status": MediaStatus.PROTECTED, "is_protected": True, "protection_reason": reason})
        updated = self.media_repo.update(item_id, fields)
        self.activity.record("protection", "protected", actor_type="user", item=item, metadata={"reason": reason})
        return updated

    def unprotect(self, item_id: int) -> MediaItem:
        item = self._require(item_id)
        updated = self.media_repo.update(item_id, {
            "status": MediaStatus.MONITORED, "is_protected": False, "protection_reason": None,
        })
        self.activity.record("protection", "unprotected", actor_type="user", item=item)
        return updated

    def get_queue(self, now: Optional[datetime] = None) -> List[QueueItem]:
        """
        All queued items, soonest deadline first.
        """
        now = now or self.clock()
        entries = []
        for item in self.media_repo.get_by_status(MediaStatus.PENDING_DELETION):
            if item.delete_after is None:
                logger.warning(f"Queued item '{item.title}' ({item.id}) has no deletion date, skipping")
                continue
            entries.append(QueueItem(item=item, days_remaining=days_remaining(item.delete_after, now)))
        entries.sort(key=lambda e: (e.days_remaining, e.item.delete_after, e.item.id))
        return entries

    def get_pending_deletions(self, now: Optional[datetime] = None) -> List[QueueItem]:
        return [entry for entry in self.get_queue(now) if entry.is_ready]

    def get_statistics(self, now: Optional[datetime] = None) -> Dict[str, int]:
        queue = self.get_queue(now)
        return {
            "queue_size": len(queue),
            "pending_deletions": sum(1 for entry in queue if entry.is_ready),
            "total_size_to_free": sum(entry.item.file_size or 0 for entry in queue),
        }

    def bulk_mark(self, item_ids: Iterable[int], grace_period_days: Optional[int] = None,
                  action: Optional[DeletionAction] = None, reset_overseerr: bool = False) -> BulkResult:
        result = BulkResult()
        for item_id in item_ids:
            try:
                self.mark_for_deletion(item_id, grace_period_days, action=action, reset_overseerr=reset_overseerr)
                result.success += 1
            except Exception as e:
                logger.warning(f"Could not queue item {item_id}: {e}")
                result.failed += 1
                result.errors.append({"item_id": item_id, "error": str(e)})
        return result

    def bulk_unmark(self, item_ids: Iterable[int]) -> BulkResult:
        result = BulkResult()
        for item_id in item_ids:
            try:
                self.unmark_for_deletion(item_id)
                result.success += 1
            except Exception as e:
                logger.warning(f"Could not unqueue item {item_id}: {e}")
                result.failed += 1
                result.errors.append({"item_id": item_id, "error": str(e)})
        return result
