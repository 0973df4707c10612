# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from datetime import datetime
from typing import Callable, Optional
from ..core.models import MediaStatus, RuleAction, ScanResult, utc_now
from ..core.rules import find_matching_rule
from ..infrastructure.db.repository import MediaRepository, RuleRepository, ScanHistoryRepository
from ..infrastructure.notifier import NotificationEvent, Notifier
from .audit import ActivityRecorder
from .queue_service import DeletionQueue

logger = logging.getLogger(__name__)


class ScanService:
    """
    Runs the enabled rules over every monitored item and applies the action of
    the first matching rule.
    """

    def __init__(self, media_repo: MediaRepository, rule_repo: RuleRepository,
                 scan_repo: ScanHistoryRepository, queue: DeletionQueue,
                 activity: ActivityRecorder, notifier: Notifier,
                 clock: Callable[[], datetime] = utc_now):
        self.media_repo = media_repo
        self.rule_repo = rule_repo
        self.scan_repo = scan_repo
        self.queue = queue
        self.activity = activity
        self.notifier = notifier
        self.clock = clock

    def run_scan(self, update_progress: Optional[Callable[[int, str], None]] = None) -> ScanResult:
        record = self.scan_repo.start(self.clock())
        result = ScanResult(scan_id=record.id)
        self.activity.record("scan", "started", metadata={"scan_id": record.id})

        try:
            rules = self.rule_repo.get_enabled()
            items = self.media_repo.get_by_status(MediaStatus.MONITORED)
            logger.info(f"Scanning {len(items)} monitored items against {len(rules)} rules")

            for index, item in enumerate(items, start=1):
                if update_progress:
                    update_progress(int(index * 100 / len(items)), f"Evaluating {item.title}")
                result.items_scanned += 1
                if item.protected:
                    result.items_protected += 1
                    continue

                try:
                    rule = find_matching_rule(item, rules, self.clock())
                    if rule is None:
                        continue

                    if rule.action == RuleAction.FLAG:
                        self.media_repo.update(item.id, {"status": MediaStatus.FLAGGED, "matched_rule_id": rule.id})
                        result.items_flagged += 1
                    elif rule.action == RuleAction.DELETE:
                        self.queue.mark_for_deletion(
                            item.id,
                            rule.grace_period_days,
                            rule_id=rule.id,
                            action=rule.deletion_action,
                            reset_overseerr=rule.reset_overseerr,
                            rule_name=rule.name,
                        )
                        result.items_flagged += 1
                    elif rule.action == RuleAction.NOTIFY:
                        self.notifier.notify(NotificationEvent.RULE_MATCHED, {"title": item.title, "rule_name": rule.name})

                    if rule.action != RuleAction.DELETE:
                        self.activity.record(
                            "rule_match", rule.action.value, actor_type="rule",
                            actor_id=str(rule.id), actor_name=rule.name, item=item,
                        )
                except Exception as e:
                    logger.error(f"Error evaluating '{item.title}': {e}")
                    result.errors += 1

            self.scan_repo.complete(record.id, result.items_scanned, result.items_flagged, self.clock())
        except Exception as e:
            logger.error(f"Scan {record.id} failed: {e}")
            self.scan_repo.fail(record.id, str(e), self.clock())
            self.activity.record("error", "scan_failed", metadata={"scan_id": record.id, "error": str(e)})
            self.notifier.notify(NotificationEvent.SCAN_ERROR, {"error": str(e)})
            raise

        logger.info(
            f"Scan complete: {result.items_scanned} scanned, {result.items_flagged} flagged, "
            f"{result.items_protected} protected, {result.errors} errors"
        )
        self.activity.record("scan", "completed", metadata=result.model_dump())
        self.notifier.notify(NotificationEvent.SCAN_COMPLETE, result.model_dump())
        return result
