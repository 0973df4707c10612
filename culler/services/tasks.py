# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from ..core.models import TaskResult, utc_now
from ..infrastructure.notifier import NotificationEvent, Notifier
from .deletion_service import DeletionExecutor
from .queue_service import DeletionQueue
from .scan_service import ScanService

logger = logging.getLogger(__name__)

SCAN_LIBRARIES = "scanLibraries"
PROCESS_DELETION_QUEUE = "processDeletionQueue"
SEND_DELETION_REMINDERS = "sendDeletionReminders"

IMMINENT_DAYS = 1
UPCOMING_DAYS = 3


class Tasks:
    """
    The parameterless task functions driven by the scheduler.

    Every task returns a TaskResult; failures are reported in the result
    instead of being raised.
    """

    def __init__(self, scan_service: ScanService, queue: DeletionQueue, executor: DeletionExecutor,
                 notifier: Notifier, clock: Callable[[], datetime] = utc_now):
        self.scan_service = scan_service
        self.queue = queue
        self.executor = executor
        self.notifier = notifier
        self.clock = clock

    def registry(self) -> Dict[str, Callable[[], TaskResult]]:
        return {
            SCAN_LIBRARIES: self.scan_libraries,
            PROCESS_DELETION_QUEUE: self.process_deletion_queue,
            SEND_DELETION_REMINDERS: self.send_deletion_reminders,
        }

    def _result(self, task_name: str, started_at: datetime, success: bool, message: str = "",
                error: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> TaskResult:
        completed_at = self.clock()
        return TaskResult(
            success=success,
            task_name=task_name,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            message=message,
            error=error,
            data=data or {},
        )

    def scan_libraries(self) -> TaskResult:
        started_at = self.clock()
        try:
            scan = self.scan_service.run_scan()
        except Exception as e:
            logger.error(f"Library scan failed: {e}")
            return self._result(SCAN_LIBRARIES, started_at, False, "Library scan failed", error=str(e))

        return self._result(
            SCAN_LIBRARIES,
            started_at,
            True,
            f"Scanned {scan.items_scanned} items, flagged {scan.items_flagged}",
            data=scan.model_dump(),
        )

    def process_deletion_queue(self) -> TaskResult:
        started_at = self.clock()
        try:
            summary = self.executor.process_queue(dry_run=False)
        except Exception as e:
            logger.error(f"Deletion queue processing failed: {e}")
            return self._result(PROCESS_DELETION_QUEUE, started_at, False, "Deletion queue processing failed", error=str(e))

        errors = [f"{r.title}: {r.error}" for r in summary.results if not r.success]
        return self._result(
            PROCESS_DELETION_QUEUE,
            started_at,
            not errors,
            f"Processed {summary.processed} items: {summary.deleted} deleted, {summary.failed} failed",
            error="; ".join(errors) or None,
            data=summary.model_dump(exclude={"results"}),
        )

    def send_deletion_reminders(self) -> TaskResult:
        started_at = self.clock()
        if not self.notifier.enabled:
            return self._result(
                SEND_DELETION_REMINDERS, started_at, False, "Reminders not sent",
                error="Notifications are not configured",
            )

        try:
            queue = self.queue.get_queue(started_at)
        except Exception as e:
            logger.error(f"Could not load the deletion queue: {e}")
            return self._result(SEND_DELETION_REMINDERS, started_at, False, "Reminders not sent", error=str(e))

        imminent = [e for e in queue if e.days_remaining <= IMMINENT_DAYS]
        upcoming = [e for e in queue if IMMINENT_DAYS < e.days_remaining <= UPCOMING_DAYS]

        sent = 0
        for entries, urgency in ((imminent, "high"), (upcoming, "medium")):
            if not entries:
                continue
            self.notifier.notify(NotificationEvent.DELETION_IMMINENT, {
                "urgency": urgency,
                "items": [
                    {"id": e.item.id, "title": e.item.title, "days_remaining": e.days_remaining}
                    for e in entries
                ],
            })
            sent += 1

        return self._result(
            SEND_DELETION_REMINDERS,
            started_at,
            True,
            f"Sent {sent} reminders for {len(imminent) + len(upcoming)} items",
            data={"imminent": len(imminent), "upcoming": len(upcoming), "notifications_sent": sent},
        )
