# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional
from ..core.errors import ItemNotFoundError, NotInQueueError
from ..core.models import (
    DeletionAction,
    DeletionHistoryEntry,
    DeletionProgress,
    DeletionResult,
    DeletionType,
    MediaItem,
    MediaStatus,
    ProcessQueueSummary,
    ProgressStage,
    utc_now,
)
from ..infrastructure.clients.arr import ContentManager, UnavailableContentManager
from ..infrastructure.clients.overseerr import RequestBroker, UnavailableRequestBroker
from ..infrastructure.db.repository import DeletionHistoryRepository, MediaRepository
from ..infrastructure.notifier import NotificationEvent, Notifier
from .audit import ActivityRecorder
from .progress import NullProgress, ProgressChannel
from .queue_service import QUEUE_FIELDS_CLEARED, DeletionQueue

logger = logging.getLogger(__name__)


class DeletionExecutor:
    """
    Applies deletion actions to queued items across the content managers and
    the request broker, then records the outcome.

    Only the configured adapters are passed in. Media types without a content
    manager, and a missing request broker, fall back to stand-ins whose calls
    do nothing.
    """

    def __init__(self, media_repo: MediaRepository, history_repo: DeletionHistoryRepository,
                 activity: ActivityRecorder, notifier: Notifier, queue: DeletionQueue,
                 content_managers: Iterable[ContentManager] = (),
                 request_broker: Optional[RequestBroker] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.media_repo = media_repo
        self.history_repo = history_repo
        self.activity = activity
        self.notifier = notifier
        self.queue = queue
        self.content_managers = {}
        for manager in content_managers:
            for media_type in manager.media_types or (manager.media_type,):
                self.content_managers[media_type] = manager
        self.request_broker = request_broker or UnavailableRequestBroker()
        self.clock = clock

    def _content_manager(self, item: MediaItem):
        manager = self.content_managers.get(item.type)
        if manager is None:
            return UnavailableContentManager(item.type), None
        external_id = manager.external_id(item)
        if external_id is None:
            logger.warning(f"'{item.title}' has no {manager.service_name} id, skipping {manager.service_name} actions")
            return UnavailableContentManager(item.type), None
        return manager, external_id

    def _run_action(self, item: MediaItem, action: DeletionAction, progress: ProgressChannel) -> List[str]:
        """
        Runs every side effect of the action, continuing past failures.
        Returns the error messages of the steps that failed.
        """
        manager, external_id = self._content_manager(item)
        errors = []

        if action.unmonitors:
            progress.emit(ProgressStage.UNMONITORING, f"Unmonitoring {item.title} in {manager.service_name}")
            try:
                manager.unmonitor(external_id)
            except Exception as e:
                logger.error(f"Failed to unmonitor '{item.title}': {e}")
                errors.append(f"Unmonitor failed: {e}")

        if action.deletes_files:
            progress.emit(ProgressStage.DELETING_FILES, f"Deleting files for {item.title}")
            try:
                for file_progress in manager.iter_delete_files(external_id):
                    progress.emit(
                        ProgressStage.DELETING_FILES,
                        f"{file_progress.status.capitalize()} {file_progress.file_name} "
                        f"({file_progress.current}/{file_progress.total})",
                        file_progress=file_progress,
                    )
            except Exception as e:
                logger.error(f"Failed to delete files for '{item.title}': {e}")
                errors.append(f"File deletion failed: {e}")

        if action == DeletionAction.FULL_REMOVAL:
            progress.emit(ProgressStage.DELETING_FILES, f"Removing {item.title} from {manager.service_name}")
            try:
                manager.remove(external_id)
            except Exception as e:
                logger.error(f"Failed to remove '{item.title}': {e}")
                errors.append(f"Removal failed: {e}")

        return errors

    def _reset_request(self, item: MediaItem, result: DeletionResult, progress: ProgressChannel):
        # Never affects result.success
        if not item.tmdb_id:
            logger.info(f"'{item.title}' has no TMDB id, skipping request reset")
            return
        progress.emit(ProgressStage.RESETTING_OVERSEERR, f"Resetting request for {item.title}")
        try:
            result.overseerr_reset = bool(self.request_broker.reset(item.tmdb_id, item.type))
        except Exception as e:
            logger.warning(f"Request reset failed for '{item.title}': {e}")
            result.overseerr_error = str(e)

    def execute_delete(self, item: MediaItem, action: Optional[DeletionAction] = None,
                       reset_overseerr: Optional[bool] = None, rule_id: Optional[int] = None,
                       deletion_type: DeletionType = DeletionType.AUTOMATIC,
                       progress: Optional[ProgressChannel] = None) -> DeletionResult:
        """
        Deletes a single item. Arguments left as None fall back to what was
        stored when the item was queued.

        file_size_freed is the item's recorded size for every action except
        unmonitor_only, not a measurement taken after the deletion.
        """
        action = DeletionAction.normalize(action if action is not None else item.deletion_action)
        if reset_overseerr is None:
            reset_overseerr = item.reset_overseerr
        if rule_id is None:
            rule_id = item.matched_rule_id
        progress = progress or NullProgress()

        progress.emit(ProgressStage.STARTING, f"Starting {action.value} for {item.title}")
        errors = self._run_action(item, action, progress)
        if errors:
            result = DeletionResult(
                item_id=item.id, title=item.title, action=action, success=False, error="; ".join(errors),
            )
            progress.emit(ProgressStage.ERROR, result.error, result=result)
            return result

        result = DeletionResult(
            item_id=item.id,
            title=item.title,
            action=action,
            success=True,
            file_size_freed=(item.file_size or 0) if action.frees_space else 0,
        )
        if reset_overseerr:
            self._reset_request(item, result, progress)

        self._record_success(item, action, result, deletion_type, rule_id)
        logger.info(f"Deleted '{item.title}' ({action.value})")
        progress.emit(ProgressStage.COMPLETE, f"Finished {action.value} for {item.title}", result=result)
        return result

    def _record_success(self, item: MediaItem, action: DeletionAction, result: DeletionResult,
                        deletion_type: DeletionType, rule_id: Optional[int]):
        now = self.clock()
        try:
            self.history_repo.add(DeletionHistoryEntry(
                media_item_id=item.id,
                title=item.title,
                type=item.type,
                file_size=item.file_size if action.frees_space else None,
                deleted_at=now,
                deletion_type=deletion_type,
                deletion_action=action,
                deleted_by_rule_id=rule_id,
                overseerr_reset=result.overseerr_reset,
            ))
        except sqlite3.Error as e:
            logger.warning(f"Failed to write deletion history for '{item.title}': {e}")

        if deletion_type == DeletionType.MANUAL:
            actor_type = "user"
        else:
            actor_type = "rule" if rule_id else "scheduler"
        self.activity.record(
            "deletion",
            "unmonitored" if action == DeletionAction.UNMONITOR_ONLY else "deleted",
            actor_type=actor_type,
            actor_id=str(rule_id) if rule_id else None,
            item=item,
            metadata={
                "deletion_action": action.value,
                "file_size_freed": result.file_size_freed,
                "overseerr_reset": result.overseerr_reset,
                "overseerr_error": result.overseerr_error,
            },
        )

        if action == DeletionAction.FULL_REMOVAL:
            self.media_repo.delete(item.id)
            return

        # The history entry keeps the action; the item drops its queue fields
        fields = dict(QUEUE_FIELDS_CLEARED)
        fields["status"] = MediaStatus.DELETED
        if result.overseerr_reset:
            fields["overseerr_reset_at"] = now
        self.media_repo.update(item.id, fields)

    def _preview(self, item: MediaItem, action: DeletionAction) -> DeletionResult:
        return DeletionResult(
            item_id=item.id,
            title=item.title,
            action=action,
            success=True,
            file_size_freed=(item.file_size or 0) if action.frees_space else 0,
            overseerr_reset=bool(item.reset_overseerr and item.tmdb_id and self.request_broker.available),
            dry_run=True,
        )

    def process_pending_deletions(self, dry_run: bool = False, now: Optional[datetime] = None) -> List[DeletionResult]:
        """
        Deletes every queued item whose grace period has elapsed. Each item is
        handled independently; a failure is recorded and the pass continues.
        With dry_run nothing is changed and the would-be results are returned.
        """
        results = []
        for entry in self.queue.get_pending_deletions(now):
            item = entry.item
            action = DeletionAction.normalize(item.deletion_action)
            if dry_run:
                results.append(self._preview(item, action))
                continue

            try:
                result = self.execute_delete(item, action, deletion_type=DeletionType.AUTOMATIC)
            except Exception as e:
                logger.error(f"Error deleting '{item.title}': {e}")
                result = DeletionResult(item_id=item.id, title=item.title, action=action, success=False, error=str(e))

            if not result.success:
                self.notifier.notify(NotificationEvent.DELETION_ERROR, {"title": item.title, "error": result.error})
            results.append(result)
        return results

    def process_queue(self, dry_run: bool = False, now: Optional[datetime] = None) -> ProcessQueueSummary:
        results = self.process_pending_deletions(dry_run, now)
        summary = ProcessQueueSummary(dry_run=dry_run, results=results, processed=len(results))
        for result in results:
            if result.success:
                summary.deleted += 1
                summary.freed_space_bytes += result.file_size_freed
                if result.overseerr_reset:
                    summary.overseerr_resets += 1
            else:
                summary.failed += 1

        logger.info(
            f"Processed deletion queue{' (dry run)' if dry_run else ''}: "
            f"{summary.deleted} deleted, {summary.failed} failed, {summary.freed_space_bytes} bytes freed"
        )
        if summary.deleted and not dry_run:
            self.notifier.notify(NotificationEvent.DELETION_COMPLETE, {
                "items_deleted": summary.deleted,
                "freed_space_bytes": summary.freed_space_bytes,
                "failed": summary.failed,
                "items": [{"title": r.title} for r in results if r.success],
            })
        return summary

    def _require_queued(self, item_id: int) -> MediaItem:
        item = self.media_repo.get_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        if item.status != MediaStatus.PENDING_DELETION:
            raise NotInQueueError(item_id)
        return item

    def execute_delete_now(self, item_id: int, progress: Optional[ProgressChannel] = None) -> DeletionResult:
        """
        Deletes a queued item immediately, ignoring the remaining grace period.
        """
        item = self._require_queued(item_id)
        result = self.execute_delete(item, deletion_type=DeletionType.MANUAL, progress=progress)
        if not result.success:
            self.notifier.notify(NotificationEvent.DELETION_ERROR, {"title": item.title, "error": result.error})
        return result

    def stream_delete_now(self, item_id: int) -> Iterator[DeletionProgress]:
        """
        Like execute_delete_now, but runs in a worker thread and yields the
        progress events. The deletion keeps running if the consumer stops
        iterating.
        """
        self._require_queued(item_id)
        channel = ProgressChannel(item_id)

        def run():
            try:
                self.execute_delete_now(item_id, progress=channel)
            except Exception as e:
                logger.error(f"Immediate deletion of item {item_id} failed: {e}")
                channel.emit(ProgressStage.ERROR, str(e))
            finally:
                channel.close()

        threading.Thread(target=run, name=f"delete-now-{item_id}", daemon=True).start()
        return iter(channel)
