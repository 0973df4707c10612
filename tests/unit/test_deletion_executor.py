# Copyright (c) 2025 Trae AI. All rights reserved.

import pytest
from culler.core.errors import ItemNotFoundError, NotInQueueError, ServiceError
from culler.core.models import DeletionAction, DeletionType, MediaStatus, MediaType, ProgressStage
from culler.services.deletion_service import DeletionExecutor
from culler.services.progress import ProgressChannel

SIZE = 5_000_000_000


@pytest.fixture
def show(make_item):
    return make_item(type=MediaType.SHOW, title="Lost", sonarr_id=42, radarr_id=None, tmdb_id=4607, file_size=SIZE)


def test_unmonitor_only_frees_nothing(executor, show, sonarr):
    result = executor.execute_delete(show, DeletionAction.UNMONITOR_ONLY, reset_overseerr=False)
    assert result.success
    assert result.file_size_freed == 0
    assert sonarr.calls == [("unmonitor", 42)]


def test_delete_files_only_frees_recorded_size(executor, show, sonarr):
    result = executor.execute_delete(show, DeletionAction.DELETE_FILES_ONLY, reset_overseerr=False)
    assert result.success
    assert result.file_size_freed == SIZE
    assert sonarr.calls == [("delete_files", 42)]


def test_unmonitor_and_delete_marks_item_deleted(executor, show, sonarr, media_repo, history_repo):
    result = executor.execute_delete(show, DeletionAction.UNMONITOR_AND_DELETE, reset_overseerr=False, rule_id=9)

    assert result.success
    assert sonarr.calls == [("unmonitor", 42), ("delete_files", 42)]
    stored = media_repo.get_by_id(show.id)
    assert stored.status == MediaStatus.DELETED
    assert stored.delete_after is None

    entry = history_repo.get_recent()[0]
    assert entry.media_item_id == show.id
    assert entry.file_size == SIZE
    assert entry.deletion_type == DeletionType.AUTOMATIC
    assert entry.deleted_by_rule_id == 9


def test_full_removal_deletes_local_record(executor, show, sonarr, media_repo, activity_repo):
    result = executor.execute_delete(show, DeletionAction.FULL_REMOVAL, reset_overseerr=False)

    assert result.success
    assert result.file_size_freed == SIZE
    assert sonarr.calls == [("remove", 42)]
    assert media_repo.get_by_id(show.id) is None
    assert activity_repo.get_recent(event_type="deletion")[0].action == "deleted"


def test_broker_failure_does_not_fail_deletion(executor, show, broker, media_repo):
    broker.error = ServiceError("overseerr", "connection refused")
    result = executor.execute_delete(show, DeletionAction.UNMONITOR_AND_DELETE, reset_overseerr=True)

    assert result.success is True
    assert result.overseerr_reset is False
    assert "connection refused" in result.overseerr_error
    assert media_repo.get_by_id(show.id).status == MediaStatus.DELETED


def test_broker_reset_success(executor, show, broker, media_repo, now):
    result = executor.execute_delete(show, DeletionAction.DELETE_FILES_ONLY, reset_overseerr=True)

    assert result.overseerr_reset is True
    assert broker.calls == [(4607, MediaType.SHOW)]
    assert media_repo.get_by_id(show.id).overseerr_reset_at == now


def test_broker_skipped_without_tmdb_id(executor, make_item, broker):
    item = make_item(tmdb_id=None)
    result = executor.execute_delete(item, DeletionAction.DELETE_FILES_ONLY, reset_overseerr=True)
    assert result.success
    assert broker.calls == []


def test_partial_failure_continues_and_keeps_status(executor, show, sonarr, queue, media_repo, history_repo):
    queue.mark_for_deletion(show.id, 0)
    show = media_repo.get_by_id(show.id)
    sonarr.fail_on.add("unmonitor")

    result = executor.execute_delete(show, DeletionAction.UNMONITOR_AND_DELETE, reset_overseerr=True)

    assert result.success is False
    assert "unmonitor failed" in result.error
    assert ("delete_files", 42) in sonarr.calls
    assert media_repo.get_by_id(show.id).status == MediaStatus.PENDING_DELETION
    assert history_repo.get_recent() == []


def test_missing_content_manager_is_noop(media_repo, history_repo, activity, notifier, queue, make_item):
    executor = DeletionExecutor(media_repo, history_repo, activity, notifier, queue)
    item = make_item()

    result = executor.execute_delete(item, DeletionAction.UNMONITOR_AND_DELETE, reset_overseerr=True)
    assert result.success
    assert result.overseerr_reset is False
    assert media_repo.get_by_id(item.id).status == MediaStatus.DELETED


def test_uses_action_stored_on_item(executor, queue, show, sonarr, media_repo):
    queue.mark_for_deletion(show.id, 0, action=DeletionAction.UNMONITOR_ONLY)
    result = executor.execute_delete(media_repo.get_by_id(show.id))
    assert result.action == DeletionAction.UNMONITOR_ONLY
    assert sonarr.calls == [("unmonitor", 42)]


def test_progress_events_in_order(executor, show, broker):
    channel = ProgressChannel(show.id)
    executor.execute_delete(show, DeletionAction.UNMONITOR_AND_DELETE, reset_overseerr=True, progress=channel)
    channel.close()

    events = list(channel)
    stages = [e.stage for e in events]
    assert stages[0] == ProgressStage.STARTING
    assert stages[-1] == ProgressStage.COMPLETE
    assert stages.index(ProgressStage.UNMONITORING) < stages.index(ProgressStage.DELETING_FILES)
    assert stages.index(ProgressStage.DELETING_FILES) < stages.index(ProgressStage.RESETTING_OVERSEERR)

    file_events = [e.file_progress for e in events if e.file_progress]
    assert file_events[-1].current == file_events[-1].total == 2
    assert file_events[-1].status == "deleted"
    assert events[-1].result.success


def test_error_event_on_failure(executor, show, sonarr):
    sonarr.fail_on.add("delete_files")
    channel = ProgressChannel(show.id)
    executor.execute_delete(show, DeletionAction.DELETE_FILES_ONLY, reset_overseerr=False, progress=channel)
    channel.close()

    events = list(channel)
    assert events[-1].stage == ProgressStage.ERROR
    assert events[-1].result.success is False


def test_execute_delete_now_requires_queue(executor, show):
    with pytest.raises(NotInQueueError):
        executor.execute_delete_now(show.id)
    with pytest.raises(ItemNotFoundError):
        executor.execute_delete_now(404)


def test_execute_delete_now_is_manual(executor, queue, show, history_repo):
    queue.mark_for_deletion(show.id, 30)
    result = executor.execute_delete_now(show.id)

    assert result.success
    assert history_repo.get_recent()[0].deletion_type == DeletionType.MANUAL


def test_stream_delete_now_yields_until_complete(executor, queue, show, media_repo):
    queue.mark_for_deletion(show.id, 30, action=DeletionAction.DELETE_FILES_ONLY)
    events = list(executor.stream_delete_now(show.id))

    assert events[0].stage == ProgressStage.STARTING
    assert events[-1].stage == ProgressStage.COMPLETE
    assert media_repo.get_by_id(show.id).status == MediaStatus.DELETED


def test_stream_delete_now_validates_before_streaming(executor, show):
    with pytest.raises(NotInQueueError):
        executor.stream_delete_now(show.id)


def test_episode_is_deleted_through_sonarr(executor, queue, make_item, sonarr, media_repo, history_repo):
    episode = make_item(type=MediaType.EPISODE, title="Lost S01E01", sonarr_id=5, radarr_id=None, file_size=100)
    queue.mark_for_deletion(episode.id, 0)

    summary = executor.process_queue()

    assert summary.deleted == 1
    assert sonarr.calls == [("unmonitor", 5), ("delete_files", 5)]
    assert media_repo.get_by_id(episode.id).status == MediaStatus.DELETED
    assert history_repo.get_recent()[0].file_size == 100


def test_deleted_item_drops_queue_fields(executor, queue, show, media_repo, history_repo):
    queue.mark_for_deletion(show.id, 0, rule_id=3, action=DeletionAction.DELETE_FILES_ONLY, reset_overseerr=True)
    executor.execute_delete(media_repo.get_by_id(show.id))

    stored = media_repo.get_by_id(show.id)
    assert stored.status == MediaStatus.DELETED
    assert stored.marked_at is None
    assert stored.delete_after is None
    assert stored.deletion_action is None
    assert stored.reset_overseerr is False
    assert stored.matched_rule_id is None
    assert history_repo.get_recent()[0].deletion_action == DeletionAction.DELETE_FILES_ONLY
