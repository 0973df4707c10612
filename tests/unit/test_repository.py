# Copyright (c) 2025 Trae AI. All rights reserved.

import sqlite3
import pytest
from datetime import timedelta
from culler.core.errors import InvalidRuleError
from culler.core.models import (
    ActivityEntry,
    DeletionAction,
    DeletionHistoryEntry,
    DeletionType,
    MediaFilters,
    MediaItem,
    MediaStatus,
    MediaType,
    Rule,
    RuleAction,
    RuleCondition,
)
from culler.infrastructure.db.database import Database

GB = 1024 ** 3


def test_create_and_get_round_trips_fields(make_item, media_repo, now):
    item = make_item(watched_by=["alice", "bob"], last_watched_at=now - timedelta(days=3), play_count=2)

    loaded = media_repo.get_by_id(item.id)
    assert loaded.title == "The Matrix"
    assert loaded.type == MediaType.MOVIE
    assert loaded.watched_by == ["alice", "bob"]
    assert loaded.last_watched_at == now - timedelta(days=3)
    assert loaded.status == MediaStatus.MONITORED


def test_update_rejects_unknown_columns(make_item, media_repo):
    item = make_item()
    with pytest.raises(ValueError):
        media_repo.update(item.id, {"title": "x", "status; DROP TABLE media_items": 1})


def test_update_missing_item_returns_none(media_repo):
    assert media_repo.update(999, {"title": "Nothing"}) is None


def test_update_stores_enums_and_booleans(make_item, media_repo, now):
    item = make_item()
    updated = media_repo.update(item.id, {
        "status": MediaStatus.PENDING_DELETION,
        "delete_after": now,
        "deletion_action": DeletionAction.FULL_REMOVAL,
        "reset_overseerr": True,
    })
    assert updated.status == MediaStatus.PENDING_DELETION
    assert updated.delete_after == now
    assert updated.deletion_action == DeletionAction.FULL_REMOVAL
    assert updated.reset_overseerr is True


def test_list_filters_and_paginates(make_item, media_repo, now):
    make_item(title="Alien", file_size=10 * GB)
    make_item(title="Aliens", file_size=20 * GB, play_count=3, last_watched_at=now - timedelta(days=2))
    make_item(title="Lost", type=MediaType.SHOW, sonarr_id=4, radarr_id=None, file_size=50 * GB)

    movies = media_repo.list(MediaFilters(type=MediaType.MOVIE))
    assert movies.total == 2
    assert [i.title for i in movies.items] == ["Alien", "Aliens"]

    assert media_repo.list(MediaFilters(search="lien")).total == 2
    assert [i.title for i in media_repo.list(MediaFilters(min_size=15 * GB)).items] == ["Aliens", "Lost"]
    assert [i.title for i in media_repo.list(MediaFilters(watched=False)).items] == ["Alien", "Lost"]
    assert [i.title for i in media_repo.list(MediaFilters(unwatched_days=30), now=now).items] == ["Alien", "Lost"]

    page = media_repo.list(MediaFilters(sort_by="file_size", sort_order="desc", limit=1, offset=1))
    assert page.total == 3
    assert [i.title for i in page.items] == ["Aliens"]


def test_list_ignores_unknown_sort_column(make_item, media_repo):
    make_item(title="B")
    make_item(title="A")
    page = media_repo.list(MediaFilters(sort_by="title; DROP TABLE media_items"))
    assert [i.title for i in page.items] == ["A", "B"]


def test_get_by_status(make_item, media_repo):
    make_item(title="Kept")
    flagged = make_item(title="Flagged", status=MediaStatus.FLAGGED)
    assert [i.id for i in media_repo.get_by_status(MediaStatus.FLAGGED)] == [flagged.id]


def _rule(**overrides):
    data = {
        "name": "Unwatched",
        "conditions": [RuleCondition(field="play_count", operator="equals", value=0)],
        "action": RuleAction.FLAG,
    }
    data.update(overrides)
    return Rule(**data)


def test_rule_create_and_enabled_ordering(rule_repo):
    rule_repo.create(_rule(name="b-rule"))
    rule_repo.create(_rule(name="a-rule"))
    disabled = rule_repo.create(_rule(name="c-rule", enabled=False))

    assert [r.name for r in rule_repo.get_enabled()] == ["a-rule", "b-rule"]
    assert [r.name for r in rule_repo.get_all()] == ["a-rule", "b-rule", "c-rule"]
    assert rule_repo.get_by_id(disabled.id).conditions[0].field == "play_count"


def test_rule_create_rejects_invalid_conditions(rule_repo):
    with pytest.raises(InvalidRuleError):
        rule_repo.create(_rule(conditions=[RuleCondition(field="size_gb", operator="contains", value="x")]))
    assert rule_repo.get_all() == []


def test_rule_update_and_toggle(rule_repo):
    rule = rule_repo.create(_rule())
    updated = rule_repo.update(rule.id, {"grace_period_days": 14, "action": "delete"})
    assert updated.grace_period_days == 14
    assert updated.action == RuleAction.DELETE

    assert rule_repo.set_enabled(rule.id, False).enabled is False
    assert rule_repo.update(999, {"name": "x"}) is None
    assert rule_repo.delete(rule.id)
    assert not rule_repo.delete(rule.id)


def test_history_stats(history_repo, now):
    for size in (GB, None):
        history_repo.add(DeletionHistoryEntry(
            media_item_id=1, title="Heat", type=MediaType.MOVIE, file_size=size, deleted_at=now,
            deletion_type=DeletionType.MANUAL, deletion_action=DeletionAction.DELETE_FILES_ONLY,
        ))

    assert history_repo.get_stats() == {"total_deleted": 2, "total_size_freed": GB}
    assert len(history_repo.get_recent(limit=1)) == 1


def test_scan_history_lifecycle(scan_repo, now):
    scan = scan_repo.start(now)
    scan_repo.complete(scan.id, items_scanned=10, items_flagged=2, now=now)
    failed = scan_repo.start(now)
    scan_repo.fail(failed.id, "database locked", now=now)

    recent = scan_repo.get_recent()
    assert recent[0].status == "failed"
    assert recent[0].error == "database locked"
    assert recent[1].items_scanned == 10


def test_activity_filter_by_event_type(activity_repo):
    activity_repo.log(ActivityEntry(event_type="deletion", action="deleted", actor_type="scheduler",
                                    metadata={"file_size_freed": 10}))
    activity_repo.log(ActivityEntry(event_type="protection", action="protected", actor_type="user"))

    deletions = activity_repo.get_recent(event_type="deletion")
    assert len(deletions) == 1
    assert deletions[0].metadata == {"file_size_freed": 10}


def test_old_database_is_migrated(tmp_path):
    path = tmp_path / "old.db"
    conn = sqlite3.connect(path)
    conn.execute("""
        CREATE TABLE media_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT, type TEXT NOT NULL, title TEXT NOT NULL,
            status TEXT DEFAULT 'monitored', delete_after TEXT
        )
    """)
    conn.commit()
    conn.close()

    db = Database(path)
    with db.get_connection() as conn:
        columns = [info[1] for info in conn.execute("PRAGMA table_info(media_items)").fetchall()]
    for column in ("deletion_action", "reset_overseerr", "matched_rule_id", "overseerr_reset_at", "requested_by"):
        assert column in columns


def test_memory_database_shares_one_connection():
    db = Database(":memory:")
    assert db.get_connection() is db.get_connection()
    with db.get_connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM media_items").fetchone()[0] == 0
