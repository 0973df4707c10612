# Copyright (c) 2025 Trae AI. All rights reserved.

import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from ...core.conditions import validate_conditions
from ...core.models import (
    ActivityEntry,
    DeletionHistoryEntry,
    MediaFilters,
    MediaItem,
    MediaPage,
    MediaStatus,
    Rule,
    ScanRecord,
    utc_now,
)
from .database import Database

MEDIA_COLUMNS = [
    "type", "title", "plex_id", "sonarr_id", "radarr_id", "tmdb_id", "imdb_id", "tvdb_id",
    "year", "poster_url", "file_path", "file_size", "resolution", "codec", "added_at",
    "last_watched_at", "play_count", "watched_by", "status", "marked_at", "delete_after",
    "is_protected", "protection_reason", "deletion_action", "reset_overseerr",
    "matched_rule_id", "overseerr_reset_at", "requested_by",
]

MEDIA_SORT_COLUMNS = {
    "title", "file_size", "added_at", "last_watched_at", "play_count", "delete_after", "created_at", "year",
}


def _db_value(value: Any) -> Any:
    """
    Converts model values into something sqlite can store.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


class MediaRepository:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_item(row) -> MediaItem:
        data = dict(row)
        data["watched_by"] = json.loads(data["watched_by"]) if data.get("watched_by") else []
        return MediaItem(**data)

    def create(self, item: MediaItem) -> MediaItem:
        data = item.model_dump(exclude={"id"})
        placeholders = ", ".join("?" for _ in MEDIA_COLUMNS)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO media_items ({', '.join(MEDIA_COLUMNS)}) VALUES ({placeholders})",
                tuple(_db_value(data.get(column)) for column in MEDIA_COLUMNS),
            )
            conn.commit()
            item_id = cursor.lastrowid
        return self.get_by_id(item_id)

    def get_by_id(self, item_id: int) -> Optional[MediaItem]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT * FROM media_items WHERE id = ?", (item_id,))
            row = cursor.fetchone()
            return self._to_item(row) if row else None

    def update(self, item_id: int, fields: Dict[str, Any]) -> Optional[MediaItem]:
        """
        Single-row update of the given columns. Returns the updated item, or
        None when no row has this id.
        """
        unknown = set(fields) - set(MEDIA_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown media item columns: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_by_id(item_id)

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [_db_value(value) for value in fields.values()]
        params.append(item_id)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE media_items SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(params),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_by_id(item_id)

    def delete(self, item_id: int) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute("DELETE FROM media_items WHERE id = ?", (item_id,))
            conn.commit()
            return cursor.rowcount > 0

    def get_by_status(self, status: MediaStatus) -> List[MediaItem]:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM media_items WHERE status = ? ORDER BY id", (MediaStatus(status).value,)
            )
            return [self._to_item(row) for row in cursor.fetchall()]

    def list(self, filters: Optional[MediaFilters] = None, now: Optional[datetime] = None) -> MediaPage:
        filters = filters or MediaFilters()
        clauses = []
        params: List[Any] = []

        if filters.type:
            clauses.append("type = ?")
            params.append(filters.type.value)
        if filters.status:
            clauses.append("status = ?")
            params.append(filters.status.value)
        if filters.search:
            clauses.append("title LIKE ?")
            params.append(f"%{filters.search}%")
        if filters.min_size is not None:
            clauses.append("file_size >= ?")
            params.append(filters.min_size)
        if filters.max_size is not None:
            clauses.append("file_size <= ?")
            params.append(filters.max_size)
        if filters.watched is True:
            clauses.append("play_count > 0")
        elif filters.watched is False:
            clauses.append("(play_count IS NULL OR play_count = 0)")
        if filters.unwatched_days is not None:
            cutoff = (now or utc_now()) - timedelta(days=filters.unwatched_days)
            clauses.append("(last_watched_at IS NULL OR last_watched_at < ?)")
            params.append(cutoff.isoformat())
        if filters.is_protected is not None:
            clauses.append("is_protected = ?")
            params.append(int(filters.is_protected))

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sort_by = filters.sort_by if filters.sort_by in MEDIA_SORT_COLUMNS else "title"
        order = "DESC" if filters.sort_order == "desc" else "ASC"

        with self.db.get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM media_items{where}", tuple(params)).fetchone()[0]
            cursor = conn.execute(
                f"SELECT * FROM media_items{where} ORDER BY {sort_by} {order}, id ASC LIMIT ? OFFSET ?",
                tuple(params + [filters.limit, filters.offset]),
            )
            items = [self._to_item(row) for row in cursor.fetchall()]

        return MediaPage(items=items, total=total, limit=filters.limit, offset=filters.offset)


class RuleRepository:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_rule(row) -> Rule:
        data = dict(row)
        data["conditions"] = json.loads(data["conditions"]) if data.get("conditions") else []
        return Rule(**data)

    @staticmethod
    def _params(rule: Rule):
        return (
            rule.name,
            rule.media_type,
            json.dumps([c.model_dump() for c in rule.conditions]),
            rule.action.value,
            int(rule.enabled),
            rule.grace_period_days,
            rule.deletion_action.value,
            int(rule.reset_overseerr),
        )

    def create(self, rule: Rule) -> Rule:
        validate_conditions(rule.conditions)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO rules
                (name, media_type, conditions, action, enabled, grace_period_days, deletion_action, reset_overseerr)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(rule),
            )
            conn.commit()
            rule_id = cursor.lastrowid
        return self.get_by_id(rule_id)

    def update(self, rule_id: int, fields: Dict[str, Any]) -> Optional[Rule]:
        current = self.get_by_id(rule_id)
        if current is None:
            return None
        data = current.model_dump()
        data.update(fields)
        data["id"] = rule_id
        rule = Rule(**data)
        validate_conditions(rule.conditions)

        with self.db.get_connection() as conn:
            conn.execute(
                """
                UPDATE rules SET name = ?, media_type = ?, conditions = ?, action = ?, enabled = ?,
                grace_period_days = ?, deletion_action = ?, reset_overseerr = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                self._params(rule) + (rule_id,),
            )
            conn.commit()
        return self.get_by_id(rule_id)

    def set_enabled(self, rule_id: int, enabled: bool) -> Optional[Rule]:
        with self.db.get_connection() as conn:
            conn.execute("UPDATE rules SET enabled = ? WHERE id = ?", (int(enabled), rule_id))
            conn.commit()
        return self.get_by_id(rule_id)

    def delete(self, rule_id: int) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            conn.commit()
            return cursor.rowcount > 0

    def get_by_id(self, rule_id: int) -> Optional[Rule]:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
            return self._to_rule(row) if row else None

    def get_all(self) -> List[Rule]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT * FROM rules ORDER BY name, id")
            return [self._to_rule(row) for row in cursor.fetchall()]

    def get_enabled(self) -> List[Rule]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT * FROM rules WHERE enabled = 1 ORDER BY name, id")
            return [self._to_rule(row) for row in cursor.fetchall()]


class DeletionHistoryRepository:
    def __init__(self, db: Database):
        self.db = db

    def add(self, entry: DeletionHistoryEntry) -> DeletionHistoryEntry:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO deletion_history
                (media_item_id, title, type, file_size, deleted_at, deletion_type, deletion_action,
                 deleted_by_rule_id, overseerr_reset)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.media_item_id,
                    entry.title,
                    entry.type.value,
                    entry.file_size,
                    entry.deleted_at.isoformat(),
                    entry.deletion_type.value,
                    _db_value(entry.deletion_action),
                    entry.deleted_by_rule_id,
                    int(entry.overseerr_reset),
                ),
            )
            conn.commit()
            return entry.model_copy(update={"id": cursor.lastrowid})

    def get_recent(self, limit: int = 50, offset: int = 0) -> List[DeletionHistoryEntry]:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM deletion_history ORDER BY deleted_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
            return [DeletionHistoryEntry(**dict(row)) for row in cursor.fetchall()]

    def get_stats(self) -> Dict[str, int]:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(file_size), 0) AS freed FROM deletion_history"
            ).fetchone()
            return {"total_deleted": row["total"], "total_size_freed": row["freed"]}


class ScanHistoryRepository:
    def __init__(self, db: Database):
        self.db = db

    def start(self, now: Optional[datetime] = None) -> ScanRecord:
        started_at = now or utc_now()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO scan_history (started_at, status) VALUES (?, 'running')",
                (started_at.isoformat(),),
            )
            conn.commit()
            return ScanRecord(id=cursor.lastrowid, started_at=started_at)

    def complete(self, scan_id: int, items_scanned: int, items_flagged: int, now: Optional[datetime] = None):
        with self.db.get_connection() as conn:
            conn.execute(
                """
                UPDATE scan_history SET completed_at = ?, items_scanned = ?, items_flagged = ?, status = 'completed'
                WHERE id = ?
                """,
                ((now or utc_now()).isoformat(), items_scanned, items_flagged, scan_id),
            )
            conn.commit()

    def fail(self, scan_id: int, error: str, now: Optional[datetime] = None):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE scan_history SET completed_at = ?, status = 'failed', error = ? WHERE id = ?",
                ((now or utc_now()).isoformat(), error, scan_id),
            )
            conn.commit()

    def get_recent(self, limit: int = 20) -> List[ScanRecord]:
        with self.db.get_connection() as conn:
            cursor = conn.execute("SELECT * FROM scan_history ORDER BY id DESC LIMIT ?", (limit,))
            return [ScanRecord(**dict(row)) for row in cursor.fetchall()]


class ActivityRepository:
    def __init__(self, db: Database):
        self.db = db

    def log(self, entry: ActivityEntry) -> ActivityEntry:
        created_at = entry.created_at or utc_now()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO activity_log
                (event_type, action, actor_type, actor_id, actor_name, target_type, target_id,
                 target_title, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.event_type,
                    entry.action,
                    entry.actor_type,
                    entry.actor_id,
                    entry.actor_name,
                    entry.target_type,
                    entry.target_id,
                    entry.target_title,
                    json.dumps(entry.metadata, default=str) if entry.metadata else None,
                    created_at.isoformat(),
                ),
            )
            conn.commit()
            return entry.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})

    def get_recent(self, limit: int = 50, event_type: Optional[str] = None) -> List[ActivityEntry]:
        query = "SELECT * FROM activity_log"
        params: List[Any] = []
        if event_type:
            query += " WHERE event_type = ?"
            params.append(event_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self.db.get_connection() as conn:
            cursor = conn.execute(query, tuple(params))
            entries = []
            for row in cursor.fetchall():
                data = dict(row)
                data["metadata"] = json.loads(data["metadata"]) if data.get("metadata") else {}
                entries.append(ActivityEntry(**data))
            return entries
