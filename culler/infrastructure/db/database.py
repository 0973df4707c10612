# Copyright (c) 2025 Trae AI. All rights reserved.

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS media_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL CHECK (type IN ('movie', 'show', 'episode')),
        title TEXT NOT NULL,
        plex_id TEXT UNIQUE,
        sonarr_id INTEGER,
        radarr_id INTEGER,
        tmdb_id INTEGER,
        imdb_id TEXT,
        tvdb_id INTEGER,
        year INTEGER,
        poster_url TEXT,
        file_path TEXT,
        file_size INTEGER,
        resolution TEXT,
        codec TEXT,
        added_at TEXT,
        last_watched_at TEXT,
        play_count INTEGER DEFAULT 0,
        watched_by TEXT,
        status TEXT DEFAULT 'monitored'
            CHECK (status IN ('monitored', 'flagged', 'pending_deletion', 'deleted', 'protected')),
        marked_at TEXT,
        delete_after TEXT,
        is_protected INTEGER DEFAULT 0,
        protection_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        media_type TEXT DEFAULT 'all' CHECK (media_type IN ('all', 'movie', 'show')),
        conditions TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ('flag', 'delete', 'notify')),
        enabled INTEGER DEFAULT 1,
        grace_period_days INTEGER DEFAULT 7,
        deletion_action TEXT DEFAULT 'unmonitor_and_delete',
        reset_overseerr INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deletion_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        media_item_id INTEGER,
        title TEXT NOT NULL,
        type TEXT NOT NULL,
        file_size INTEGER,
        deleted_at TEXT NOT NULL,
        deletion_type TEXT NOT NULL CHECK (deletion_type IN ('automatic', 'manual')),
        deletion_action TEXT,
        deleted_by_rule_id INTEGER,
        overseerr_reset INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        items_scanned INTEGER DEFAULT 0,
        items_flagged INTEGER DEFAULT 0,
        status TEXT DEFAULT 'running' CHECK (status IN ('running', 'completed', 'failed')),
        error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        action TEXT NOT NULL,
        actor_type TEXT NOT NULL,
        actor_id TEXT,
        actor_name TEXT,
        target_type TEXT,
        target_id INTEGER,
        target_title TEXT,
        metadata TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_media_items_status ON media_items(status)",
    "CREATE INDEX IF NOT EXISTS idx_media_items_delete_after ON media_items(delete_after)",
    "CREATE INDEX IF NOT EXISTS idx_activity_log_created_at ON activity_log(created_at)",
]

# Columns added after the first release. Existing databases get them via ALTER TABLE.
MIGRATIONS = {
    "media_items": {
        "deletion_action": "TEXT",
        "reset_overseerr": "INTEGER DEFAULT 0",
        "matched_rule_id": "INTEGER",
        "overseerr_reset_at": "TEXT",
        "requested_by": "TEXT",
    },
}


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        # Allow using :memory: for testing, which is not a path
        if str(self.db_path) != ":memory:" and not Path(self.db_path).parent.exists():
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self.get_connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()

            for table, columns in MIGRATIONS.items():
                cursor = conn.execute(f"PRAGMA table_info({table})")
                existing = [info[1] for info in cursor.fetchall()]
                for column, definition in columns.items():
                    if column not in existing:
                        logger.info(f"Migrating {table}: adding column {column}")
                        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            conn.commit()

    def get_connection(self):
        # Each :memory: connection is a fresh empty database, so reuse one.
        if str(self.db_path) == ":memory:":
            if not hasattr(self, "_memory_conn"):
                self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._memory_conn.row_factory = sqlite3.Row
            return self._memory_conn

        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn
