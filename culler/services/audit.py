# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import sqlite3
from typing import Any, Dict, Optional
from ..core.models import ActivityEntry, MediaItem
from ..infrastructure.db.repository import ActivityRepository

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """
    Writes activity log entries. A failed write is logged and never fails the
    operation being recorded.
    """

    def __init__(self, activity_repo: ActivityRepository):
        self.activity_repo = activity_repo

    def record(self, event_type: str, action: str, actor_type: str = "scheduler",
               item: Optional[MediaItem] = None, actor_id: Optional[str] = None,
               actor_name: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
               target_type: Optional[str] = None):
        entry = ActivityEntry(
            event_type=event_type,
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=actor_name,
            target_type=target_type or ("media_item" if item else None),
            target_id=item.id if item else None,
            target_title=item.title if item else None,
            metadata=metadata or {},
        )
        try:
            self.activity_repo.log(entry)
        except sqlite3.Error as e:
            logger.warning(f"Failed to write activity log ({event_type}/{action}): {e}")
