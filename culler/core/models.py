# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite CURRENT_TIMESTAMP values come back naive but are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MediaType(str, Enum):
    MOVIE = "movie"
    SHOW = "show"
    EPISODE = "episode"


class MediaStatus(str, Enum):
    MONITORED = "monitored"
    FLAGGED = "flagged"
    PENDING_DELETION = "pending_deletion"
    PROTECTED = "protected"
    DELETED = "deleted"


class RuleAction(str, Enum):
    FLAG = "flag"
    DELETE = "delete"
    NOTIFY = "notify"


class DeletionType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class DeletionAction(str, Enum):
    """
    What happens to an item once its grace period has elapsed.
    """

    UNMONITOR_ONLY = "unmonitor_only"
    DELETE_FILES_ONLY = "delete_files_only"
    UNMONITOR_AND_DELETE = "unmonitor_and_delete"
    FULL_REMOVAL = "full_removal"

    @classmethod
    def normalize(cls, value: Any) -> "DeletionAction":
        """
        Maps stored values, including the legacy names written by older
        versions, onto the current set of actions.
        """
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.UNMONITOR_AND_DELETE
        try:
            return cls(value)
        except ValueError:
            pass
        legacy = LEGACY_DELETION_ACTIONS.get(value)
        if legacy is not None:
            return legacy
        logger.warning(f"Unknown deletion action {value!r}, falling back to {cls.UNMONITOR_AND_DELETE.value}")
        return cls.UNMONITOR_AND_DELETE

    @property
    def frees_space(self) -> bool:
        return self is not DeletionAction.UNMONITOR_ONLY

    @property
    def unmonitors(self) -> bool:
        return self in (DeletionAction.UNMONITOR_ONLY, DeletionAction.UNMONITOR_AND_DELETE)

    @property
    def deletes_files(self) -> bool:
        return self in (DeletionAction.DELETE_FILES_ONLY, DeletionAction.UNMONITOR_AND_DELETE)


LEGACY_DELETION_ACTIONS = {
    "delete_files": DeletionAction.DELETE_FILES_ONLY,
    "unmonitor": DeletionAction.UNMONITOR_ONLY,
    "full_delete": DeletionAction.FULL_REMOVAL,
    "remove": DeletionAction.FULL_REMOVAL,
}


class MediaItem(BaseModel):
    """
    A tracked unit of content and its position in the deletion lifecycle.

    marked_at, delete_after and the deletion_* fields are only populated while
    the item sits in the deletion queue.
    """

    id: Optional[int] = None
    type: MediaType
    title: str
    plex_id: Optional[str] = None
    sonarr_id: Optional[int] = None
    radarr_id: Optional[int] = None
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None
    year: Optional[int] = None
    poster_url: Optional[str] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    resolution: Optional[str] = None
    codec: Optional[str] = None
    added_at: Optional[datetime] = None
    last_watched_at: Optional[datetime] = None
    play_count: int = 0
    watched_by: List[str] = Field(default_factory=list)
    status: MediaStatus = MediaStatus.MONITORED
    marked_at: Optional[datetime] = None
    delete_after: Optional[datetime] = None
    is_protected: bool = False
    protection_reason: Optional[str] = None
    deletion_action: Optional[DeletionAction] = None
    reset_overseerr: bool = False
    matched_rule_id: Optional[int] = None
    overseerr_reset_at: Optional[datetime] = None
    requested_by: Optional[str] = None

    @field_validator("added_at", "last_watched_at", "marked_at", "delete_after", "overseerr_reset_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)

    @field_validator("deletion_action", mode="before")
    @classmethod
    def normalize_action(cls, value):
        if value is None or value == "":
            return None
        return DeletionAction.normalize(value)

    @property
    def protected(self) -> bool:
        return self.is_protected or self.status == MediaStatus.PROTECTED


class RuleCondition(BaseModel):
    field: str
    operator: str
    value: Any = None


class Rule(BaseModel):
    id: Optional[int] = None
    name: str
    media_type: Literal["all", "movie", "show"] = "all"
    conditions: List[RuleCondition] = Field(default_factory=list)
    action: RuleAction = RuleAction.FLAG
    enabled: bool = True
    grace_period_days: int = Field(default=7, ge=0)
    deletion_action: DeletionAction = DeletionAction.UNMONITOR_AND_DELETE
    reset_overseerr: bool = False

    @field_validator("deletion_action", mode="before")
    @classmethod
    def normalize_action(cls, value):
        return DeletionAction.normalize(value)

    def applies_to(self, media_type: MediaType) -> bool:
        return self.media_type == "all" or self.media_type == media_type.value


class QueueItem(BaseModel):
    item: MediaItem
    days_remaining: int

    @property
    def is_ready(self) -> bool:
        return self.days_remaining == 0


class FileProgress(BaseModel):
    current: int
    total: int
    file_name: str
    status: Literal["deleting", "deleted", "failed"]


class ProgressStage(str, Enum):
    STARTING = "starting"
    UNMONITORING = "unmonitoring"
    DELETING_FILES = "deleting_files"
    RESETTING_OVERSEERR = "resetting_overseerr"
    COMPLETE = "complete"
    ERROR = "error"


class DeletionResult(BaseModel):
    item_id: Optional[int] = None
    title: Optional[str] = None
    action: Optional[DeletionAction] = None
    success: bool
    file_size_freed: int = 0
    overseerr_reset: bool = False
    error: Optional[str] = None
    overseerr_error: Optional[str] = None
    dry_run: bool = False


class DeletionProgress(BaseModel):
    stage: ProgressStage
    message: str
    item_id: Optional[int] = None
    file_progress: Optional[FileProgress] = None
    result: Optional[DeletionResult] = None


class ProcessQueueSummary(BaseModel):
    processed: int = 0
    deleted: int = 0
    failed: int = 0
    freed_space_bytes: int = 0
    overseerr_resets: int = 0
    dry_run: bool = False
    results: List[DeletionResult] = Field(default_factory=list)


class BulkResult(BaseModel):
    success: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ScanResult(BaseModel):
    scan_id: Optional[int] = None
    items_scanned: int = 0
    items_flagged: int = 0
    items_protected: int = 0
    errors: int = 0


class TaskResult(BaseModel):
    success: bool
    task_name: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    message: str = ""
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class DeletionHistoryEntry(BaseModel):
    id: Optional[int] = None
    media_item_id: Optional[int] = None
    title: str
    type: MediaType
    file_size: Optional[int] = None
    deleted_at: datetime
    deletion_type: DeletionType = DeletionType.AUTOMATIC
    deletion_action: Optional[DeletionAction] = None
    deleted_by_rule_id: Optional[int] = None
    overseerr_reset: bool = False

    @field_validator("deleted_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class ScanRecord(BaseModel):
    id: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    items_scanned: int = 0
    items_flagged: int = 0
    status: Literal["running", "completed", "failed"] = "running"
    error: Optional[str] = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class ActivityEntry(BaseModel):
    id: Optional[int] = None
    event_type: Literal["scan", "deletion", "rule_match", "protection", "manual_action", "error"]
    action: str
    actor_type: Literal["scheduler", "user", "rule"] = "scheduler"
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    target_title: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class MediaFilters(BaseModel):
    type: Optional[MediaType] = None
    status: Optional[MediaStatus] = None
    search: Optional[str] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    watched: Optional[bool] = None
    unwatched_days: Optional[int] = None
    is_protected: Optional[bool] = None
    sort_by: str = "title"
    sort_order: Literal["asc", "desc"] = "asc"
    limit: int = Field(default=50, ge=1, le=10000)
    offset: int = Field(default=0, ge=0)


class MediaPage(BaseModel):
    items: List[MediaItem]
    total: int
    limit: int
    offset: int
