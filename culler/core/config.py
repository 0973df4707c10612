# Copyright (c) 2025 Trae AI. All rights reserved.

import yaml
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from .models import DeletionAction

DEFAULT_SCHEDULES = {
    "scanLibraries": "0 3 * * *",
    "processDeletionQueue": "0 4 * * *",
    "sendDeletionReminders": "0 9 * * *",
}


class ServiceConfig(BaseModel):
    url: str
    api_key: str
    timeout: int = 30


class NotificationConfig(BaseModel):
    enabled: bool = False
    discord_webhook: Optional[str] = None


class DeletionConfig(BaseModel):
    default_grace_period_days: int = Field(default=7, ge=0)
    default_action: DeletionAction = DeletionAction.UNMONITOR_AND_DELETE

    @field_validator("default_action", mode="before")
    @classmethod
    def normalize_action(cls, value):
        return DeletionAction.normalize(value)


class SchedulerConfig(BaseModel):
    enabled: bool = True
    timezone: str = "UTC"
    schedules: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SCHEDULES))
    disabled_tasks: List[str] = Field(default_factory=list)


class Config(BaseModel):
    database_path: Path = Path("data/culler.db")
    server_port: int = 7575
    server_host: str = "0.0.0.0"
    log_level: str = "INFO"
    verbose: bool = False
    sonarr: Optional[ServiceConfig] = None
    radarr: Optional[ServiceConfig] = None
    overseerr: Optional[ServiceConfig] = None
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    deletion: DeletionConfig = Field(default_factory=DeletionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @classmethod
    def load(cls, path: str = "config.yaml") -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)
