# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from pathlib import Path
from typing import Optional
from ..core.config import Config
from ..infrastructure.clients.arr import RadarrClient, SonarrClient
from ..infrastructure.clients.overseerr import OverseerrClient
from ..infrastructure.db.database import Database
from ..infrastructure.db.repository import (
    ActivityRepository,
    DeletionHistoryRepository,
    MediaRepository,
    RuleRepository,
    ScanHistoryRepository,
)
from ..infrastructure.notifier import Notifier
from .audit import ActivityRecorder
from .deletion_service import DeletionExecutor
from .queue_service import DeletionQueue
from .scan_service import ScanService
from .tasks import Tasks

logger = logging.getLogger(__name__)


class Services:
    """
    Builds every repository, client and service once and holds them.
    The web server and the CLI share this wiring.
    """

    def __init__(self, config: Config, db: Optional[Database] = None):
        self.config = config
        self.db = db or Database(Path(config.database_path))

        # Infrastructure
        self.media_repo = MediaRepository(self.db)
        self.rule_repo = RuleRepository(self.db)
        self.history_repo = DeletionHistoryRepository(self.db)
        self.scan_repo = ScanHistoryRepository(self.db)
        self.activity_repo = ActivityRepository(self.db)
        self.notifier = Notifier(config.notifications.discord_webhook, config.notifications.enabled)

        # Only configured services are handed to the executor
        self.content_managers = []
        if config.sonarr:
            self.content_managers.append(SonarrClient(config.sonarr.url, config.sonarr.api_key, config.sonarr.timeout))
        if config.radarr:
            self.content_managers.append(RadarrClient(config.radarr.url, config.radarr.api_key, config.radarr.timeout))
        self.request_broker = None
        if config.overseerr:
            self.request_broker = OverseerrClient(
                config.overseerr.url, config.overseerr.api_key, config.overseerr.timeout
            )
        logger.info(
            f"Configured services: {[m.service_name for m in self.content_managers]}"
            f"{' + overseerr' if self.request_broker else ''}"
        )

        # Services
        self.activity = ActivityRecorder(self.activity_repo)
        self.queue = DeletionQueue(self.media_repo, self.activity, self.notifier, config.deletion)
        self.executor = DeletionExecutor(
            self.media_repo, self.history_repo, self.activity, self.notifier, self.queue,
            content_managers=self.content_managers, request_broker=self.request_broker,
        )
        self.scan_service = ScanService(
            self.media_repo, self.rule_repo, self.scan_repo, self.queue, self.activity, self.notifier,
        )
        self.tasks = Tasks(self.scan_service, self.queue, self.executor, self.notifier)


def build_services(config: Config, db: Optional[Database] = None) -> Services:
    return Services(config, db)
