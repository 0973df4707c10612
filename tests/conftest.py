# Copyright (c) 2025 Trae AI. All rights reserved.

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock
from culler.core.errors import ServiceError
from culler.core.models import FileProgress, MediaItem, MediaType
from culler.infrastructure.clients.arr import ContentManager
from culler.infrastructure.clients.overseerr import RequestBroker
from culler.infrastructure.db.database import Database
from culler.infrastructure.db.repository import (
    ActivityRepository,
    DeletionHistoryRepository,
    MediaRepository,
    RuleRepository,
    ScanHistoryRepository,
)
from culler.infrastructure.notifier import Notifier
from culler.services.audit import ActivityRecorder
from culler.services.deletion_service import DeletionExecutor
from culler.services.queue_service import DeletionQueue

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
GB = 1024 ** 3


class FakeContentManager(ContentManager):
    """
    In-memory content manager. Add a step name to fail_on to make it raise.
    """

    def __init__(self, media_type: MediaType, files: int = 2):
        self.media_type = media_type
        self.media_types = (MediaType.SHOW, MediaType.EPISODE) if media_type == MediaType.SHOW else (media_type,)
        self.service_name = "sonarr" if media_type == MediaType.SHOW else "radarr"
        self.files = files
        self.fail_on = set()
        self.calls = []

    def external_id(self, item):
        return item.sonarr_id if self.media_type == MediaType.SHOW else item.radarr_id

    def _call(self, step, external_id):
        self.calls.append((step, external_id))
        if step in self.fail_on:
            raise ServiceError(self.service_name, f"{step} failed", status_code=500)

    def unmonitor(self, external_id):
        self._call("unmonitor", external_id)

    def iter_delete_files(self, external_id):
        self._call("delete_files", external_id)
        for index in range(1, self.files + 1):
            name = f"file{index}.mkv"
            yield FileProgress(current=index, total=self.files, file_name=name, status="deleting")
            yield FileProgress(current=index, total=self.files, file_name=name, status="deleted")

    def remove(self, external_id):
        self._call("remove", external_id)


class FakeRequestBroker(RequestBroker):
    def __init__(self):
        self.error = None
        self.calls = []

    def reset(self, tmdb_id, media_type):
        self.calls.append((tmdb_id, media_type))
        if self.error:
            raise self.error
        return True


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"

@pytest.fixture
def database(db_path):
    return Database(db_path)

@pytest.fixture
def media_repo(database):
    return MediaRepository(database)

@pytest.fixture
def rule_repo(database):
    return RuleRepository(database)

@pytest.fixture
def history_repo(database):
    return DeletionHistoryRepository(database)

@pytest.fixture
def scan_repo(database):
    return ScanHistoryRepository(database)

@pytest.fixture
def activity_repo(database):
    return ActivityRepository(database)

@pytest.fixture
def activity(activity_repo):
    return ActivityRecorder(activity_repo)

@pytest.fixture
def notifier():
    mock = MagicMock(spec=Notifier)
    mock.enabled = True
    mock.notify.return_value = True
    return mock

@pytest.fixture
def sonarr():
    return FakeContentManager(MediaType.SHOW)

@pytest.fixture
def radarr():
    return FakeContentManager(MediaType.MOVIE, files=1)

@pytest.fixture
def broker():
    return FakeRequestBroker()

@pytest.fixture
def queue(media_repo, activity, notifier, now):
    return DeletionQueue(media_repo, activity, notifier, clock=lambda: now)

@pytest.fixture
def executor(media_repo, history_repo, activity, notifier, queue, sonarr, radarr, broker, now):
    return DeletionExecutor(
        media_repo, history_repo, activity, notifier, queue,
        content_managers=[sonarr, radarr], request_broker=broker, clock=lambda: now,
    )

@pytest.fixture
def make_item(media_repo):
    def _make(**overrides):
        data = {
            "type": MediaType.MOVIE,
            "title": "The Matrix",
            "radarr_id": 11,
            "tmdb_id": 603,
            "file_size": 5 * GB,
            "play_count": 0,
        }
        data.update(overrides)
        return media_repo.create(MediaItem(**data))
    return _make
