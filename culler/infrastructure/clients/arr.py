# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import posixpath
from typing import Any, Dict, Iterator, List, Optional, Tuple
from ...core.errors import ServiceError
from ...core.models import FileProgress, MediaItem, MediaType
from .base import ApiClient

logger = logging.getLogger(__name__)


class ContentManager:
    """
    Contract the deletion executor relies on. media_types lists the item
    types the manager is responsible for; media_type is the primary one.
    """

    service_name = "content manager"
    media_type: Optional[MediaType] = None
    media_types: Tuple[MediaType, ...] = ()
    available = True

    def external_id(self, item: MediaItem) -> Optional[int]:
        raise NotImplementedError

    def unmonitor(self, external_id: int):
        raise NotImplementedError

    def iter_delete_files(self, external_id: int) -> Iterator[FileProgress]:
        raise NotImplementedError

    def remove(self, external_id: int):
        raise NotImplementedError


class UnavailableContentManager(ContentManager):
    """
    Stands in for a content manager that is not configured. Every call is a no-op.
    """

    available = False

    def __init__(self, media_type: Optional[MediaType] = None):
        self.media_type = media_type

    def external_id(self, item: MediaItem) -> Optional[int]:
        return None

    def unmonitor(self, external_id: int):
        logger.debug(f"No content manager configured for {self.media_type}, skipping unmonitor")

    def iter_delete_files(self, external_id: int) -> Iterator[FileProgress]:
        logger.debug(f"No content manager configured for {self.media_type}, skipping file deletion")
        return iter(())

    def remove(self, external_id: int):
        logger.debug(f"No content manager configured for {self.media_type}, skipping removal")


class ArrClient(ApiClient, ContentManager):
    api_prefix = "/api/v3"
    resource = ""
    file_resource = ""

    def _fetch(self, external_id: int) -> Optional[Dict[str, Any]]:
        return self._get(f"/{self.resource}/{external_id}", allow_404=True)

    def unmonitor(self, external_id: int):
        record = self._fetch(external_id)
        if record is None:
            logger.warning(f"{self.service_name}: {self.resource} {external_id} not found, nothing to unmonitor")
            return
        record["monitored"] = False
        self._put(f"/{self.resource}/{external_id}", record)
        logger.info(f"{self.service_name}: unmonitored {record.get('title', external_id)}")

    def _list_files(self, external_id: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def iter_delete_files(self, external_id: int) -> Iterator[FileProgress]:
        """
        Deletes every file of the record, yielding progress per file.
        A failed file is reported and the remaining files are still attempted.
        """
        files = self._list_files(external_id)
        total = len(files)
        for index, file in enumerate(files, start=1):
            name = posixpath.basename(file.get("relativePath") or file.get("path") or str(file["id"]))
            yield FileProgress(current=index, total=total, file_name=name, status="deleting")
            try:
                self._delete(f"/{self.file_resource}/{file['id']}")
            except ServiceError as e:
                logger.error(f"{self.service_name}: failed to delete {name}: {e}")
                yield FileProgress(current=index, total=total, file_name=name, status="failed")
                continue
            yield FileProgress(current=index, total=total, file_name=name, status="deleted")

    def remove(self, external_id: int):
        self._delete(f"/{self.resource}/{external_id}", params=self._remove_params())
        logger.info(f"{self.service_name}: removed {self.resource} {external_id}")

    def _remove_params(self) -> Dict[str, str]:
        return {"deleteFiles": "true"}


class SonarrClient(ArrClient):
    service_name = "sonarr"
    media_type = MediaType.SHOW
    media_types = (MediaType.SHOW, MediaType.EPISODE)
    resource = "series"
    file_resource = "episodefile"

    def external_id(self, item: MediaItem) -> Optional[int]:
        return item.sonarr_id

    def _list_files(self, external_id: int) -> List[Dict[str, Any]]:
        return self._get("/episodefile", params={"seriesId": external_id}) or []

    def _remove_params(self) -> Dict[str, str]:
        return {"deleteFiles": "true", "addImportListExclusion": "false"}


class RadarrClient(ArrClient):
    service_name = "radarr"
    media_type = MediaType.MOVIE
    media_types = (MediaType.MOVIE,)
    resource = "movie"
    file_resource = "moviefile"

    def external_id(self, item: MediaItem) -> Optional[int]:
        return item.radarr_id

    def _list_files(self, external_id: int) -> List[Dict[str, Any]]:
        movie = self._fetch(external_id)
        if not movie or not movie.get("movieFile"):
            return []
        return [movie["movieFile"]]

    def _remove_params(self) -> Dict[str, str]:
        return {"deleteFiles": "true", "addImportExclusion": "false"}
