# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from ...core.models import MediaType
from .base import ApiClient

logger = logging.getLogger(__name__)


class RequestBroker:
    service_name = "request broker"
    available = True

    def reset(self, tmdb_id: int, media_type: MediaType) -> bool:
        raise NotImplementedError


class UnavailableRequestBroker(RequestBroker):
    available = False

    def reset(self, tmdb_id: int, media_type: MediaType) -> bool:
        logger.debug("No request broker configured, skipping reset")
        return False


class OverseerrClient(ApiClient, RequestBroker):
    """
    Clears Overseerr's media record so the title can be requested again.
    """

    service_name = "overseerr"
    api_prefix = "/api/v1"

    def reset(self, tmdb_id: int, media_type: MediaType) -> bool:
        kind = "movie" if media_type == MediaType.MOVIE else "tv"
        details = self._get(f"/{kind}/{tmdb_id}", allow_404=True)
        media_info = (details or {}).get("mediaInfo")
        if not media_info or not media_info.get("id"):
            logger.info(f"overseerr: {kind} {tmdb_id} is not tracked, nothing to reset")
            return True

        self._delete(f"/media/{media_info['id']}")
        logger.info(f"overseerr: reset {kind} {tmdb_id}")
        return True
