# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import time
from typing import Any, Dict, Optional
import requests
from ...core.errors import ServiceError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin requests wrapper shared by the *arr and Overseerr clients.

    Handles the API key header, rate limiting (429 + Retry-After) and turns
    transport or HTTP failures into ServiceError.
    """

    service_name = "api"
    api_prefix = ""

    def __init__(self, url: str, api_key: str, timeout: int = 30, max_retries: int = 3,
                 session: Optional[requests.Session] = None):
        self.base_url = url.rstrip("/") + self.api_prefix
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self.session.headers.update({"X-Api-Key": api_key, "Accept": "application/json"})

    def _request(self, method: str, path: str, params: Optional[Dict] = None,
                 json: Any = None, allow_404: bool = False) -> Optional[Any]:
        """
        Returns the decoded JSON body (None for empty bodies). With allow_404,
        a 404 response also returns None instead of raising.
        """
        url = f"{self.base_url}{path}"
        retries = 0
        while True:
            try:
                response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise ServiceError(self.service_name, f"{method} {path} failed: {e}")

            if response.status_code == 429 and retries < self.max_retries:
                retries += 1
                retry_after = response.headers.get("Retry-After")
                wait = int(retry_after) if retry_after and retry_after.isdigit() else 1
                logger.warning(f"{self.service_name} rate limited, retrying in {wait}s ({retries}/{self.max_retries})")
                time.sleep(wait)
                continue

            if response.status_code == 404 and allow_404:
                return None

            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                raise ServiceError(self.service_name, str(e), status_code=response.status_code)

            if not response.content:
                return None
            return response.json()

    def _get(self, path: str, params: Optional[Dict] = None, allow_404: bool = False):
        return self._request("GET", path, params=params, allow_404=allow_404)

    def _put(self, path: str, body: Any):
        return self._request("PUT", path, json=body)

    def _delete(self, path: str, params: Optional[Dict] = None):
        # Already gone counts as deleted
        return self._request("DELETE", path, params=params, allow_404=True)
