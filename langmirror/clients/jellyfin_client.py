"""
jellyfin_client.py - thin requests wrapper around the Jellyfin REST API.

Knows URLs, headers and timeouts only. Version-specific payload shapes live
in clients/adapters.py. JELLYFIN_API_KEY is never logged.
"""
from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class HostApiError(Exception):
    """A Jellyfin call failed (network, HTTP status or unexpected payload)."""


class JellyfinClient:
    def __init__(self, base_url: str, api_key: str, timeout: float = 15.0,
                 session: requests.Session | None = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "X-Emby-Token": self.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, *, params=None, json=None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method, url,
                headers=self._headers(),
                params=params,
                json=json,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise HostApiError(f"{method} {path} failed: {e}") from e

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    def get(self, path: str, params=None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, params=None, json=None) -> Any:
        return self._request("POST", path, params=params, json=json)

    def delete(self, path: str, params=None) -> Any:
        return self._request("DELETE", path, params=params)

    def test_connection(self) -> dict:
        """Verify the server answers. Returns {status, server_name, version} or {status, message}."""
        if not self.base_url or not self.api_key:
            return {"status": "error", "message": "JELLYFIN_URL and JELLYFIN_API_KEY must both be set"}
        try:
            info = self.get("/System/Info") or {}
            return {
                "status": "ok",
                "server_name": info.get("ServerName", "Unknown"),
                "version": info.get("Version"),
            }
        except HostApiError as e:
            return {"status": "error", "message": str(e)}
