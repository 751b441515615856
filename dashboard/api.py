"""Thin HTTP client for the AthletiQ API."""

from __future__ import annotations

import logging
import os
from typing import Any, BinaryIO, Dict, List, Optional

import requests

log = logging.getLogger("athletiq-dashboard")

DEFAULT_API_URL = "http://localhost:5000"


class ApiError(RuntimeError):
    """Any failed call to the backend: connection, HTTP status or bad body."""


def default_base_url() -> str:
    return os.getenv("ATHLETIQ_API_URL", DEFAULT_API_URL)


class ApiClient:
    def __init__(self, base_url: Optional[str] = None, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        base_url = base_url or default_base_url()
        if not base_url.startswith("http"):
            base_url = f"https://{base_url}"
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, timeout=timeout or self.timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            log.error(f"{method} {url} failed: {e}")
            raise ApiError(str(e)) from e

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def list_workouts(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/workouts")

    def create_workout(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/workouts", json=payload)

    def update_workout(self, workout_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/api/workouts/{workout_id}", json=payload)

    def delete_workout(self, workout_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/workouts/{workout_id}")

    def upload_csv(self, filename: str, content: BinaryIO | bytes) -> Dict[str, Any]:
        files = {"file": (filename, content, "text/csv")}
        return self._request("POST", "/api/upload", files=files)

    def analyze(self) -> Dict[str, Any]:
        # Several sequential model attempts can sit behind one call.
        return self._request("GET", "/api/analyze", timeout=max(self.timeout, 120))
