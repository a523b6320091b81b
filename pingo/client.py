"""Device-side client for the Pingo API."""

import logging
from typing import Optional

import httpx

from pingo import config
from pingo.schemas import ResetResponse, StatusResponse

logger = logging.getLogger(__name__)


class TransportFailure(Exception):
    """The backend could not be reached or answered with an error."""


class PingoClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self._http = httpx.Client(
            base_url=(base_url or config.PINGO_BASE_URL).rstrip("/"),
            timeout=timeout or config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _get(self, path: str, params: dict) -> httpx.Response:
        params = {k: v for k, v in params.items() if v is not None}
        try:
            response = self._http.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{path} failed: {exc}") from exc
        return response

    def fetch_status(self, email: str) -> StatusResponse:
        response = self._get("/status", {"email": email})
        try:
            return StatusResponse.model_validate(response.json())
        except ValueError as exc:
            raise TransportFailure(f"/status returned an unreadable body: {exc}") from exc

    def checkin(self, email: str, name: str) -> None:
        self._get("/checkin", {"email": email, "name": name})

    def save_config(self, email: str, name: str, interval: Optional[int] = None,
                    reminder_time: Optional[str] = None, pwd: Optional[str] = None) -> None:
        self._get("/saveconfig", {
            "email": email,
            "name": name,
            "interval": str(interval) if interval is not None else None,
            "reminderTime": reminder_time,
            "pwd": pwd,
        })

    def request_reset(self, email: str) -> ResetResponse:
        response = self._get("/reset", {"email": email})
        return ResetResponse.model_validate(response.json())
