from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import get_settings
from .errors import MalformedRecordError, RemoteAuthError, RemoteStoreError
from .identity import IdentityProvider
from .progress import CONTINUE_WATCHING_CEILING, ProgressRecord


log = logging.getLogger(__name__)


class RemoteProgressStore:
    """Client for the progress service (`/progress` endpoints).

    Raises RemoteAuthError on 401 / missing token, RemoteStoreError on
    transport failures and unexpected statuses. Malformed payloads are
    treated as "no record".
    """

    def __init__(self, client: httpx.Client, identity: IdentityProvider):
        self.client = client
        self.identity = identity

    @classmethod
    def from_settings(cls, identity: IdentityProvider) -> "RemoteProgressStore":
        settings = get_settings()
        client = httpx.Client(
            base_url=settings.api_url,
            timeout=settings.http_timeout_s,
            headers={"Accept": "application/json"},
        )
        return cls(client, identity)

    def close(self) -> None:
        self.client.close()

    def _headers(self) -> dict[str, str]:
        token = self.identity.access_token()
        if not token:
            raise RemoteAuthError("no access token")
        return {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self.client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 401:
            raise RemoteAuthError(f"{method} {path} rejected the access token")
        return resp

    @staticmethod
    def _path(content_id: str) -> str:
        return f"/progress/{quote(str(content_id), safe='')}"

    def get(self, subject_key: str, content_id: str) -> Optional[ProgressRecord]:
        resp = self._request("GET", self._path(content_id))
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RemoteStoreError(f"GET progress/{content_id}: HTTP {resp.status_code}")

        try:
            return ProgressRecord.from_dict(
                resp.json(), subject_key=subject_key, content_id=content_id
            ).with_subject(subject_key)
        except (ValueError, MalformedRecordError):
            log.warning("progress service sent a malformed record for %s", content_id)
            return None

    def put(self, record: ProgressRecord) -> None:
        body = {
            "position": record.position,
            "durationHint": record.duration_hint,
            "deviceId": record.device_id,
        }
        resp = self._request("PUT", self._path(record.content_id), json=body)
        if resp.status_code not in (200, 201):
            raise RemoteStoreError(
                f"PUT progress/{record.content_id}: HTTP {resp.status_code}"
            )

    def list_records(
        self,
        subject_key: str,
        status: Optional[str] = "in-progress",
        low: float = 0.0,
        high: float = CONTINUE_WATCHING_CEILING,
        limit: Optional[int] = None,
    ) -> list[ProgressRecord]:
        params: dict[str, Any] = {}
        if status:
            params["status"] = status
        if status == "in-progress":
            params["low"] = low
            params["high"] = high
        if limit is not None:
            params["limit"] = limit

        resp = self._request("GET", "/progress", params=params)
        if resp.status_code != 200:
            raise RemoteStoreError(f"GET progress: HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError:
            log.warning("progress service sent a non-JSON list")
            return []
        if not isinstance(payload, list):
            log.warning("progress service sent %s instead of a list", type(payload).__name__)
            return []

        out = []
        for item in payload:
            try:
                out.append(ProgressRecord.from_dict(item, subject_key=subject_key).with_subject(subject_key))
            except MalformedRecordError:
                log.warning("skipping malformed record in progress list")
        return out
