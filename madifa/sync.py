from __future__ import annotations

from collections.abc import Callable
import logging
from datetime import datetime
from typing import Optional

from .config import get_settings
from .device import DeviceIdentity
from .errors import LocalStorageError, RemoteAuthError, RemoteStoreError
from .identity import IdentityProvider
from .local_store import LocalProgressCache, LocalStorage
from .progress import (
    CONTINUE_WATCHING_CEILING,
    ProgressRecord,
    ResumeDecision,
    decide_resume,
    in_window,
    most_recent_first,
)
from .remote_store import RemoteProgressStore


log = logging.getLogger(__name__)


class ProgressSynchronizer:
    """Watch progress for one browser profile.

    Guests (any subject the identity provider doesn't vouch for) live in local
    storage only. The signed-in subject goes to the progress service, with a
    best-effort local mirror that is read only when the service can't be
    reached. Nothing here raises on storage trouble: failures are logged and
    the caller sees "no resume data".
    """

    def __init__(
        self,
        identity: IdentityProvider,
        local: LocalProgressCache,
        remote: Optional[RemoteProgressStore],
        device: DeviceIdentity,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.identity = identity
        self.local = local
        self.remote = remote
        self.device = device
        self.clock = clock

    @classmethod
    def from_settings(cls, identity: IdentityProvider) -> "ProgressSynchronizer":
        settings = get_settings()
        storage = LocalStorage(settings.profile_dir)
        return cls(
            identity=identity,
            local=LocalProgressCache(storage, max_records=settings.local_max_records),
            remote=RemoteProgressStore.from_settings(identity),
            device=DeviceIdentity(storage),
        )

    # -- subjects -----------------------------------------------------------

    def current_subject_key(self) -> str:
        return self.identity.current_subject_key() or self.device.guest_subject_key

    def _is_remote(self, subject_key: str) -> bool:
        if self.remote is None:
            return False
        user = self.identity.current_subject_key()
        return user is not None and user == subject_key

    # -- local helpers ------------------------------------------------------

    def _write_local(self, record: ProgressRecord) -> bool:
        try:
            self.local.put(record)
            return True
        except LocalStorageError:
            log.exception("couldn't save local progress for %s", record.content_id)
            return False

    def _read_local(self, subject_key: str, content_id: str) -> Optional[ProgressRecord]:
        try:
            return self.local.get(subject_key, content_id)
        except LocalStorageError:
            log.exception("couldn't read local progress for %s", content_id)
            return None

    def _local_records(self, subject_key: str) -> list[ProgressRecord]:
        try:
            return self.local.records(subject_key)
        except LocalStorageError:
            log.exception("couldn't list local progress")
            return []

    def _lookup(self, subject_key: str, content_id: str) -> Optional[ProgressRecord]:
        content_id = str(content_id)
        if self._is_remote(subject_key):
            try:
                # A 404 is authoritative; the local mirror is not consulted.
                return self.remote.get(subject_key, content_id)
            except RemoteStoreError as e:
                log.warning("remote progress lookup failed (%s); using local copy", e)
        return self._read_local(subject_key, content_id)

    # -- operations ---------------------------------------------------------

    def report_progress(
        self,
        subject_key: str,
        content_id: str,
        position: float,
        duration_hint: Optional[float] = None,
        device_id: Optional[str] = None,
    ) -> bool:
        """Upsert the record for (subject, content). Fire-and-forget.

        Values are stored as given; callers clamp to the duration. Returns
        whether the authoritative store took the write.
        """
        record = ProgressRecord(
            subject_key=subject_key,
            content_id=str(content_id),
            position=float(position),
            duration_hint=float(duration_hint) if duration_hint is not None else None,
            updated_at=self.clock(),
            device_id=device_id or self.device.device_id,
        )

        if self._is_remote(subject_key):
            try:
                self.remote.put(record)
                ok = True
            except RemoteAuthError as e:
                log.warning("progress service refused the token (%s); saving locally", e)
                ok = None
            except RemoteStoreError as e:
                log.warning("couldn't push progress for %s: %s", record.content_id, e)
                ok = False

            mirrored = self._write_local(record)
            if ok is None:
                ok = mirrored
        else:
            ok = self._write_local(record)

        if ok:
            self.device.remember_last_device(record.device_id)
        return ok

    def get_resume_position(self, subject_key: str, content_id: str) -> ResumeDecision:
        return decide_resume(self._lookup(subject_key, content_id))

    def is_different_device_than_last_write(
        self, subject_key: str, content_id: str, current_device_id: Optional[str] = None
    ) -> bool:
        """Heuristic for the "continue from another device?" prompt."""
        record = self._lookup(subject_key, content_id)
        if record is None or not record.device_id:
            return False
        return record.device_id != (current_device_id or self.device.device_id)

    def is_new_device(self) -> bool:
        return self.device.is_new_device()

    def list_in_progress(
        self,
        subject_key: str,
        threshold_low: float = 0.0,
        threshold_high: float = CONTINUE_WATCHING_CEILING,
        limit: Optional[int] = None,
    ) -> list[ProgressRecord]:
        """Continue-watching row: low < ratio < high, most recent first."""
        records = None
        if self._is_remote(subject_key):
            try:
                records = self.remote.list_records(
                    subject_key, status="in-progress", low=threshold_low, high=threshold_high
                )
            except RemoteStoreError as e:
                log.warning("remote continue-watching failed (%s); using local copy", e)
        if records is None:
            records = self._local_records(subject_key)

        out = most_recent_first(r for r in records if in_window(r, threshold_low, threshold_high))
        return out[:limit] if limit is not None else out

    def history(self, subject_key: str) -> list[ProgressRecord]:
        """Every record for the subject, completed ones included."""
        records = None
        if self._is_remote(subject_key):
            try:
                records = self.remote.list_records(subject_key, status=None)
            except RemoteStoreError as e:
                log.warning("remote history failed (%s); using local copy", e)
        if records is None:
            records = self._local_records(subject_key)
        return most_recent_first(records)
