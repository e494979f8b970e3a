from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .errors import LocalStorageError, MalformedRecordError
from .progress import ProgressRecord


log = logging.getLogger(__name__)


PROGRESS_KEY_PREFIX = "watch_progress_"


class LocalStorage:
    """Per-profile string key-value store, the desktop stand-in for localStorage.

    Everything lives in one JSON object on disk. Each call re-reads the file so
    two synchronizers on the same profile see each other's writes. I/O errors
    surface as LocalStorageError; a corrupt file reads as empty.
    """

    FILENAME = "local_storage.json"

    # One lock per backing file, shared by every instance in the process.
    _locks: dict[Path, threading.RLock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, profile_dir: Path):
        self.profile_dir = Path(profile_dir)
        self.path = self.profile_dir / self.FILENAME
        key = self.path.absolute()
        with self._locks_guard:
            self._lock = self._locks.setdefault(key, threading.RLock())

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise LocalStorageError(f"can't read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError:
            log.warning("local storage file %s is corrupt; treating it as empty", self.path)
            return {}
        if not isinstance(data, dict):
            log.warning("local storage file %s isn't an object; treating it as empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        tmp_name = None
        try:
            self.profile_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.profile_dir, prefix=".local_storage.", suffix=".tmp",
                encoding="utf-8", delete=False,
            ) as tmp:
                tmp_name = tmp.name
                json.dump(data, tmp, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise LocalStorageError(f"can't write {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)

    def remove_items(self, keys: list[str]) -> None:
        with self._lock:
            data = self._load()
            removed = [k for k in keys if data.pop(k, None) is not None]
            if removed:
                self._dump(data)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._load())

    def items(self) -> dict[str, str]:
        with self._lock:
            return self._load()


class LocalProgressCache:
    """Progress records kept in LocalStorage under `watch_progress_<contentId>`.

    One slot per content id. A signed-in mirror and a guest write for the same
    content share the slot (last write wins), so reads check the subject.
    """

    def __init__(self, storage: LocalStorage, max_records: Optional[int] = None):
        self.storage = storage
        self.max_records = max_records

    @staticmethod
    def key_for(content_id: str) -> str:
        return f"{PROGRESS_KEY_PREFIX}{content_id}"

    def _parse(self, key: str, raw: Optional[str]) -> Optional[ProgressRecord]:
        if raw is None:
            return None
        try:
            return ProgressRecord.from_dict(
                json.loads(raw), content_id=key[len(PROGRESS_KEY_PREFIX):]
            )
        except (ValueError, MalformedRecordError):
            log.warning("ignoring malformed local progress record %s", key)
            return None

    def get(self, subject_key: str, content_id: str) -> Optional[ProgressRecord]:
        key = self.key_for(content_id)
        record = self._parse(key, self.storage.get_item(key))
        if record is None or record.subject_key != subject_key:
            return None
        return record

    def put(self, record: ProgressRecord) -> None:
        self.storage.set_item(self.key_for(record.content_id), json.dumps(record.to_dict()))
        if self.max_records:
            self._evict()

    def records(self, subject_key: str) -> list[ProgressRecord]:
        out = []
        for record in self._all():
            if record.subject_key == subject_key:
                out.append(record)
        return out

    def _all(self) -> list[ProgressRecord]:
        out = []
        for key, raw in self.storage.items().items():
            if not key.startswith(PROGRESS_KEY_PREFIX):
                continue
            record = self._parse(key, raw)
            if record is not None:
                out.append(record)
        return out

    def _evict(self) -> None:
        records = self._all()
        overflow = len(records) - self.max_records
        if overflow <= 0:
            return

        # Oldest-updated first.
        records.sort(key=lambda r: r.updated_at)
        victims = [self.key_for(r.content_id) for r in records[:overflow]]
        self.storage.remove_items(victims)
        log.info("evicted %d local progress records", len(victims))
