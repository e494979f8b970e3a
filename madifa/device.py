from __future__ import annotations

import json
import logging
import secrets
import time
from datetime import datetime
from typing import Optional

from .errors import LocalStorageError
from .local_store import LocalStorage


log = logging.getLogger(__name__)


DEVICE_ID_KEY = "madifa_device_id"
SYNC_DATA_KEY = "madifa_sync_data"

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def new_device_id() -> str:
    """`device_<random>_<timestamp>`, both parts base36."""
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(13))
    return f"device_{random_part}_{_base36(int(time.time() * 1000))}"


class DeviceIdentity:
    """This install's device id plus the device seen on the last synced write.

    The id is generated once and kept in local storage; clearing storage
    makes the same browser look like a new device, which is acceptable.
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self._device_id: Optional[str] = None

    @property
    def device_id(self) -> str:
        if self._device_id:
            return self._device_id

        try:
            device_id = self.storage.get_item(DEVICE_ID_KEY)
            if not device_id:
                device_id = new_device_id()
                self.storage.set_item(DEVICE_ID_KEY, device_id)
        except LocalStorageError:
            # Still usable for this process; it just won't survive a restart.
            log.exception("couldn't persist device id")
            device_id = new_device_id()

        self._device_id = device_id
        return device_id

    @property
    def guest_subject_key(self) -> str:
        return f"guest:{self.device_id}"

    def last_seen_device_id(self) -> Optional[str]:
        try:
            raw = self.storage.get_item(SYNC_DATA_KEY)
        except LocalStorageError:
            log.exception("couldn't read sync data")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            last = data.get("lastDevice")
        except (ValueError, AttributeError):
            log.warning("ignoring malformed sync data")
            return None
        return str(last) if last else None

    def remember_last_device(self, device_id: str) -> None:
        data = {
            "lastDevice": device_id,
            "lastUpdated": datetime.utcnow().isoformat(),
            "deviceId": self.device_id,
        }
        try:
            self.storage.set_item(SYNC_DATA_KEY, json.dumps(data))
        except LocalStorageError:
            log.exception("couldn't save sync data")

    def is_new_device(self) -> bool:
        """True if the last synced write came from some other device."""
        last = self.last_seen_device_id()
        if last is None:
            return False
        return last != self.device_id

    def clear_sync_data(self) -> None:
        try:
            self.storage.remove_item(SYNC_DATA_KEY)
        except LocalStorageError:
            log.exception("couldn't clear sync data")
