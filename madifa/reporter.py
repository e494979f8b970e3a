from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from .config import get_settings
from .sync import ProgressSynchronizer


log = logging.getLogger(__name__)


class PlaybackSurface(Protocol):
    def current_time(self) -> float: ...

    def duration(self) -> Optional[float]: ...


class PlaybackReporter:
    """Reports a surface's position on a fixed interval while it plays.

    Reporting on a timer rather than on every time update bounds write volume.
    `stop()` must be called when the surface is torn down; it cancels the
    timer and sends one last best-effort report.
    """

    def __init__(
        self,
        synchronizer: ProgressSynchronizer,
        surface: PlaybackSurface,
        subject_key: str,
        content_id: str,
        interval: Optional[float] = None,
    ):
        self.synchronizer = synchronizer
        self.surface = surface
        self.subject_key = subject_key
        self.content_id = str(content_id)
        self.interval = interval if interval is not None else get_settings().report_interval_s

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        # (position, duration) of the last accepted report.
        self.last_reported: Optional[tuple[float, Optional[float]]] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._worker, name=f"progress-{self.content_id}", daemon=True
        )
        self._thread.start()
        log.debug("reporting %s every %.1fs", self.content_id, self.interval)

    def stop(self, final_report: bool = True) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval, 1.0))
        if final_report:
            self.report_now()

    def _worker(self) -> None:
        while not self._stop.wait(self.interval):
            self.report_now()

    def _snapshot(self) -> Optional[tuple[float, Optional[float]]]:
        try:
            position = float(self.surface.current_time() or 0.0)
            duration = self.surface.duration()
        except Exception:
            # Surface already disposed or not ready; skip this tick.
            log.exception("couldn't read playback position for %s", self.content_id)
            return None

        duration = float(duration) if duration and duration > 0 else None
        position = max(0.0, position)
        if duration is not None:
            position = min(position, duration)
        return position, duration

    def report_now(self) -> bool:
        """Report unless neither position nor duration changed since last time."""
        snap = self._snapshot()
        if snap is None:
            return False
        position, duration = snap

        with self._lock:
            if snap == self.last_reported:
                return False
            self.last_reported = snap

        ok = self.synchronizer.report_progress(
            self.subject_key, self.content_id, position, duration
        )
        if not ok:
            # Let the next tick try the same values again.
            with self._lock:
                if self.last_reported == snap:
                    self.last_reported = None
        return ok
