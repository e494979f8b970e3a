from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .errors import MalformedRecordError


# At or past this ratio we don't resume into the credits.
COMPLETION_THRESHOLD = 0.95

# Default upper bound for the "continue watching" row.
CONTINUE_WATCHING_CEILING = 0.9


@dataclass(frozen=True)
class ProgressRecord:
    subject_key: str
    content_id: str
    position: float
    duration_hint: Optional[float]
    updated_at: datetime
    device_id: Optional[str] = None

    @property
    def ratio(self) -> Optional[float]:
        return resume_ratio(self.position, self.duration_hint)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subjectKey": self.subject_key,
            "contentId": self.content_id,
            "position": self.position,
            "durationHint": self.duration_hint,
            "updatedAt": self.updated_at.isoformat(),
            "deviceId": self.device_id,
        }

    @classmethod
    def from_dict(
        cls, data: Any, *, subject_key: str | None = None, content_id: str | None = None
    ) -> "ProgressRecord":
        """Parse the camelCase form used by local storage and the progress API.

        `subject_key` / `content_id` fill in fields the payload doesn't carry
        (the API never echoes the subject). Raises MalformedRecordError.
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(f"expected an object, got {type(data).__name__}")

        subject = data.get("subjectKey", subject_key)
        content = data.get("contentId", content_id)
        if subject is None or content is None:
            raise MalformedRecordError("record has no subject or content id")

        try:
            position = float(data["position"])
            duration = data.get("durationHint")
            duration = float(duration) if duration is not None else None
            updated_at = _parse_timestamp(data["updatedAt"])
            device_id = data.get("deviceId")
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRecordError(f"bad progress record: {e}") from e

        if position < 0 or position != position:
            raise MalformedRecordError(f"bad position {position!r}")

        return cls(
            subject_key=str(subject),
            content_id=str(content),
            position=position,
            duration_hint=duration,
            updated_at=updated_at,
            device_id=str(device_id) if device_id is not None else None,
        )

    def with_subject(self, subject_key: str) -> "ProgressRecord":
        return replace(self, subject_key=subject_key)


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    ts = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    # Everything in here is naive UTC.
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def resume_ratio(position: float, duration_hint: Optional[float]) -> Optional[float]:
    """position / duration, or None when the duration isn't known yet."""
    if not duration_hint or duration_hint <= 0:
        return None
    return position / duration_hint


def is_completed(record: ProgressRecord) -> bool:
    ratio = record.ratio
    return ratio is not None and ratio >= COMPLETION_THRESHOLD


def in_window(record: ProgressRecord, low: float, high: float) -> bool:
    ratio = record.ratio
    return ratio is not None and low < ratio < high


def most_recent_first(records: Iterable[ProgressRecord]) -> list[ProgressRecord]:
    return sorted(records, key=lambda r: r.updated_at, reverse=True)


@dataclass(frozen=True)
class ResumeDecision:
    """Where playback should start.

    status is one of:
    - "none": nothing usable on record, start at 0
    - "completed": watched past COMPLETION_THRESHOLD, start at 0
    - "resume": continue from `position`
    """

    position: float
    status: str
    record: Optional[ProgressRecord] = None

    @property
    def should_resume(self) -> bool:
        return self.status == "resume"


START_OVER = ResumeDecision(position=0.0, status="none")


def decide_resume(record: Optional[ProgressRecord]) -> ResumeDecision:
    if record is None or record.position <= 0:
        return START_OVER

    if is_completed(record):
        return ResumeDecision(position=0.0, status="completed", record=record)

    # Unknown duration can't prove completion, so resume.
    return ResumeDecision(position=record.position, status="resume", record=record)
