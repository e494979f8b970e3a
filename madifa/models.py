from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatchProgress(SQLModel, table=True):
    __tablename__ = "watch_progress"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Authenticated owner; guests never reach the server.
    user_id: str = Field(index=True, nullable=False)
    content_id: str = Field(index=True, nullable=False)

    position_seconds: float = Field(default=0.0, nullable=False)
    # Unknown until the player reports real metadata.
    duration_seconds: Optional[float] = Field(default=None)
    device_id: Optional[str] = Field(default=None)

    # Always written timezone-aware; SQLite hands it back naive (still UTC).
    updated_at: datetime = Field(
        default_factory=utcnow, index=True, sa_type=DateTime(timezone=True)
    )

    __table_args__ = (UniqueConstraint("user_id", "content_id"),)
