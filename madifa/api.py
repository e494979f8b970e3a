from __future__ import annotations

from collections.abc import Callable
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlmodel import Session, select

from .models import WatchProgress, utcnow
from .progress import (
    CONTINUE_WATCHING_CEILING,
    ProgressRecord,
    in_window,
    is_completed,
)
from .security import get_current_user_id


log = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressIn(_CamelModel):
    position: float = Field(ge=0.0)
    duration_hint: Optional[float] = Field(default=None, ge=0.0)
    device_id: Optional[str] = Field(default=None, max_length=128)


class ProgressOut(_CamelModel):
    content_id: str
    position: float
    duration_hint: Optional[float] = None
    updated_at: datetime
    device_id: Optional[str] = None


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _out(row: WatchProgress) -> ProgressOut:
    return ProgressOut(
        content_id=row.content_id,
        position=row.position_seconds,
        duration_hint=row.duration_seconds,
        updated_at=_as_utc(row.updated_at),
        device_id=row.device_id,
    )


def _as_record(row: WatchProgress) -> ProgressRecord:
    return ProgressRecord(
        subject_key=row.user_id,
        content_id=row.content_id,
        position=row.position_seconds,
        duration_hint=row.duration_seconds,
        updated_at=row.updated_at,
        device_id=row.device_id,
    )


def _find(session: Session, user_id: str, content_id: str) -> Optional[WatchProgress]:
    stmt = select(WatchProgress).where(
        WatchProgress.user_id == user_id, WatchProgress.content_id == content_id
    )
    return session.exec(stmt).first()


def build_progress_router(*, get_session_dep: Callable[[], Session]) -> APIRouter:
    """Remote progress store used by the client synchronizer.

    - GET/PUT a single record per (user, content)
    - list history / continue-watching / completed, most recent first

    Built as a factory so the app (and tests) choose the session dependency.
    """

    r = APIRouter(prefix="/progress", tags=["progress"])

    @r.get("", response_model=list[ProgressOut])
    def list_progress(
        status_filter: Optional[str] = Query(
            default=None, alias="status", pattern="^(in-progress|completed)$"
        ),
        low: float = Query(default=0.0, ge=0.0),
        high: float = Query(default=CONTINUE_WATCHING_CEILING, gt=0.0),
        limit: Optional[int] = Query(default=None, ge=1, le=100),
        user_id: str = Depends(get_current_user_id),
        session: Session = Depends(get_session_dep),
    ):
        rows = session.exec(
            select(WatchProgress)
            .where(WatchProgress.user_id == user_id)
            .order_by(WatchProgress.updated_at.desc(), WatchProgress.id.desc())
        ).all()

        if status_filter == "in-progress":
            rows = [row for row in rows if in_window(_as_record(row), low, high)]
        elif status_filter == "completed":
            rows = [row for row in rows if is_completed(_as_record(row))]

        if limit is not None:
            rows = rows[:limit]
        return [_out(row) for row in rows]

    @r.get("/{content_id:path}", response_model=ProgressOut)
    def get_progress(
        content_id: str,
        user_id: str = Depends(get_current_user_id),
        session: Session = Depends(get_session_dep),
    ):
        row = _find(session, user_id, content_id)
        if not row:
            raise HTTPException(404, "No progress for this content")
        return _out(row)

    @r.put("/{content_id:path}", response_model=ProgressOut)
    def put_progress(
        content_id: str,
        payload: ProgressIn,
        response: Response,
        user_id: str = Depends(get_current_user_id),
        session: Session = Depends(get_session_dep),
    ):
        row = _find(session, user_id, content_id)
        if not row:
            row = WatchProgress(user_id=user_id, content_id=content_id)
            response.status_code = status.HTTP_201_CREATED
        else:
            response.status_code = status.HTTP_200_OK

        # Last write wins: every field is replaced, nothing is merged.
        row.position_seconds = payload.position
        row.duration_seconds = payload.duration_hint
        row.device_id = payload.device_id
        row.updated_at = utcnow()

        session.add(row)
        session.commit()
        session.refresh(row)

        log.debug(
            "progress user=%s content=%s position=%.1f device=%s",
            user_id, content_id, row.position_seconds, row.device_id,
        )
        return _out(row)

    return r
