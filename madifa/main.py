from __future__ import annotations

import logging

from fastapi import FastAPI

from .api import build_progress_router
from .config import get_settings
from .db import get_session, init_db


app = FastAPI(title="Madifa Progress")


log = logging.getLogger(__name__)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    settings = get_settings()
    log.info("progress service ready (sqlite=%s)", settings.database_url.startswith("sqlite"))


# Watch progress: remote store for signed-in viewers
app.include_router(build_progress_router(get_session_dep=get_session))
