from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    jwt_algorithm: str
    token_expire_minutes: int

    # Client side
    api_url: str
    profile_dir: Path
    report_interval_s: float
    local_max_records: int | None
    http_timeout_s: float


def get_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL", "sqlite:///./madifa.db").strip()

    profile_dir_raw = os.getenv("MADIFA_PROFILE_DIR", "").strip()
    if not profile_dir_raw:
        profile_dir = Path("./.madifa-profile").resolve()
    else:
        profile_dir = Path(profile_dir_raw).expanduser().resolve()

    # 0 disables the local record bound.
    max_records = int(os.getenv("MADIFA_LOCAL_MAX_RECORDS", "500"))

    return Settings(
        database_url=database_url,
        secret_key=os.getenv("MADIFA_SECRET_KEY", "madifa-dev-secret"),
        jwt_algorithm=os.getenv("MADIFA_JWT_ALGORITHM", "HS256"),
        token_expire_minutes=int(os.getenv("MADIFA_TOKEN_EXPIRE_MINUTES", "10080")),
        api_url=os.getenv("MADIFA_API_URL", "http://127.0.0.1:8000").rstrip("/"),
        profile_dir=profile_dir,
        report_interval_s=float(os.getenv("MADIFA_REPORT_INTERVAL", "10")),
        local_max_records=max_records or None,
        http_timeout_s=float(os.getenv("MADIFA_HTTP_TIMEOUT", "5")),
    )
