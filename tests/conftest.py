import os

# Must be set before madifa.db builds its engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MADIFA_SECRET_KEY"] = "test-secret"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from madifa.db import engine
from madifa.device import DeviceIdentity
from madifa.identity import TokenIdentity
from madifa.local_store import LocalProgressCache, LocalStorage
from madifa.main import app
from madifa.remote_store import RemoteProgressStore
from madifa.security import create_access_token
from madifa.sync import ProgressSynchronizer


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(user_id):
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


class StepClock:
    """Deterministic clock: each call is one second after the previous one."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def make_sync(client):
    def _make(profile_dir, token=None, clock=None, http_client=None, max_records=None):
        identity = TokenIdentity(token)
        storage = LocalStorage(profile_dir)
        remote = RemoteProgressStore(http_client or client, identity)
        kwargs = {"clock": clock} if clock is not None else {}
        return ProgressSynchronizer(
            identity=identity,
            local=LocalProgressCache(storage, max_records=max_records),
            remote=remote,
            device=DeviceIdentity(storage),
            **kwargs,
        )

    return _make
