from datetime import datetime, timedelta

from jose import jwt
from sqlmodel import Session, select

from madifa.db import engine
from madifa.models import WatchProgress


def _put(client, headers, content_id, position, duration=None, device=None):
    body = {"position": position, "durationHint": duration, "deviceId": device}
    return client.put(f"/progress/{content_id}", json=body, headers=headers)


class TestAuth:
    def test_missing_token_is_401(self, client):
        resp = client.get("/progress/1")
        assert resp.status_code == 401

    def test_wrong_secret_is_401(self, client):
        token = jwt.encode({"sub": "7"}, "not-the-secret", algorithm="HS256")
        resp = client.get("/progress", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_garbage_token_is_401(self, client):
        resp = client.put(
            "/progress/1", json={"position": 3}, headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401


class TestUpsert:
    def test_first_put_creates(self, client, auth_headers):
        resp = _put(client, auth_headers("7"), "42", 10.5, 120, "device_a")
        assert resp.status_code == 201
        data = resp.json()
        assert data["contentId"] == "42"
        assert data["position"] == 10.5
        assert data["durationHint"] == 120
        assert data["deviceId"] == "device_a"
        assert "updatedAt" in data

    def test_repeat_put_replaces_single_row(self, client, auth_headers):
        headers = auth_headers("7")
        _put(client, headers, "42", 10, 120, "device_a")
        _put(client, headers, "42", 20, 120, "device_a")
        resp = _put(client, headers, "42", 30, 121, "device_b")
        assert resp.status_code == 200

        with Session(engine) as s:
            rows = s.exec(select(WatchProgress)).all()
        assert len(rows) == 1
        assert rows[0].position_seconds == 30
        assert rows[0].duration_seconds == 121
        assert rows[0].device_id == "device_b"

    def test_updated_at_is_timezone_aware_utc(self, client, auth_headers):
        headers = auth_headers("7")
        created = _put(client, headers, "42", 10, 120).json()
        fetched = client.get("/progress/42", headers=headers).json()
        for data in (created, fetched):
            stamp = datetime.fromisoformat(data["updatedAt"].replace("Z", "+00:00"))
            assert stamp.utcoffset() == timedelta(0)

    def test_position_is_not_clamped_to_duration(self, client, auth_headers):
        resp = _put(client, auth_headers("7"), "42", 130, 120)
        assert resp.status_code == 201
        assert resp.json()["position"] == 130

    def test_negative_position_rejected(self, client, auth_headers):
        resp = _put(client, auth_headers("7"), "42", -1, 120)
        assert resp.status_code == 422


class TestRead:
    def test_unknown_content_is_404(self, client, auth_headers):
        resp = client.get("/progress/999", headers=auth_headers("7"))
        assert resp.status_code == 404

    def test_records_are_per_user(self, client, auth_headers):
        _put(client, auth_headers("7"), "42", 58, 120)
        resp = client.get("/progress/42", headers=auth_headers("8"))
        assert resp.status_code == 404

    def test_get_returns_latest(self, client, auth_headers):
        headers = auth_headers("7")
        _put(client, headers, "42", 58, 120, "A")
        data = client.get("/progress/42", headers=headers).json()
        assert data["position"] == 58
        assert data["deviceId"] == "A"

    def test_content_id_with_slash(self, client, auth_headers):
        headers = auth_headers("7")
        assert _put(client, headers, "show%2Fep1", 12, 120).status_code == 201
        data = client.get("/progress/show%2Fep1", headers=headers).json()
        assert data["contentId"] == "show/ep1"
        assert data["position"] == 12


class TestList:
    def _seed(self, client, headers):
        _put(client, headers, "a", 10, 100)   # 0.10
        _put(client, headers, "b", 50, 100)   # 0.50
        _put(client, headers, "c", 96, 100)   # completed
        _put(client, headers, "d", 0, 100)    # unstarted
        _put(client, headers, "e", 30)        # unknown duration
        _put(client, headers, "f", 80, 100)   # 0.80

    def test_history_is_everything_newest_first(self, client, auth_headers):
        headers = auth_headers("7")
        self._seed(client, headers)
        ids = [r["contentId"] for r in client.get("/progress", headers=headers).json()]
        assert ids == ["f", "e", "d", "c", "b", "a"]

    def test_in_progress(self, client, auth_headers):
        headers = auth_headers("7")
        self._seed(client, headers)
        resp = client.get("/progress", params={"status": "in-progress"}, headers=headers)
        assert [r["contentId"] for r in resp.json()] == ["f", "b", "a"]

    def test_in_progress_custom_window_and_limit(self, client, auth_headers):
        headers = auth_headers("7")
        self._seed(client, headers)
        resp = client.get(
            "/progress",
            params={"status": "in-progress", "low": 0.2, "high": 0.99, "limit": 2},
            headers=headers,
        )
        assert [r["contentId"] for r in resp.json()] == ["f", "c"]

    def test_completed(self, client, auth_headers):
        headers = auth_headers("7")
        self._seed(client, headers)
        resp = client.get("/progress", params={"status": "completed"}, headers=headers)
        assert [r["contentId"] for r in resp.json()] == ["c"]

    def test_unknown_status_rejected(self, client, auth_headers):
        resp = client.get("/progress", params={"status": "bogus"}, headers=auth_headers("7"))
        assert resp.status_code == 422

    def test_other_users_not_listed(self, client, auth_headers):
        self._seed(client, auth_headers("7"))
        assert client.get("/progress", headers=auth_headers("8")).json() == []
