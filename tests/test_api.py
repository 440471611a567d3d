"""
Ops API: health, worker status, queue lengths, activity. Redis reads are monkeypatched.
Run: pytest tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from ticketai import activity
from ticketai import main


@pytest.fixture
def client():
    # no `with`: the lifespan would start the Redis subscriber thread
    return TestClient(main.app)


@pytest.fixture(autouse=True)
def reset_activity():
    activity.clear()
    yield
    activity.clear()


def _worker(name, last_permanent_error=""):
    return {"name": name, "kind": "classification", "state": "running", "processed": "3",
            "failed": "0", "last_permanent_error": last_permanent_error}


class TestHealth:
    def test_ok_when_workers_healthy(self, client, monkeypatch):
        monkeypatch.setattr(main, "read_worker_statuses", lambda: [_worker("w1")])
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.json()["workers"][0]["name"] == "w1"

    def test_degraded_on_permanent_error(self, client, monkeypatch):
        monkeypatch.setattr(
            main, "read_worker_statuses",
            lambda: [_worker("w1"), _worker("w2", "PermanentServiceError: invalid API key")],
        )
        assert client.get("/health").json()["status"] == "degraded"

    def test_degraded_when_redis_down(self, client, monkeypatch):
        def boom():
            raise RedisConnectionError("refused")

        monkeypatch.setattr(main, "read_worker_statuses", boom)
        data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert "redis unavailable" in data["error"]


class TestStatusEndpoints:
    def test_workers(self, client, monkeypatch):
        monkeypatch.setattr(main, "read_worker_statuses", lambda: [_worker("w1")])
        assert client.get("/workers").json() == {"workers": [_worker("w1")]}

    def test_queues(self, client, monkeypatch):
        lengths = {"ai:classification:queue": 4, "ai:classification:queue:retry": 1, "ai:routing:queue": 0}
        monkeypatch.setattr(main, "queue_lengths", lambda: lengths)
        assert client.get("/queues").json() == {"queues": lengths}

    def test_activity_newest_last_with_limit(self, client):
        for i in range(5):
            activity.emit("ticket_classified", {"ticket_id": f"TK-{i}"})
        events = client.get("/activity", params={"limit": 2}).json()["events"]
        assert [e["data"]["ticket_id"] for e in events] == ["TK-3", "TK-4"]

    def test_activity_out_of_range_limit_falls_back(self, client):
        activity.emit("routing_failed", {"ticket_id": "TK-1"})
        events = client.get("/activity", params={"limit": 0}).json()["events"]
        assert len(events) == 1

    def test_activity_filters(self, client):
        activity.emit("ticket_routed", {"ticket_id": "TK-1", "tenant_id": "acme"})
        activity.emit("routing_failed", {"ticket_id": "TK-2", "tenant_id": "acme"})
        events = client.get("/activity", params={"type": "routing_failed", "tenant": "acme"}).json()["events"]
        assert [e["data"]["ticket_id"] for e in events] == ["TK-2"]
