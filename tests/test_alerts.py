"""
Operational alerts and activity events (no server required).
Run: pytest tests/test_alerts.py -v
"""

import urllib.error

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ticketai import activity, webhook


class TestSendAlert:
    def test_noop_without_url(self, monkeypatch):
        monkeypatch.setattr(webhook.config, "WEBHOOK_URL", "")
        sent = []
        monkeypatch.setattr(webhook, "_do_post", lambda url, payload: sent.append(payload))
        assert webhook.send_alert("Ticket escalated", {"ticket": "TK-1"}) is False
        assert sent == []

    def test_posts_slack_payload(self, monkeypatch):
        sent = []
        monkeypatch.setattr(webhook, "_do_post", lambda url, payload: sent.append((url, payload)))
        assert webhook.send_alert("Ticket escalated", {"ticket": "TK-1", "assignee": "L1"},
                                  url="https://hooks.example/x")
        url, payload = sent[0]
        assert url == "https://hooks.example/x"
        assert payload["text"] == "Ticket escalated"
        attachment = payload["attachments"][0]
        assert attachment["color"] == "warning"
        assert attachment["fields"] == [
            {"title": "ticket", "value": "TK-1", "short": True},
            {"title": "assignee", "value": "L1", "short": True},
        ]

    def test_permanent_failure_alert_is_critical(self):
        payload = webhook.build_alert_payload("Classification service failing permanently", {"error": "bad key"})
        assert payload["attachments"][0]["color"] == "danger"

    @pytest.mark.parametrize("error", [urllib.error.URLError("down"), TimeoutError("slow")])
    def test_delivery_failure_is_swallowed(self, monkeypatch, error):
        def fail(url, payload):
            raise error

        monkeypatch.setattr(webhook, "_do_post", fail)
        assert webhook.send_alert("x", {}, url="https://hooks.example/x") is False


class TestActivity:
    @pytest.fixture(autouse=True)
    def reset(self):
        activity.clear()
        yield
        activity.clear()

    def test_log_is_bounded(self):
        for i in range(activity.MAX_EVENTS + 5):
            activity.emit("ticket_routed", {"n": i})
        events = activity.get_recent(limit=activity.MAX_EVENTS + 5)
        assert len(events) == activity.MAX_EVENTS
        assert events[-1]["data"]["n"] == activity.MAX_EVENTS + 4

    def test_publish_failure_is_logged_not_raised(self, monkeypatch):
        class DownRedis:
            def publish(self, channel, message):
                raise RedisConnectionError("refused")

        monkeypatch.setattr(activity, "get_redis", lambda: DownRedis())
        activity.publish_event("ticket_classified", {"ticket_id": "TK-1"})

    def test_published_message_keeps_worker_timestamp(self):
        activity.handle_message('{"type": "ticket_routed", "ts": 1700000000.5, "data": {"ticket_id": "TK-1"}}')
        (event,) = activity.get_recent()
        assert event == {"ts": 1700000000.5, "type": "ticket_routed", "data": {"ticket_id": "TK-1"}}

    @pytest.mark.parametrize("raw", ["not json", '{"data": {}}', "[1, 2]"])
    def test_malformed_message_is_skipped(self, raw):
        activity.handle_message(raw)
        assert activity.get_recent() == []

    def test_filter_by_type_and_tenant(self):
        activity.emit("ticket_classified", {"ticket_id": "TK-1", "tenant_id": "acme"})
        activity.emit("routing_failed", {"ticket_id": "TK-2", "tenant_id": "acme"})
        activity.emit("ticket_classified", {"ticket_id": "TK-3", "tenant_id": "other"})
        by_type = activity.get_recent(event_type="ticket_classified")
        assert [e["data"]["ticket_id"] for e in by_type] == ["TK-1", "TK-3"]
        both = activity.get_recent(event_type="ticket_classified", tenant_id="acme")
        assert [e["data"]["ticket_id"] for e in both] == ["TK-1"]
