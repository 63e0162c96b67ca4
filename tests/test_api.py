"""Tests for the HTTP API."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from leasescope.api.server import create_app
from leasescope.core.events import EventBus
from leasescope.core.index import IndexSnapshot
from leasescope.core.models import EventType, ReloadEvent
from leasescope.core.query import QueryService, StaticSource


@pytest.fixture
def client(snapshot: IndexSnapshot) -> TestClient:
    return TestClient(create_app(QueryService(StaticSource(snapshot))))


class TestDevices:
    def test_list(self, client: TestClient) -> None:
        resp = client.get("/api/devices")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 5
        assert body["version"] == 1
        assert body["records"][0]["mac"] == "00:11:22:33:44:55"
        assert body["records"][0]["display_name"] == "laptop"

    def test_filter_and_page(self, client: TestClient) -> None:
        resp = client.get("/api/devices", params={"prefix": "00:1b:21", "page_size": 1, "page": 2})
        body = resp.json()
        assert body["total"] == 2
        assert [r["mac"] for r in body["records"]] == ["00:1b:21:aa:bb:cc"]

    def test_bad_prefix_is_422(self, client: TestClient) -> None:
        assert client.get("/api/devices", params={"prefix": "zz"}).status_code == 422

    def test_get_device(self, client: TestClient) -> None:
        resp = client.get("/api/devices/00-1B-21-AA-BB-CC")
        assert resp.status_code == 200
        body = resp.json()
        assert body["address"] == "192.0.2.20"
        assert body["has_host"] is True
        assert body["vendor"] == "unknown"
        assert body["reachable"] == "unknown"

    def test_get_device_missing(self, client: TestClient) -> None:
        assert client.get("/api/devices/de:ad:be:ef:00:01").status_code == 404

    def test_get_device_invalid(self, client: TestClient) -> None:
        assert client.get("/api/devices/not-a-mac").status_code == 422

    def test_by_ip_and_prefix(self, client: TestClient) -> None:
        assert [r["mac"] for r in client.get("/api/ip/192.0.2.150").json()] == ["aa:bb:cc:00:00:01"]
        assert client.get("/api/ip/198.51.100.1").json() == []
        assert client.get("/api/ip/not-an-ip").status_code == 422
        assert len(client.get("/api/prefix/aa:bb:cc").json()) == 2

    def test_whoami_from_non_ipv4_client(self, client: TestClient) -> None:
        """The test client's peer is not an IPv4 address."""
        resp = client.get("/api/whoami")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_vendors_without_resolver(self, client: TestClient) -> None:
        assert client.get("/api/vendors").json() == []


class TestStatus:
    def test_health(self, client: TestClient) -> None:
        body = client.get("/api/health").json()
        assert body["ready"] is True
        assert body["state"] == "idle"
        assert body["version"] == 1
        assert body["record_count"] == 5

    def test_not_ready(self) -> None:
        client = TestClient(create_app(QueryService(StaticSource(None))))
        assert client.get("/api/devices").status_code == 503
        assert client.get("/api/devices/00:11:22:33:44:55").status_code == 503
        body = client.get("/api/health").json()
        assert body["ready"] is False
        assert body["stale"] is True

    def test_diagnostics(self, client: TestClient) -> None:
        assert client.get("/api/diagnostics").json() == []

    def test_events(self, snapshot: IndexSnapshot) -> None:
        bus = EventBus()
        asyncio.run(bus.publish(ReloadEvent(event_type=EventType.SNAPSHOT_PUBLISHED, version=1)))
        asyncio.run(bus.publish(ReloadEvent(event_type=EventType.DEGRADED, details={"error": "boom"})))
        client = TestClient(create_app(QueryService(StaticSource(snapshot)), event_bus=bus))

        events = client.get("/api/events").json()
        assert [e["event_type"] for e in events] == ["degraded", "snapshot_published"]
        assert events[0]["details"] == {"error": "boom"}
        assert len(client.get("/api/events", params={"limit": 1}).json()) == 1
        filtered = client.get("/api/events", params={"type": "snapshot_published"}).json()
        assert [e["version"] for e in filtered] == [1]


class TestReload:
    def test_without_coordinator(self, client: TestClient) -> None:
        assert client.post("/api/reload").status_code == 503

    def test_queues_reload(self, snapshot: IndexSnapshot) -> None:
        coordinator = MagicMock()
        coordinator.event_bus = EventBus()
        client = TestClient(create_app(QueryService(StaticSource(snapshot)), coordinator=coordinator))

        resp = client.post("/api/reload")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        coordinator.request_reload.assert_called_once_with()
