"""Tests for the status API."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeDetector, make_image
from facecue.app import build_services
from facecue.config import PipelineConfig
from facecue.monitoring import StatusServer
from facecue.perception.types import Frame, SourceTag
from facecue.sources.frame_source import PushFrameSource


class NoPhotos:
    def load_photo(self, photo_id):
        return None


@pytest.fixture
def services(registry):
    return build_services(
        config=PipelineConfig(),
        registry=registry,
        photos=NoPhotos(),
        detector=FakeDetector(),
        phone=PushFrameSource(tag=SourceTag.PRIMARY),
        glasses=PushFrameSource(tag=SourceTag.SECONDARY),
    )


@pytest.fixture
def client(services):
    with TestClient(StatusServer(services).app) as client:
        yield client


class TestStatus:
    """Tests for GET /api/status."""

    def test_status_sections(self, client):
        """Test that every component reports."""
        data = client.get("/api/status").json()
        for key in ("tracker", "arbiter", "channel", "cloud", "offline", "pipeline", "history"):
            assert key in data
        assert data["tracker"]["phase"] == "idle"
        assert data["arbiter"]["mode"] == "auto"

    def test_cloud_unavailable_reported(self, client):
        """Test the cloud section without credentials."""
        cloud = client.get("/api/status").json()["cloud"]
        assert cloud["available"] is False
        assert cloud["configured"] is False
        assert "not configured" in cloud["reason"]


class TestHistory:
    """Tests for the history endpoints."""

    def test_history_events(self, client, services, alice, bob):
        """Test listing without thumbnails by default."""
        services.history.log_recognition(alice, 91.0, image=make_image())
        services.history.log_recognition(bob, 75.0)

        data = client.get("/api/history").json()
        assert data["total"] == 2
        assert [e["person_id"] for e in data["events"]] == ["p-bob", "p-alice"]
        assert "thumbnail" not in data["events"][0]

    def test_history_filters(self, client, services, alice, bob):
        """Test person filter, limit and thumbnails."""
        services.history.log_recognition(alice, 91.0, image=make_image())
        services.history.log_recognition(alice, 92.0, image=make_image())
        services.history.log_recognition(bob, 75.0)

        data = client.get(
            "/api/history", params={"person_id": "p-alice", "limit": 1, "include_thumbnails": True}
        ).json()
        assert data["total"] == 2
        assert len(data["events"]) == 1
        assert data["events"][0]["thumbnail"]

    def test_history_limit_validated(self, client):
        """Test the limit bounds."""
        assert client.get("/api/history", params={"limit": 0}).status_code == 422

    def test_summaries(self, client, services, alice):
        """Test per-person summaries."""
        services.history.log_recognition(alice, 80.0)
        services.history.log_recognition(alice, 90.0)
        summaries = client.get("/api/history/summaries").json()["summaries"]
        assert summaries[0]["person_id"] == "p-alice"
        assert summaries[0]["total_recognitions"] == 2


class TestControl:
    """Tests for the control endpoints."""

    def test_set_camera_mode(self, client, services):
        """Test switching to the phone camera."""
        response = client.post("/api/camera-mode", json={"mode": "phone"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["mode"] == "phone"
        assert data["routed"] == "primary"
        assert data["status"] == "Phone camera ready"

    def test_invalid_camera_mode(self, client):
        """Test that unknown modes are rejected."""
        assert client.post("/api/camera-mode", json={"mode": "drone"}).status_code == 422

    def test_reset(self, client):
        """Test tracker reset."""
        data = client.post("/api/recognition/reset").json()
        assert data == {"success": True, "phase": "idle"}

    def test_reset_goes_through_pipeline(self, services):
        """Test that reset cancels attempts via the pipeline, not the tracker alone."""
        services.pipeline.reset = AsyncMock()
        with TestClient(StatusServer(services).app) as client:
            assert client.post("/api/recognition/reset").status_code == 200
        services.pipeline.reset.assert_awaited_once()

    def test_trigger_without_frame(self, client):
        """Test that a trigger before any frame conflicts."""
        response = client.post("/api/recognition/trigger")
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_trigger_with_frame(self, services):
        """Test a manual trigger after a frame was processed."""
        asyncio.run(services.pipeline.process_frame(Frame(image=make_image())))
        with TestClient(StatusServer(services).app) as client:
            response = client.post("/api/recognition/trigger")
        assert response.status_code == 200
        assert response.json() == {"success": True}
