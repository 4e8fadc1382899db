"""Tests for the processing trigger routes.

Tests FastAPI endpoint integration with an in-memory gateway and fake encoder:
- 200 with the final video URL on success
- 400 for a missing eventId or an event without clips
- 401 when a bearer token is configured and missing or wrong
- 409 when the event is already processing
- 500 with error details on pipeline failures
- Status endpoint, legacy /api path and health check
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from gregaplay.config import Settings
from gregaplay.main import create_app
from gregaplay.models import EventStatus
from tests.support.factories import create_event_record
from tests.support.fakes import PUBLIC_BASE

FINAL_URL = f"{PUBLIC_BASE}/final_videos/E1.mp4"


@pytest.fixture
def settings(staging_root) -> Settings:
    return Settings(staging_root=staging_root)


@pytest.fixture
def client(settings, gateway, pipeline):
    """FastAPI test client with lifespan (runs the encoder probe)."""
    app = create_app(settings=settings, gateway=gateway, pipeline=pipeline)
    with TestClient(app) as test_client:
        yield test_client


class TestProcessVideo:
    def test_success_returns_final_url(self, client, gateway):
        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["message"] == "Video processed successfully"
        assert body["final_video_url"] == FINAL_URL
        assert body["event_id"] == "E1"
        assert body["clip_count"] == 3
        assert gateway.status_of("E1") is EventStatus.DONE

    def test_legacy_api_path(self, client):
        response = client.post("/api/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["final_video_url"] == FINAL_URL

    def test_missing_event_id_is_400(self, client, gateway):
        response = client.post("/process-video")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {
            "error": "Invalid request",
            "details": "eventId is required",
            "code": "missing_event_id",
        }
        assert gateway.calls == []

    def test_no_clips_is_400(self, client, gateway):
        gateway.add_event(create_event_record("E0"))

        response = client.post("/process-video", params={"eventId": "E0"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "no_clips"

    def test_unknown_event_is_404(self, client):
        response = client.post("/process-video", params={"eventId": "missing"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "event_not_found"

    def test_already_processing_is_409(self, client, gateway):
        gateway.add_event(create_event_record("E1", status=EventStatus.PROCESSING))

        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"] == "Event is already being processed"

    def test_encoder_failure_is_500(self, client, gateway, encoder, staging_root):
        encoder.returncode = 1
        encoder.stderr = f"{staging_root}/secret/path: Invalid data"

        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["error"] == "Video processing failed"
        assert body["details"] == "Encoder exited with code 1"
        assert body["code"] == "encoding_failed"
        assert str(staging_root) not in response.text
        assert gateway.status_of("E1") is EventStatus.READY

    def test_download_failure_is_500(self, client, gateway):
        gateway.failing_downloads.add("videos/E1/bob.mp4")

        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["details"] == "Failed to download clip videos/E1/bob.mp4"

    def test_unexpected_error_is_500(self, client, pipeline, mocker):
        mocker.patch.object(pipeline, "run", side_effect=RuntimeError("kaboom"))

        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["code"] == "internal_error"
        assert "kaboom" not in response.text


class TestAuthorization:
    @pytest.fixture
    def settings(self, staging_root) -> Settings:
        return Settings(staging_root=staging_root, api_token="s3cret")

    def test_missing_token_is_401(self, client, gateway):
        response = client.post("/process-video", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert gateway.calls == []

    def test_wrong_token_is_401(self, client):
        response = client.post(
            "/process-video",
            params={"eventId": "E1"},
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_valid_token_is_accepted(self, client):
        response = client.post(
            "/process-video",
            params={"eventId": "E1"},
            headers={"Authorization": "Bearer s3cret"},
        )

        assert response.status_code == status.HTTP_200_OK


class TestStatusEndpoint:
    def test_reports_status_and_url(self, client):
        client.post("/process-video", params={"eventId": "E1"})

        response = client.get("/process-video/status", params={"eventId": "E1"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "event_id": "E1",
            "status": "done",
            "final_video_url": FINAL_URL,
        }

    def test_missing_event_id(self, client):
        response = client.get("/process-video/status")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_event(self, client):
        response = client.get("/process-video/status", params={"eventId": "nope"})

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestHealthEndpoint:
    def test_health_reports_encoder(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "status": "healthy",
            "service": "gregaplay-video-pipeline",
            "ffmpeg": True,
        }

    def test_health_when_encoder_missing(self, settings, gateway, pipeline, encoder):
        encoder.available = False
        app = create_app(settings=settings, gateway=gateway, pipeline=pipeline)

        with TestClient(app) as client:
            response = client.get("/health")

        assert response.json()["ffmpeg"] is False

    def test_injected_gateway_is_not_closed(self, settings, gateway, pipeline):
        app = create_app(settings=settings, gateway=gateway, pipeline=pipeline)

        with TestClient(app):
            pass

        assert gateway.closed is False
