"""
Tests for FastAPI endpoints
"""

# pylint: disable=redefined-outer-name,unused-argument

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest  # pylint: disable=import-error
from fastapi.testclient import TestClient

from heartqueue.config import Settings
from heartqueue.exceptions import SimilarityServiceError
from heartqueue.main import PROXY_VERSION, app
from heartqueue.models import AnalysisStatus, TempoWindow
from heartqueue.services.analysis_store import AnalysisStore
from heartqueue.services.cyanite_service import CyaniteService

client = TestClient(app)

COMPLETED_EVENT = {"__typename": "SpotifyTrackAnalysisCompletedEvent", "spotifyTrack": {"id": "seed"}}


@pytest.fixture(autouse=True)
def mock_settings():
    """Proxy settings with an upstream token"""
    with patch("heartqueue.main.settings", Settings(cyanite_access_token="test-token")) as settings:
        yield settings


@pytest.fixture(autouse=True)
def store():
    """Fresh analysis cache per test"""
    analysis_store = AnalysisStore()
    with patch("heartqueue.main.analysis_store", analysis_store):
        yield analysis_store


@pytest.fixture(autouse=True)
def mock_similarity_service():
    """Mock similarity provider client"""
    with patch("heartqueue.main.similarity_service") as mock:
        mock.similar_tracks = AsyncMock(return_value=[])
        mock.enqueue_analysis = AsyncMock(return_value=None)
        yield mock


def test_health_check(store):
    """Test health check endpoint"""
    store.mark_completed("seed")
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "cache_size": 1}


def test_analyze_without_track_id_reports_liveness(mock_similarity_service):
    """Test analyze without a track id returns version information"""
    response = client.get("/api/analyze")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"] == PROXY_VERSION
    assert body["message"]
    mock_similarity_service.similar_tracks.assert_not_awaited()


def test_analyze_missing_token():
    """Test a missing upstream token is reported as an error"""
    with patch("heartqueue.main.settings", Settings()):
        response = client.get("/api/analyze", params={"trackId": "seed"})
    assert response.status_code == 500
    assert response.json() == {"status": "error", "error": "Missing CYANITE_ACCESS_TOKEN env variable."}


def test_analyze_success_with_filters(mock_similarity_service, store):
    """Test filtered similar tracks are returned and the seed marked completed"""
    mock_similarity_service.similar_tracks.return_value = ["a", "b"]

    response = client.get(
        "/api/analyze", params={"trackId": "seed", "bpmStart": 150, "bpmEnd": 190, "genres": "Electronic,polka"}
    )

    assert response.status_code == 200
    assert response.json() == {"status": "success", "trackIds": ["a", "b"]}
    mock_similarity_service.similar_tracks.assert_awaited_once_with(
        "seed", TempoWindow(start=150, end=190), ["electronicDance"]
    )
    assert store.is_completed("seed")


def test_analyze_widens_to_unfiltered_query(mock_similarity_service):
    """Test an empty filtered result is retried without filters"""
    mock_similarity_service.similar_tracks.side_effect = [[], ["x"]]

    response = client.post("/api/analyze", params={"trackId": "seed", "genres": "rock"})

    assert response.json() == {"status": "success", "trackIds": ["x"]}
    assert mock_similarity_service.similar_tracks.await_args_list[1].args == ("seed",)


def test_analyze_retries_after_genre_error(mock_similarity_service):
    """Test a rejected genre filter is retried without filters"""
    mock_similarity_service.similar_tracks.side_effect = [
        SimilarityServiceError('Value "rock" does not exist in "MusicalGenre" enum.'),
        ["x"],
    ]

    response = client.get("/api/analyze", params={"trackId": "seed", "genres": "rock"})

    assert response.status_code == 200
    assert response.json() == {"status": "success", "trackIds": ["x"]}


def test_analyze_upstream_error(mock_similarity_service):
    """Test other upstream failures are reported as errors"""
    mock_similarity_service.similar_tracks.side_effect = SimilarityServiceError("Unauthorized")

    response = client.get("/api/analyze", params={"trackId": "seed"})

    assert response.status_code == 500
    assert response.json() == {"status": "error", "error": "Unauthorized"}


def test_analyze_enqueues_unknown_seed_once(mock_similarity_service, store):
    """Test an unknown seed is enqueued once and answered with analyzing"""
    first = client.get("/api/analyze", params={"trackId": "seed"})
    second = client.get("/api/analyze", params={"trackId": "seed"})

    assert first.json() == {"status": "analyzing"}
    assert second.json() == {"status": "analyzing"}
    mock_similarity_service.enqueue_analysis.assert_awaited_once_with("seed")
    assert store.get("seed").status == AnalysisStatus.ANALYZING


def test_analyze_enqueue_failure_is_retried(mock_similarity_service, store):
    """Test a failed enqueue leaves the seed pending for the next request"""
    mock_similarity_service.enqueue_analysis.side_effect = [SimilarityServiceError("rate limited"), None]

    assert client.get("/api/analyze", params={"trackId": "seed"}).status_code == 500
    assert store.get("seed").status == AnalysisStatus.PENDING

    assert client.get("/api/analyze", params={"trackId": "seed"}).json() == {"status": "analyzing"}
    assert mock_similarity_service.enqueue_analysis.await_count == 2


def test_completed_seed_without_matches_stops_polling(mock_similarity_service):
    """Test a completed seed with no similar tracks answers success with no ids"""
    client.post("/api/notify", json=COMPLETED_EVENT)

    response = client.get("/api/analyze", params={"trackId": "seed"})

    assert response.json() == {"status": "success", "trackIds": []}
    mock_similarity_service.enqueue_analysis.assert_not_awaited()


def test_analyze_rejects_invalid_bpm():
    """Test malformed query parameters fail validation"""
    response = client.get("/api/analyze", params={"trackId": "seed", "bpmStart": "fast"})
    assert response.status_code == 422


def test_notify_marks_analysis_completed(store):
    """Test the completion webhook records the seed"""
    response = client.post("/api/notify", json=COMPLETED_EVENT)
    assert response.status_code == 200
    assert response.json() == {"status": "success"}
    assert store.is_completed("seed")


def test_notify_ignores_other_events(store):
    """Test other event types are acknowledged without recording anything"""
    response = client.post("/api/notify", json={"__typename": "SpotifyTrackAnalysisFailedEvent"})
    assert response.json() == {"status": "success"}
    assert len(store) == 0


def test_notify_rejects_bad_payloads():
    """Test malformed webhook bodies are rejected"""
    missing_id = client.post("/api/notify", json={"__typename": "SpotifyTrackAnalysisCompletedEvent"})
    assert missing_id.status_code == 400

    not_json = client.post("/api/notify", content=b"not json")
    assert not_json.status_code == 400


def test_notify_signature_verification(store):
    """Test signed webhooks are checked when verification is enabled"""
    settings = Settings(cyanite_access_token="test-token", verify_webhook_signatures=True, cyanite_webhook_secret="s3")
    body = json.dumps(COMPLETED_EVENT).encode("utf-8")
    signature = hmac.new(b"s3", body, hashlib.sha256).hexdigest()

    with patch("heartqueue.main.settings", settings):
        rejected = client.post("/api/notify", content=body, headers={"Signature": "0" * 64})
        assert rejected.status_code == 401
        assert not store.is_completed("seed")

        accepted = client.post("/api/notify", content=body, headers={"Signature": signature})
        assert accepted.status_code == 200
        assert store.is_completed("seed")


def test_notify_rejected_when_secret_missing(store):
    """Test enabled verification without a secret rejects every webhook"""
    settings = Settings(cyanite_access_token="test-token", verify_webhook_signatures=True)

    with patch("heartqueue.main.settings", settings):
        response = client.post("/api/notify", json=COMPLETED_EVENT, headers={"Signature": "0" * 64})

    assert response.status_code == 500
    assert response.json()["status"] == "error"
    assert "CYANITE_WEBHOOK_SECRET" in response.json()["error"]
    assert not store.is_completed("seed")


def test_analyze_reports_malformed_upstream_body(mock_similarity_service):
    """Test a non-object upstream body is answered with the error payload"""
    transport = httpx.MockTransport(lambda request: httpx.Response(502, json=["bad gateway"]))
    upstream = CyaniteService(
        token="test-token", api_url="https://upstream.test/graphql", client=httpx.AsyncClient(transport=transport)
    )
    mock_similarity_service.similar_tracks = upstream.similar_tracks

    response = client.get("/api/analyze", params={"trackId": "seed"})

    assert response.status_code == 500
    assert response.json()["status"] == "error"
    assert "HTTP 502" in response.json()["error"]
