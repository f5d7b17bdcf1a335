"""
Tests for the FastAPI job endpoints.

The store and config dependencies are overridden per test so each test
gets its own SQLite file and its own secret.
"""

import pytest
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from loss_engine.storage import LossRepository
from utils.config import Config
from web.app import app, get_config, get_repository


# =============================================================================
# Fixtures
# =============================================================================

AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def repository(tmp_path):
    repo = LossRepository(f"sqlite:///{tmp_path / 'loss.db'}")
    repo.create_schema()
    yield repo
    repo.dispose()


@pytest.fixture
def client(repository):
    config = Config(
        cron_secret="s3cret",
        database_url=repository.database_url,
        enable_auto_resolution=True,
        min_event_count=1,
    )
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


def storm_item(event_id, km_offset=0.0, severity="Severe"):
    return {
        "source_event_id": event_id,
        "event_type": "Hail",
        "event_timestamp": "2024-05-09T15:00:00Z",
        "geometry": {"type": "Point", "coordinates": [-96.797, 32.7767 + km_offset / 111.0]},
        "native_severity": severity,
        "native_certainty": "Observed",
        "zip_code": "75201",
    }


# =============================================================================
# API Tests
# =============================================================================


class TestPublicEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_feeds_lists_active_registrations(self, client):
        response = client.get("/feeds")

        names = {f["source_name"] for f in response.json()}
        assert "nws_alerts" in names
        assert "active911" not in names


class TestAuth:

    def test_missing_token_rejected(self, client):
        response = client.post("/runs/cluster")

        assert response.status_code == 401

    def test_wrong_token_rejected(self, client):
        response = client.post("/runs/cluster", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_no_secret_configured_allows_calls(self, repository):
        config = Config(cron_secret=None, database_url=repository.database_url)
        app.dependency_overrides[get_config] = lambda: config
        app.dependency_overrides[get_repository] = lambda: repository
        try:
            response = TestClient(app).post("/runs/cluster")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200


class TestJobs:

    def test_unknown_feed_is_404(self, client):
        response = client.post("/runs/ingest/carrier_pigeon", json={"items": []}, headers=AUTH)

        assert response.status_code == 404

    def test_ingest_cluster_aggregate_resolve(self, client, repository):
        """The full daily job sequence over HTTP."""
        items = [storm_item("a"), storm_item("b", km_offset=1.0), storm_item("c", km_offset=30.0)]

        ingest = client.post("/runs/ingest/noaa_storm_reports", json={"items": items}, headers=AUTH)
        assert ingest.status_code == 200
        assert ingest.json()["status"] == "success"
        assert ingest.json()["signals_ingested"] == 3

        cluster = client.post("/runs/cluster", headers=AUTH)
        assert cluster.status_code == 200
        assert cluster.json()["clusters_created"] == 2
        assert cluster.json()["signals_clustered"] == 3

        aggregate = client.post(
            "/geo/aggregate", json={"zip_code": "75201", "day": "2024-05-09"}, headers=AUTH
        )
        assert aggregate.status_code == 200
        assert aggregate.json()["event_count"] == 2
        assert aggregate.json()["resolution_level"] == "full"

        resolve = client.post(
            "/geo/resolve",
            json={"zip_code": "75201", "trigger_type": "auto", "day": "2024-05-09"},
            headers=AUTH,
        )
        assert resolve.status_code == 200
        assert resolve.json()["emitted"] is True
        assert resolve.json()["request"]["trigger_type"] == "auto"

        repeat = client.post(
            "/geo/resolve",
            json={"zip_code": "75201", "trigger_type": "auto", "day": "2024-05-09"},
            headers=AUTH,
        )
        assert repeat.json() == {"emitted": False, "request": None}

    def test_ingest_validates_body(self, client):
        response = client.post(
            "/runs/ingest/nws_alerts", json={"items": [], "deadline_seconds": -1}, headers=AUTH
        )

        assert response.status_code == 422

    def test_resolve_rejects_unknown_trigger(self, client):
        response = client.post(
            "/geo/resolve", json={"zip_code": "75201", "trigger_type": "psychic"}, headers=AUTH
        )

        assert response.status_code == 422
