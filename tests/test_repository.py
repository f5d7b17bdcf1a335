"""
Tests for the loss repository's conditional writes.

These exercise the store-level guarantees the pipeline relies on:
unique signal keys, single cluster membership, versioned cluster
updates and one resolution request per key.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from loss_engine.clustering import ClusterScorer
from loss_engine.models import (
    EventType,
    GeoAggregate,
    GeoLevel,
    IngestionRun,
    LossSignal,
    ResolutionLevel,
    ResolutionRequest,
    SourceType,
    TriggerType,
)
from loss_engine.policy import ClusteringPolicy
from loss_engine.storage import (
    LossRepository,
    SignalAlreadyClaimedError,
    StaleClusterError,
    get_loss_repository,
    reset_loss_repository,
)


# =============================================================================
# Fixtures
# =============================================================================

T0 = datetime(2024, 5, 9, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(tmp_path):
    repo = LossRepository(f"sqlite:///{tmp_path / 'loss.db'}")
    repo.create_schema()
    yield repo
    repo.dispose()


@pytest.fixture
def scorer():
    return ClusterScorer(ClusteringPolicy())


def make_signal(event_id="evt-1", source_name="nws_alerts", at=T0, located=True):
    return LossSignal(
        source_type=SourceType.WEATHER,
        source_name=source_name,
        source_event_id=event_id,
        event_type=EventType.WIND,
        event_timestamp=at,
        latitude=32.7767 if located else None,
        longitude=-96.797 if located else None,
        severity_raw=0.6,
        confidence_raw=0.6,
        zip_code="75201",
        raw_payload={"headline": "Wind advisory"},
    )


# =============================================================================
# Unit Tests: Signals
# =============================================================================


class TestSignals:

    def test_insert_assigns_id_and_ingested_at(self, repository):
        stored = repository.insert_signal(make_signal())

        assert stored.id is not None
        assert stored.ingested_at is not None
        assert stored.cluster_id is None
        assert stored.raw_payload == {"headline": "Wind advisory"}
        assert repository.get_signal(stored.id) == stored

    def test_duplicate_key_returns_none(self, repository):
        repository.insert_signal(make_signal("evt-1"))

        assert repository.insert_signal(make_signal("evt-1")) is None
        assert repository.count_signals() == 1

    def test_missing_external_id_not_deduplicated(self, repository):
        repository.insert_signal(make_signal(None))
        repository.insert_signal(make_signal(None))

        assert repository.count_signals() == 2

    def test_timestamps_come_back_as_utc(self, repository):
        """Offsets are normalised on write and UTC attached on read."""
        local = T0.astimezone(timezone(timedelta(hours=-5)))
        stored = repository.insert_signal(make_signal(at=local))

        loaded = repository.get_signal(stored.id)
        assert loaded.event_timestamp == T0
        assert loaded.event_timestamp.utcoffset() == timedelta(0)

    def test_unclustered_listing_is_oldest_first(self, repository):
        later = repository.insert_signal(make_signal("b", at=T0 + timedelta(hours=1)))
        earlier = repository.insert_signal(make_signal("a", at=T0))

        assert [s.id for s in repository.list_unclustered_signals()] == [earlier.id, later.id]
        assert len(repository.list_unclustered_signals(limit=1)) == 1


# =============================================================================
# Unit Tests: Clusters
# =============================================================================


class TestClusters:

    def test_create_cluster_claims_seed(self, repository, scorer):
        seed = repository.insert_signal(make_signal())

        cluster = repository.create_cluster(scorer.build([seed]), seed.id)

        assert cluster.id is not None
        assert cluster.version == 1
        assert repository.get_signal(seed.id).cluster_id == cluster.id
        assert repository.get_signal_cluster_id(seed.id) == cluster.id

    def test_create_with_claimed_seed_rolls_back(self, repository, scorer):
        seed = repository.insert_signal(make_signal())
        first = repository.create_cluster(scorer.build([seed]), seed.id)

        with pytest.raises(SignalAlreadyClaimedError) as exc_info:
            repository.create_cluster(scorer.build([seed]), seed.id)

        assert exc_info.value.cluster_id == first.id
        assert [c.id for c in repository.list_clusters()] == [first.id]

    def test_attach_bumps_version(self, repository, scorer):
        seed = repository.insert_signal(make_signal("a"))
        other = repository.insert_signal(make_signal("b"))
        cluster = repository.create_cluster(scorer.build([seed]), seed.id)

        updated = repository.attach_signal(
            scorer.build([seed, other], previous=cluster), cluster.version, other.id
        )

        assert updated.version == cluster.version + 1
        assert updated.signal_count == 2
        assert [s.id for s in repository.list_cluster_signals(cluster.id)] == [seed.id, other.id]

    def test_stale_version_rejected(self, repository, scorer):
        """Writes against an old version fail and claim nothing."""
        seed = repository.insert_signal(make_signal("a"))
        other = repository.insert_signal(make_signal("b"))
        cluster = repository.create_cluster(scorer.build([seed]), seed.id)

        with pytest.raises(StaleClusterError):
            repository.attach_signal(
                scorer.build([seed, other], previous=cluster), cluster.version - 1, other.id
            )

        assert repository.get_signal(other.id).cluster_id is None
        assert repository.get_cluster(cluster.id).signal_count == 1

    def test_claimed_signal_rolls_back_cluster_update(self, repository, scorer):
        seed = repository.insert_signal(make_signal("a"))
        cluster = repository.create_cluster(scorer.build([seed]), seed.id)

        with pytest.raises(SignalAlreadyClaimedError):
            repository.attach_signal(
                scorer.build([seed, seed], previous=cluster), cluster.version, seed.id
            )

        reloaded = repository.get_cluster(cluster.id)
        assert reloaded.version == cluster.version
        assert reloaded.signal_count == 1

    def test_attach_requires_cluster_id(self, repository, scorer):
        seed = repository.insert_signal(make_signal())

        with pytest.raises(ValueError):
            repository.attach_signal(scorer.build([seed]), 1, seed.id)

    def test_active_clusters_filtered_by_last_signal(self, repository, scorer):
        old = repository.insert_signal(make_signal("a", at=T0 - timedelta(days=3)))
        new = repository.insert_signal(make_signal("b", at=T0))
        repository.create_cluster(scorer.build([old]), old.id)
        recent = repository.create_cluster(scorer.build([new]), new.id)

        active = repository.list_active_clusters(since=T0 - timedelta(hours=24))

        assert [c.id for c in active] == [recent.id]


# =============================================================================
# Unit Tests: Runs, Aggregates, Requests
# =============================================================================


class TestRecords:

    def test_run_lifecycle(self, repository):
        run = repository.start_run(IngestionRun(SourceType.NEWS, "news_rss", T0))
        run.signals_ingested = 4
        run.finished_at = T0 + timedelta(minutes=1)
        repository.finish_run(run)

        stored = repository.get_run(run.id)
        assert stored.signals_ingested == 4
        assert stored.finished_at == T0 + timedelta(minutes=1)

    def test_finish_unstarted_run(self, repository):
        with pytest.raises(ValueError):
            repository.finish_run(IngestionRun(SourceType.NEWS, "news_rss", T0))

    def test_aggregate_upsert_replaces(self, repository):
        def aggregate(count):
            return GeoAggregate(
                geo_level=GeoLevel.ZIP,
                geo_code="75201",
                date=date(2024, 5, 9),
                event_count=count,
                average_claim_probability=0.5,
                max_claim_probability=0.6,
                resolution_level=ResolutionLevel.FULL,
                source_types=frozenset({SourceType.CAD}),
                computed_at=T0,
            )

        first = repository.upsert_geo_aggregate(aggregate(1))
        second = repository.upsert_geo_aggregate(aggregate(4))

        assert second.id == first.id
        stored = repository.get_geo_aggregate(GeoLevel.ZIP, "75201", date(2024, 5, 9))
        assert stored.event_count == 4
        assert stored.source_types == frozenset({SourceType.CAD})

    def test_resolution_request_unique_per_key(self, repository):
        request = ResolutionRequest(
            zip_code="75201",
            date=date(2024, 5, 9),
            trigger_type=TriggerType.AUTO,
            requested_at=T0,
            max_properties=500,
            threshold_snapshot={"eligible": True},
        )

        stored = repository.insert_resolution_request(request)

        assert stored.id is not None
        assert stored.threshold_snapshot == {"eligible": True}
        assert repository.insert_resolution_request(request) is None


# =============================================================================
# Unit Tests: Singleton
# =============================================================================


class TestSingleton:

    def test_singleton_reused_until_reset(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'singleton.db'}"
        reset_loss_repository()
        try:
            first = get_loss_repository(url)
            assert get_loss_repository() is first
            assert first.database_url == url
        finally:
            reset_loss_repository()

    def test_in_memory_database(self):
        repo = LossRepository("sqlite://")
        repo.create_schema()
        try:
            stored = repo.insert_signal(make_signal())
            assert repo.get_signal(stored.id) is not None
        finally:
            repo.dispose()
