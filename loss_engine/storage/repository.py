"""
Loss Repository - Persistent Storage for Signals, Clusters and Rollups

Backed by SQLAlchemy; SQLite for development and tests, PostgreSQL in
production. All race-prone writes are conditional at the store level:

- signal inserts rely on the (source_type, source_name, source_event_id)
  unique constraint
- cluster membership is claimed with `cluster_id IS NULL` plus a
  membership row keyed by signal_id
- cluster updates are compare-and-swap on `version`
- resolution requests rely on the (zip_code, date, trigger_type) key

Each conditional write is a single short transaction covering one
signal's worth of work.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from loss_engine.geo_math import utc_now
from loss_engine.models import (
    EventType,
    GeoAggregate,
    GeoLevel,
    IngestionRun,
    LossCluster,
    LossSignal,
    ResolutionLevel,
    ResolutionRequest,
    RunStatus,
    SourceType,
    TriggerType,
    VerificationStatus,
)
from loss_engine.storage.tables import (
    Base,
    ClusterRow,
    GeoAggregateRow,
    IngestionRunRow,
    MembershipRow,
    ResolutionRequestRow,
    SignalRow,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class SignalAlreadyClaimedError(Exception):
    """A signal was already assigned to a cluster when we tried to claim it."""

    def __init__(self, signal_id: int, cluster_id: Optional[int] = None):
        self.signal_id = signal_id
        self.cluster_id = cluster_id
        super().__init__(
            f"Signal {signal_id} is already assigned"
            + (f" to cluster {cluster_id}" if cluster_id is not None else "")
        )


class StaleClusterError(Exception):
    """Cluster changed since it was read; reload and recompute."""

    def __init__(self, cluster_id: int, expected_version: int):
        self.cluster_id = cluster_id
        self.expected_version = expected_version
        super().__init__(
            f"Cluster {cluster_id} is no longer at version {expected_version}"
        )


# =============================================================================
# Row Mapping
# =============================================================================


def _signal_from_row(row: SignalRow) -> LossSignal:
    return LossSignal(
        id=row.id,
        source_type=SourceType(row.source_type),
        source_name=row.source_name,
        source_event_id=row.source_event_id,
        event_type=EventType(row.event_type),
        event_timestamp=row.event_timestamp,
        latitude=row.latitude,
        longitude=row.longitude,
        area_description=row.area_description,
        zip_code=row.zip_code,
        state_code=row.state_code,
        county_fips=row.county_fips,
        severity_raw=row.severity_raw,
        confidence_raw=row.confidence_raw,
        raw_payload=dict(row.raw_payload or {}),
        ingested_at=row.ingested_at,
        cluster_id=row.cluster_id,
    )


def _cluster_from_row(row: ClusterRow) -> LossCluster:
    return LossCluster(
        id=row.id,
        centroid_latitude=row.centroid_latitude,
        centroid_longitude=row.centroid_longitude,
        signal_count=row.signal_count,
        source_types=frozenset(SourceType(s) for s in row.source_types),
        event_types=frozenset(EventType(e) for e in row.event_types),
        primary_event_type=EventType(row.primary_event_type),
        confidence_score=row.confidence_score,
        severity_score=row.severity_score,
        verification_status=VerificationStatus(row.verification_status),
        suppressed=row.suppressed,
        zip_code=row.zip_code,
        state_code=row.state_code,
        county_fips=row.county_fips,
        first_signal_at=row.first_signal_at,
        last_signal_at=row.last_signal_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _cluster_values(cluster: LossCluster) -> dict:
    """Column values for the mutable part of a cluster."""
    return {
        "centroid_latitude": cluster.centroid_latitude,
        "centroid_longitude": cluster.centroid_longitude,
        "signal_count": cluster.signal_count,
        "source_types": sorted(s.value for s in cluster.source_types),
        "event_types": sorted(e.value for e in cluster.event_types),
        "primary_event_type": cluster.primary_event_type.value,
        "confidence_score": cluster.confidence_score,
        "severity_score": cluster.severity_score,
        "verification_status": cluster.verification_status.value,
        "suppressed": cluster.suppressed,
        "zip_code": cluster.zip_code,
        "state_code": cluster.state_code,
        "county_fips": cluster.county_fips,
        "first_signal_at": cluster.first_signal_at,
        "last_signal_at": cluster.last_signal_at,
    }


def _run_from_row(row: IngestionRunRow) -> IngestionRun:
    return IngestionRun(
        id=row.id,
        source_type=SourceType(row.source_type),
        source_name=row.source_name,
        started_at=row.started_at,
        finished_at=row.finished_at,
        status=RunStatus(row.status),
        signals_ingested=row.signals_ingested,
        signals_skipped=row.signals_skipped,
        signals_failed=row.signals_failed,
        error_message=row.error_message,
    )


def _aggregate_from_row(row: GeoAggregateRow) -> GeoAggregate:
    return GeoAggregate(
        id=row.id,
        geo_level=GeoLevel(row.geo_level),
        geo_code=row.geo_code,
        date=row.date,
        event_count=row.event_count,
        average_claim_probability=row.average_claim_probability,
        max_claim_probability=row.max_claim_probability,
        resolution_level=ResolutionLevel(row.resolution_level),
        source_types=frozenset(SourceType(s) for s in row.source_types),
        computed_at=row.computed_at,
    )


def _request_from_row(row: ResolutionRequestRow) -> ResolutionRequest:
    return ResolutionRequest(
        id=row.id,
        zip_code=row.zip_code,
        date=row.date,
        trigger_type=TriggerType(row.trigger_type),
        requested_at=row.requested_at,
        max_properties=row.max_properties,
        threshold_snapshot=dict(row.threshold_snapshot or {}),
    )


# =============================================================================
# Repository
# =============================================================================


class LossRepository:
    """
    Repository for every persisted loss-engine record.

    Components receive a repository explicitly; get_loss_repository()
    provides the process-wide default for the CLI and web app.
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialise repository.

        Args:
            database_url: SQLAlchemy URL, e.g. sqlite:///./data/loss_engine.db
            echo: Log emitted SQL
        """
        engine_kwargs: dict = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
            elif database_url.startswith("sqlite:///"):
                Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

        self.database_url = database_url
        self._engine = create_engine(database_url, **engine_kwargs)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    def session(self) -> Session:
        return self._sessions()

    # =========================================================================
    # Signals
    # =========================================================================

    def insert_signal(self, signal: LossSignal) -> Optional[LossSignal]:
        """
        Insert a normalised signal.

        Returns:
            The stored signal (id and ingested_at set), or None when the
            (source_type, source_name, source_event_id) key already exists
        """
        now = utc_now()
        row = SignalRow(
            source_type=signal.source_type.value,
            source_name=signal.source_name,
            source_event_id=signal.source_event_id,
            event_type=signal.event_type.value,
            event_timestamp=signal.event_timestamp,
            latitude=signal.latitude,
            longitude=signal.longitude,
            area_description=signal.area_description,
            zip_code=signal.zip_code,
            state_code=signal.state_code,
            county_fips=signal.county_fips,
            severity_raw=signal.severity_raw,
            confidence_raw=signal.confidence_raw,
            raw_payload=signal.raw_payload,
            ingested_at=now,
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
                session.flush()
                stored = _signal_from_row(row)
        except IntegrityError:
            logger.debug(
                "Duplicate signal %s/%s/%s ignored",
                signal.source_type.value,
                signal.source_name,
                signal.source_event_id,
            )
            return None
        return stored

    def get_signal(self, signal_id: int) -> Optional[LossSignal]:
        with self._sessions() as session:
            row = session.get(SignalRow, signal_id)
            return _signal_from_row(row) if row else None

    def list_unclustered_signals(self, limit: Optional[int] = None) -> list[LossSignal]:
        """Signals not yet assigned to a cluster, oldest first."""
        stmt = (
            select(SignalRow)
            .where(SignalRow.cluster_id.is_(None))
            .order_by(SignalRow.event_timestamp, SignalRow.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return [_signal_from_row(r) for r in session.scalars(stmt)]

    def list_cluster_signals(self, cluster_id: int) -> list[LossSignal]:
        stmt = (
            select(SignalRow)
            .join(MembershipRow, MembershipRow.signal_id == SignalRow.id)
            .where(MembershipRow.cluster_id == cluster_id)
            .order_by(SignalRow.event_timestamp, SignalRow.id)
        )
        with self._sessions() as session:
            return [_signal_from_row(r) for r in session.scalars(stmt)]

    def list_area_signals(
        self,
        geo_level: GeoLevel,
        geo_code: str,
        start: datetime,
        end: datetime,
    ) -> list[LossSignal]:
        """Unclustered signals without coordinates located only by area."""
        column = SignalRow.zip_code if geo_level is GeoLevel.ZIP else SignalRow.county_fips
        stmt = (
            select(SignalRow)
            .where(
                column == geo_code,
                SignalRow.cluster_id.is_(None),
                SignalRow.latitude.is_(None),
                SignalRow.event_timestamp >= start,
                SignalRow.event_timestamp < end,
            )
            .order_by(SignalRow.id)
        )
        with self._sessions() as session:
            return [_signal_from_row(r) for r in session.scalars(stmt)]

    def count_signals(self) -> int:
        with self._sessions() as session:
            return session.scalar(select(func.count()).select_from(SignalRow)) or 0

    def get_signal_cluster_id(self, signal_id: int) -> Optional[int]:
        """Cluster a signal belongs to, from the membership table."""
        with self._sessions() as session:
            row = session.get(MembershipRow, signal_id)
            return row.cluster_id if row else None

    # =========================================================================
    # Clusters
    # =========================================================================

    def _claim_signal(self, session: Session, signal_id: int, cluster_id: int) -> None:
        """Assign a signal inside the caller's transaction, or raise."""
        result = session.execute(
            update(SignalRow)
            .where(SignalRow.id == signal_id, SignalRow.cluster_id.is_(None))
            .values(cluster_id=cluster_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            existing = session.get(MembershipRow, signal_id)
            raise SignalAlreadyClaimedError(
                signal_id, existing.cluster_id if existing else None
            )
        session.add(
            MembershipRow(signal_id=signal_id, cluster_id=cluster_id, assigned_at=utc_now())
        )
        session.flush()

    def create_cluster(self, cluster: LossCluster, seed_signal_id: int) -> LossCluster:
        """
        Create a cluster and claim its seed signal in one transaction.

        Raises:
            SignalAlreadyClaimedError: seed signal already belongs to a cluster
        """
        now = utc_now()
        try:
            with self._sessions.begin() as session:
                row = ClusterRow(**_cluster_values(cluster), created_at=now, updated_at=now, version=1)
                session.add(row)
                session.flush()
                self._claim_signal(session, seed_signal_id, row.id)
                created = _cluster_from_row(row)
        except IntegrityError as e:
            raise SignalAlreadyClaimedError(seed_signal_id) from e
        return created

    def attach_signal(
        self,
        updated: LossCluster,
        expected_version: int,
        signal_id: int,
    ) -> LossCluster:
        """
        Add a signal to an existing cluster and write its recomputed
        aggregates, conditional on the cluster still being at
        `expected_version`.

        Raises:
            StaleClusterError: another writer updated the cluster first
            SignalAlreadyClaimedError: signal already belongs to a cluster
        """
        if updated.id is None:
            raise ValueError("updated cluster must have an id")

        now = utc_now()
        try:
            with self._sessions.begin() as session:
                result = session.execute(
                    update(ClusterRow)
                    .where(
                        ClusterRow.id == updated.id,
                        ClusterRow.version == expected_version,
                    )
                    .values(
                        **_cluster_values(updated),
                        updated_at=now,
                        version=expected_version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StaleClusterError(updated.id, expected_version)
                self._claim_signal(session, signal_id, updated.id)
                row = session.get(ClusterRow, updated.id, populate_existing=True)
                stored = _cluster_from_row(row)
        except IntegrityError as e:
            raise SignalAlreadyClaimedError(signal_id) from e
        return stored

    def get_cluster(self, cluster_id: int) -> Optional[LossCluster]:
        with self._sessions() as session:
            row = session.get(ClusterRow, cluster_id)
            return _cluster_from_row(row) if row else None

    def list_active_clusters(self, since: datetime) -> list[LossCluster]:
        """Clusters whose last signal is at or after `since`."""
        stmt = (
            select(ClusterRow)
            .where(ClusterRow.last_signal_at >= since)
            .order_by(ClusterRow.id)
        )
        with self._sessions() as session:
            return [_cluster_from_row(r) for r in session.scalars(stmt)]

    def list_clusters(self, limit: Optional[int] = None) -> list[LossCluster]:
        stmt = select(ClusterRow).order_by(ClusterRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return [_cluster_from_row(r) for r in session.scalars(stmt)]

    def list_clusters_for_geo(
        self,
        geo_level: GeoLevel,
        geo_code: str,
        start: datetime,
        end: datetime,
        include_suppressed: bool = False,
    ) -> list[LossCluster]:
        """Clusters in a geography whose first signal falls in [start, end)."""
        column = ClusterRow.zip_code if geo_level is GeoLevel.ZIP else ClusterRow.county_fips
        stmt = select(ClusterRow).where(
            column == geo_code,
            ClusterRow.first_signal_at >= start,
            ClusterRow.first_signal_at < end,
        )
        if not include_suppressed:
            stmt = stmt.where(ClusterRow.suppressed.is_(False))
        with self._sessions() as session:
            return [_cluster_from_row(r) for r in session.scalars(stmt.order_by(ClusterRow.id))]

    def list_active_zip_codes(self, start: datetime, end: datetime) -> list[str]:
        """ZIPs with clusters or area-only signals in [start, end)."""
        cluster_zips = select(ClusterRow.zip_code).where(
            ClusterRow.zip_code.is_not(None),
            ClusterRow.first_signal_at >= start,
            ClusterRow.first_signal_at < end,
        )
        signal_zips = select(SignalRow.zip_code).where(
            SignalRow.zip_code.is_not(None),
            SignalRow.cluster_id.is_(None),
            SignalRow.latitude.is_(None),
            SignalRow.event_timestamp >= start,
            SignalRow.event_timestamp < end,
        )
        with self._sessions() as session:
            zips = set(session.scalars(cluster_zips)) | set(session.scalars(signal_zips))
        return sorted(zips)

    # =========================================================================
    # Ingestion Runs
    # =========================================================================

    def start_run(self, run: IngestionRun) -> IngestionRun:
        """Persist a run in its in-flight state and assign its id."""
        with self._sessions.begin() as session:
            row = IngestionRunRow(
                source_type=run.source_type.value,
                source_name=run.source_name,
                started_at=run.started_at,
                status=run.status.value,
                signals_ingested=run.signals_ingested,
                signals_skipped=run.signals_skipped,
                signals_failed=run.signals_failed,
                error_message=run.error_message,
            )
            session.add(row)
            session.flush()
            run.id = row.id
        return run

    def finish_run(self, run: IngestionRun) -> IngestionRun:
        """Write a run's final counters and status."""
        if run.id is None:
            raise ValueError("run has not been started")
        with self._sessions.begin() as session:
            session.execute(
                update(IngestionRunRow)
                .where(IngestionRunRow.id == run.id)
                .values(
                    finished_at=run.finished_at,
                    status=run.status.value,
                    signals_ingested=run.signals_ingested,
                    signals_skipped=run.signals_skipped,
                    signals_failed=run.signals_failed,
                    error_message=run.error_message,
                )
                .execution_options(synchronize_session=False)
            )
        return run

    def get_run(self, run_id: int) -> Optional[IngestionRun]:
        with self._sessions() as session:
            row = session.get(IngestionRunRow, run_id)
            return _run_from_row(row) if row else None

    def list_runs(self, source_name: Optional[str] = None, limit: int = 50) -> list[IngestionRun]:
        """Most recent runs first."""
        stmt = select(IngestionRunRow)
        if source_name:
            stmt = stmt.where(IngestionRunRow.source_name == source_name)
        stmt = stmt.order_by(IngestionRunRow.id.desc()).limit(limit)
        with self._sessions() as session:
            return [_run_from_row(r) for r in session.scalars(stmt)]

    # =========================================================================
    # Geo Aggregates
    # =========================================================================

    def upsert_geo_aggregate(self, aggregate: GeoAggregate) -> GeoAggregate:
        """Replace the stored aggregate for (geo_level, geo_code, date)."""
        values = {
            "event_count": aggregate.event_count,
            "average_claim_probability": aggregate.average_claim_probability,
            "max_claim_probability": aggregate.max_claim_probability,
            "resolution_level": aggregate.resolution_level.value,
            "source_types": sorted(s.value for s in aggregate.source_types),
            "computed_at": aggregate.computed_at or utc_now(),
        }
        key = (aggregate.geo_level.value, aggregate.geo_code, aggregate.date)

        for attempt in range(2):
            try:
                with self._sessions.begin() as session:
                    row = session.scalar(
                        select(GeoAggregateRow).where(
                            GeoAggregateRow.geo_level == key[0],
                            GeoAggregateRow.geo_code == key[1],
                            GeoAggregateRow.date == key[2],
                        )
                    )
                    if row is None:
                        row = GeoAggregateRow(
                            geo_level=key[0], geo_code=key[1], date=key[2], **values
                        )
                        session.add(row)
                    else:
                        for name, value in values.items():
                            setattr(row, name, value)
                    session.flush()
                    return _aggregate_from_row(row)
            except IntegrityError:
                # Lost an insert race; the second pass takes the update path
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    def get_geo_aggregate(
        self, geo_level: GeoLevel, geo_code: str, day: date
    ) -> Optional[GeoAggregate]:
        stmt = select(GeoAggregateRow).where(
            GeoAggregateRow.geo_level == geo_level.value,
            GeoAggregateRow.geo_code == geo_code,
            GeoAggregateRow.date == day,
        )
        with self._sessions() as session:
            row = session.scalar(stmt)
            return _aggregate_from_row(row) if row else None

    def list_geo_aggregates(
        self,
        geo_level: GeoLevel,
        geo_code: str,
        start: date,
        end: date,
    ) -> list[GeoAggregate]:
        """Stored aggregates with start <= date <= end."""
        stmt = (
            select(GeoAggregateRow)
            .where(
                GeoAggregateRow.geo_level == geo_level.value,
                GeoAggregateRow.geo_code == geo_code,
                GeoAggregateRow.date >= start,
                GeoAggregateRow.date <= end,
            )
            .order_by(GeoAggregateRow.date)
        )
        with self._sessions() as session:
            return [_aggregate_from_row(r) for r in session.scalars(stmt)]

    # =========================================================================
    # Resolution Requests
    # =========================================================================

    def insert_resolution_request(self, request: ResolutionRequest) -> Optional[ResolutionRequest]:
        """
        Record an emitted request.

        Returns:
            The stored request, or None if one already exists for
            (zip_code, date, trigger_type)
        """
        row = ResolutionRequestRow(
            zip_code=request.zip_code,
            date=request.date,
            trigger_type=request.trigger_type.value,
            requested_at=request.requested_at,
            max_properties=request.max_properties,
            threshold_snapshot=request.threshold_snapshot,
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
                session.flush()
                stored = _request_from_row(row)
        except IntegrityError:
            return None
        return stored

    def list_resolution_requests(
        self, zip_code: Optional[str] = None
    ) -> list[ResolutionRequest]:
        stmt = select(ResolutionRequestRow).order_by(ResolutionRequestRow.id)
        if zip_code:
            stmt = stmt.where(ResolutionRequestRow.zip_code == zip_code)
        with self._sessions() as session:
            return [_request_from_row(r) for r in session.scalars(stmt)]


# =============================================================================
# Singleton Instance
# =============================================================================

_repository_instance: Optional[LossRepository] = None


def get_loss_repository(database_url: Optional[str] = None) -> LossRepository:
    """
    Get the loss repository singleton.

    Args:
        database_url: SQLAlchemy URL (only used on first call; defaults
            to Config.database_url)

    Returns:
        LossRepository instance with its schema created
    """
    global _repository_instance
    if _repository_instance is None:
        if database_url is None:
            from utils.config import Config

            database_url = Config.load().database_url
        _repository_instance = LossRepository(database_url)
        _repository_instance.create_schema()
    return _repository_instance


def reset_loss_repository() -> None:
    """Drop the singleton (tests and config reloads)."""
    global _repository_instance
    if _repository_instance is not None:
        _repository_instance.dispose()
    _repository_instance = None
