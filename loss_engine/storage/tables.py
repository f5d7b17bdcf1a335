"""
SQLAlchemy ORM tables for the loss engine store.

Uniqueness rules that guard concurrent writers live here as
constraints rather than in application code:

- loss_signals: (source_type, source_name, source_event_id)
- loss_cluster_signals: signal_id is the primary key
- geo_aggregates: (geo_level, geo_code, date)
- resolution_requests: (zip_code, date, trigger_type)
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Signals
# =============================================================================


class SignalRow(Base):
    """One normalised observation from one feed."""

    __tablename__ = "loss_signals"
    __table_args__ = (
        UniqueConstraint(
            "source_type", "source_name", "source_event_id",
            name="uq_loss_signals_source_event",
        ),
        CheckConstraint("severity_raw >= 0 AND severity_raw <= 1", name="ck_signal_severity"),
        CheckConstraint("confidence_raw >= 0 AND confidence_raw <= 1", name="ck_signal_confidence"),
        Index("ix_loss_signals_unclustered", "cluster_id", "event_timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_name: Mapped[str] = mapped_column(String(100), nullable=False)
    source_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    area_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)
    state_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    county_fips: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    severity_raw: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_raw: Mapped[float] = mapped_column(Float, nullable=False)
    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cluster_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("loss_clusters.id"), nullable=True
    )


# =============================================================================
# Clusters
# =============================================================================


class ClusterRow(Base):
    """A de-duplicated loss event. `version` backs compare-and-swap updates."""

    __tablename__ = "loss_clusters"
    __table_args__ = (
        CheckConstraint("signal_count >= 1", name="ck_cluster_signal_count"),
        CheckConstraint(
            "verification_status IN ('unconfirmed', 'corroborated', 'verified')",
            name="ck_cluster_status",
        ),
        Index("ix_loss_clusters_last_signal", "last_signal_at"),
        Index("ix_loss_clusters_zip_first", "zip_code", "first_signal_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    centroid_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    centroid_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    signal_count: Mapped[int] = mapped_column(Integer, nullable=False)

    source_types: Mapped[list] = mapped_column(JSON, nullable=False)
    event_types: Mapped[list] = mapped_column(JSON, nullable=False)
    primary_event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    severity_score: Mapped[float] = mapped_column(Float, nullable=False)
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False)
    suppressed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    state_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    county_fips: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    first_signal_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_signal_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class MembershipRow(Base):
    """Signal -> cluster assignment. One row per signal, ever."""

    __tablename__ = "loss_cluster_signals"

    signal_id: Mapped[int] = mapped_column(
        ForeignKey("loss_signals.id"), primary_key=True
    )
    cluster_id: Mapped[int] = mapped_column(
        ForeignKey("loss_clusters.id"), nullable=False, index=True
    )
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# =============================================================================
# Ingestion Runs
# =============================================================================


class IngestionRunRow(Base):
    """Per-run ingestion log."""

    __tablename__ = "ingestion_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'success', 'partial', 'failed')",
            name="ck_ingestion_run_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    signals_ingested: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signals_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signals_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# =============================================================================
# Geo Aggregates & Resolution
# =============================================================================


class GeoAggregateRow(Base):
    """Daily rollup per geography; replaced wholesale on recompute."""

    __tablename__ = "geo_aggregates"
    __table_args__ = (
        UniqueConstraint("geo_level", "geo_code", "date", name="uq_geo_aggregates_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    geo_level: Mapped[str] = mapped_column(String(10), nullable=False)
    geo_code: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False)
    average_claim_probability: Mapped[float] = mapped_column(Float, nullable=False)
    max_claim_probability: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_level: Mapped[str] = mapped_column(String(10), nullable=False)
    source_types: Mapped[list] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ResolutionRequestRow(Base):
    """Emitted address-resolution request; unique per ZIP/day/trigger."""

    __tablename__ = "resolution_requests"
    __table_args__ = (
        UniqueConstraint(
            "zip_code", "date", "trigger_type", name="uq_resolution_requests_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    zip_code: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    max_properties: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
