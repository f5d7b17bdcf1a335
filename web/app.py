"""
FastAPI application exposing the loss engine's batch jobs.

The external scheduler calls these endpoints; each one runs a single
job synchronously and returns its summary. When CRON_SECRET is set,
every job endpoint requires `Authorization: Bearer <CRON_SECRET>`.

Production deployment configuration via environment variables.
"""

from __future__ import annotations

import hmac
import logging
from datetime import date
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from loss_engine.clustering import ClusteringEngine
from loss_engine.geo import GeoAggregator, ResolutionGate
from loss_engine.ingestion import IngestionCoordinator, get_active_feeds, get_feed
from loss_engine.models import TriggerType
from loss_engine.storage import LossRepository, get_loss_repository
from utils.config import Config


logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================


def get_config() -> Config:
    return Config.load()


def get_repository(config: Config = Depends(get_config)) -> LossRepository:
    return get_loss_repository(config.database_url)


def require_cron_secret(
    authorization: Optional[str] = Header(None),
    config: Config = Depends(get_config),
) -> None:
    """
    Check the scheduler's bearer token.

    Raises:
        HTTPException(401) if a secret is configured and not presented
    """
    if not config.cron_secret:
        return
    expected = f"Bearer {config.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# Request Models
# =============================================================================


class IngestRequest(BaseModel):
    """Batch of canonical raw items from one feed."""

    items: list[dict[str, Any]]
    deadline_seconds: Optional[float] = Field(default=None, gt=0)


class AggregateRequest(BaseModel):
    zip_code: str = Field(min_length=3, max_length=10)
    day: date


class ResolveRequest(BaseModel):
    zip_code: str = Field(min_length=3, max_length=10)
    trigger_type: TriggerType = TriggerType.AUTO
    day: Optional[date] = None


# =============================================================================
# Application
# =============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Loss Engine",
        description="Loss-event signal ingestion, clustering and resolution gating",
        version="0.1.0",
    )

    # Healthcheck endpoints perform no IO so the scheduler's probe never blocks.
    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "service": "loss-engine"}

    @app.get("/feeds")
    async def list_feeds():
        """Active feed registrations."""
        return [
            {
                "source_name": f.source_name,
                "display_name": f.display_name,
                "source_type": f.source_type.value,
                "provides_coordinates": f.provides_coordinates,
            }
            for f in get_active_feeds()
        ]

    @app.post("/runs/ingest/{source_name}", dependencies=[Depends(require_cron_secret)])
    def ingest(
        source_name: str,
        body: IngestRequest,
        repository: LossRepository = Depends(get_repository),
    ):
        """Ingest a pushed batch for a registered feed."""
        registration = get_feed(source_name)
        if registration is None:
            raise HTTPException(status_code=404, detail=f"Unknown feed: {source_name}")

        coordinator = IngestionCoordinator(repository)
        run = coordinator.ingest(
            registration.source_type,
            registration.source_name,
            body.items,
            deadline_seconds=body.deadline_seconds,
        )
        return run.to_dict()

    @app.post("/runs/cluster", dependencies=[Depends(require_cron_secret)])
    def cluster(
        repository: LossRepository = Depends(get_repository),
        config: Config = Depends(get_config),
    ):
        """Run one clustering pass."""
        try:
            policy = config.clustering_policy()
        except ValueError as e:
            raise HTTPException(status_code=500, detail=f"Invalid clustering policy: {e}")
        outcome = ClusteringEngine(repository, policy).cluster()
        return outcome.to_dict()

    @app.post("/geo/aggregate", dependencies=[Depends(require_cron_secret)])
    def aggregate(
        body: AggregateRequest,
        repository: LossRepository = Depends(get_repository),
    ):
        """Recompute one ZIP's daily aggregate."""
        return GeoAggregator(repository).aggregate(body.zip_code, body.day).to_dict()

    @app.post("/geo/resolve", dependencies=[Depends(require_cron_secret)])
    def resolve(
        body: ResolveRequest,
        repository: LossRepository = Depends(get_repository),
        config: Config = Depends(get_config),
    ):
        """Evaluate the resolution gate for a ZIP."""
        try:
            settings = config.resolution_settings()
        except ValueError as e:
            raise HTTPException(status_code=500, detail=f"Invalid resolution settings: {e}")
        request = ResolutionGate(repository, settings).evaluate_resolution(
            body.zip_code, body.trigger_type, day=body.day
        )
        return {"emitted": request is not None, "request": request.to_dict() if request else None}

    return app


# Create app instance for uvicorn
app = create_app()
