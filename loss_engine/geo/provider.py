"""
Resolution provider interface.

The provider turns a ResolutionRequest into candidate properties. Its
internals (parcel data, geocoding) live outside the engine; this module
only fixes the hand-off and enforces the per-ZIP cap on what comes back.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from loss_engine.models import ResolutionRequest


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertyCandidate:
    """One property returned by the resolution provider."""

    address: str
    zip_code: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    parcel_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.address:
            raise ValueError("address is required")


class ResolutionProvider(ABC):
    """Abstract base class for address-resolution providers."""

    @abstractmethod
    def resolve(self, request: ResolutionRequest) -> list[PropertyCandidate]:
        """
        Enumerate candidate properties for the request's ZIP.

        Args:
            request: Emitted request; max_properties is the cap to honour.

        Returns:
            Property candidates, at most request.max_properties of them.
        """
        pass


def dispatch_request(
    provider: ResolutionProvider,
    request: ResolutionRequest,
) -> list[PropertyCandidate]:
    """Hand a request to a provider, truncating an over-long response."""
    candidates = provider.resolve(request)
    if len(candidates) > request.max_properties:
        logger.warning(
            "Provider returned %d candidates for %s; truncating to %d",
            len(candidates),
            request.zip_code,
            request.max_properties,
        )
        candidates = candidates[: request.max_properties]
    return candidates
