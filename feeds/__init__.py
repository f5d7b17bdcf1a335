"""
Loss-signal feed adapters.
"""

from .base import SignalFeed
from .static import StaticFeed

__all__ = ["SignalFeed", "StaticFeed"]
