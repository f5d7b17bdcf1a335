"""
Persistent store for signals, clusters, run logs and geo rollups.
"""

from loss_engine.storage.repository import (
    LossRepository,
    SignalAlreadyClaimedError,
    StaleClusterError,
    get_loss_repository,
    reset_loss_repository,
)

__all__ = [
    "LossRepository",
    "SignalAlreadyClaimedError",
    "StaleClusterError",
    "get_loss_repository",
    "reset_loss_repository",
]
