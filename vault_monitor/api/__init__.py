"""Chain access package for the Vault Monitor."""

from .client import ChainClient, iter_block_ranges
from .models import (
    VaultRecord,
    MonitorState,
    ChainEvent,
    Transition,
    TransitionKind,
    DepositInfo,
    LiveVault
)

__all__ = [
    "ChainClient",
    "iter_block_ranges",
    "VaultRecord",
    "MonitorState",
    "ChainEvent",
    "Transition",
    "TransitionKind",
    "DepositInfo",
    "LiveVault"
]
