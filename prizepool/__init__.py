"""
prizepool - Budget-aware prize allocation for tournament events

Turns a roster, a prize catalog and a budget policy into a reproducible
allocation, previews it, and commits it only if nothing changed in between.
"""

__version__ = "0.1.0"

from .errors import (
    ErrorCode,
    Failure,
    PrizeError,
)

from .models import (
    # Data types
    Band,
    EventType,
    RosterEntry,
    CatalogItem,
    ThrottlePolicy,
    EventInfo,
    AllocationLine,
    PreviewArtifact,
    LedgerEntry,
    # Results
    Preview,
    CommitReceipt,
)

from .rng import SeededRandom, generate_seed
from .budget import derive_budget, classify_band
from .selection import select_weighted
from .allocator import Grant, TierRules, allocate, allocate_grants
from .hashing import content_hash
from .protocol import PrizeDesk

__all__ = [
    # Version
    "__version__",
    # Errors
    "ErrorCode",
    "Failure",
    "PrizeError",
    # Data types
    "Band",
    "EventType",
    "RosterEntry",
    "CatalogItem",
    "ThrottlePolicy",
    "EventInfo",
    "AllocationLine",
    "PreviewArtifact",
    "LedgerEntry",
    "Preview",
    "CommitReceipt",
    # Engine
    "SeededRandom",
    "generate_seed",
    "derive_budget",
    "classify_band",
    "select_weighted",
    "TierRules",
    "Grant",
    "allocate",
    "allocate_grants",
    "content_hash",
    "PrizeDesk",
]
