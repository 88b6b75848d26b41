"""
conflictgen - Multi-region write conflict generator

Fans out concurrent writes to the same record across the write regions of
a multi-master document store, tolerates the races that legitimately lose,
and confirms conflicts through the store's conflict feed.

Key Components:
    - RegionalClientPool: One store handle per write region
    - insert_attempt / update_attempt / delete_attempt: Classified writes
    - ConflictRound: Seed, fan out, settle, decide
    - ConflictDetector: Conflict feed baseline and delta
    - CampaignLoop: Repeats rounds until a conflict is confirmed

Usage:
    from conflictgen import ConflictGenConfig, ConflictGenerator, ConflictKind

    config = ConflictGenConfig.load()
    config.validate()
    async with ConflictGenerator(config) as generator:
        result = await generator.generate(ConflictKind.DELETE, max_rounds=10)
"""

from .attempts import delete_attempt, insert_attempt, update_attempt
from .campaign import CampaignLoop, CampaignResult
from .config import ConflictGenConfig
from .detector import ConflictDetector
from .errors import (
    CampaignAborted,
    ConfigError,
    ConflictGenError,
    FatalAttemptError,
    SetupError,
    StoreError,
    StoreStatus,
)
from .generator import ConflictGenerator
from .models import (
    AttemptOutcome,
    CollectionRef,
    CollectionSpec,
    Committed,
    ConflictKind,
    ConflictRecord,
    Fatal,
    LostRace,
    Record,
    ResolutionMode,
    WriteOperation,
)
from .pool import RegionalClientPool
from .rounds import (
    ConflictRound,
    RoundDecision,
    RoundResult,
    RoundSettings,
    RoundState,
    alternate_delete_update,
    uniform,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AttemptOutcome",
    "CampaignAborted",
    "CampaignLoop",
    "CampaignResult",
    "CollectionRef",
    "CollectionSpec",
    "Committed",
    "ConfigError",
    "ConflictDetector",
    "ConflictGenConfig",
    "ConflictGenError",
    "ConflictGenerator",
    "ConflictKind",
    "ConflictRecord",
    "ConflictRound",
    "Fatal",
    "FatalAttemptError",
    "LostRace",
    "Record",
    "RegionalClientPool",
    "ResolutionMode",
    "RoundDecision",
    "RoundResult",
    "RoundSettings",
    "RoundState",
    "SetupError",
    "StoreError",
    "StoreStatus",
    "WriteOperation",
    "alternate_delete_update",
    "delete_attempt",
    "insert_attempt",
    "uniform",
    "update_attempt",
]
