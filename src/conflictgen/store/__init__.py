"""
Store backends for conflictgen

- StoreHandle: Abstract regional handle consumed by the engine
- CosmosHandle: Cosmos DB SQL REST API over httpx
- SimulatedAccount / SimulatedHandle: In-process multi-region store
"""

from .base import StoreHandle, RecordPredicate
from .cosmos import CosmosHandle
from .memory import SimulatedAccount, SimulatedHandle

__all__ = [
    "StoreHandle",
    "RecordPredicate",
    "CosmosHandle",
    "SimulatedAccount",
    "SimulatedHandle",
]
