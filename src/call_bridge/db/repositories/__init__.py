"""Repository Layer for Call Bridge.

Base:
- BaseRepository: Generic CRUD operations

Owned tables:
- CallRecordRepository: Forward-only call record updates
- BridgeClaimRepository: At-most-once bridging claims
- ComplianceEventRepository: Chained webhook audit trail

Read-only tenant bindings:
- BusinessRepository
- TollFreeNumberRepository
- AgentBindingRepository
"""

from call_bridge.db.repositories.base import BaseRepository
from call_bridge.db.repositories.calls import CallRecordRepository, BridgeClaimRepository
from call_bridge.db.repositories.compliance import ComplianceEventRepository
from call_bridge.db.repositories.tenant import (
    BusinessRepository,
    TollFreeNumberRepository,
    AgentBindingRepository,
)

__all__ = [
    "BaseRepository",
    "CallRecordRepository",
    "BridgeClaimRepository",
    "ComplianceEventRepository",
    "BusinessRepository",
    "TollFreeNumberRepository",
    "AgentBindingRepository",
]
