"""Database Models for Call Bridge.

Owned by the bridge:
- CallRecordModel: One record per provider call id
- BridgeClaimModel: At-most-once bridging marker

Read-only tenant bindings:
- BusinessModel: Tenant business with phone fields and agent id
- TollFreeNumberModel: Toll-free inventory
- AgentBindingModel: Agent bound to a phone number

Compliance:
- ComplianceEventModel: Append-only webhook audit trail
"""

from call_bridge.db.models.calls import (
    CallStatus,
    STATUS_RANK,
    CallRecordModel,
    BridgeClaimModel,
)

from call_bridge.db.models.tenant import (
    TollFreeStatus,
    BusinessModel,
    TollFreeNumberModel,
    AgentBindingModel,
)

from call_bridge.db.models.compliance import (
    ComplianceEventModel,
)

__all__ = [
    "CallStatus",
    "STATUS_RANK",
    "CallRecordModel",
    "BridgeClaimModel",
    "TollFreeStatus",
    "BusinessModel",
    "TollFreeNumberModel",
    "AgentBindingModel",
    "ComplianceEventModel",
]
