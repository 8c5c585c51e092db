"""Business services for inbound call handling."""

from call_bridge.services.bridge import (
    BridgeDispatcher,
    BridgeOrchestrator,
    BridgeOutcome,
    BridgeState,
)
from call_bridge.services.compliance import ComplianceLogger
from call_bridge.services.dedupe import BridgeClaimGuard
from call_bridge.services.reconciler import (
    CallRecordReconciler,
    ReconcileAction,
    ReconcileResult,
)
from call_bridge.services.tenant_resolver import (
    ResolutionMethod,
    TenantResolution,
    TenantResolver,
)

__all__ = [
    "BridgeDispatcher",
    "BridgeOrchestrator",
    "BridgeOutcome",
    "BridgeState",
    "ComplianceLogger",
    "BridgeClaimGuard",
    "CallRecordReconciler",
    "ReconcileAction",
    "ReconcileResult",
    "ResolutionMethod",
    "TenantResolution",
    "TenantResolver",
]
