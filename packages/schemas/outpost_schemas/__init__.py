"""Outpost Schemas - Pydantic models for deployment data contracts."""

from outpost_schemas.config import (
    AcmeTLS,
    BudgetSection,
    CreateFloatingIP,
    DeploymentConfig,
    DeploymentSection,
    DNSAuthority,
    DNSSection,
    EdgeProxyTLS,
    FloatingIPStrategy,
    LoadBalancerTLS,
    MachineSection,
    MonitoringSection,
    MonitoringThresholds,
    NoTLS,
    OnError,
    ReuseFloatingIP,
    StartupScriptSection,
    TLSStrategy,
)
from outpost_schemas.resources import (
    Direction,
    ErrorCategory,
    ExecutionReport,
    LifecycleState,
    OperationPlan,
    PlanAction,
    PlanStep,
    ResourceKind,
    ResourceNode,
    StepOutcome,
    StepResult,
    settled_state,
)
from outpost_schemas.topology import DNSZone, ResolvedTopology
from outpost_schemas.verification import (
    CheckName,
    CheckStatus,
    VerificationReport,
    VerificationResult,
)

__all__ = [
    # Config
    "AcmeTLS",
    "BudgetSection",
    "CreateFloatingIP",
    "DeploymentConfig",
    "DeploymentSection",
    "DNSAuthority",
    "DNSSection",
    "EdgeProxyTLS",
    "FloatingIPStrategy",
    "LoadBalancerTLS",
    "MachineSection",
    "MonitoringSection",
    "MonitoringThresholds",
    "NoTLS",
    "OnError",
    "ReuseFloatingIP",
    "StartupScriptSection",
    "TLSStrategy",
    # Resources
    "Direction",
    "ErrorCategory",
    "ExecutionReport",
    "LifecycleState",
    "OperationPlan",
    "PlanAction",
    "PlanStep",
    "ResourceKind",
    "ResourceNode",
    "StepOutcome",
    "StepResult",
    "settled_state",
    # Topology
    "DNSZone",
    "ResolvedTopology",
    # Verification
    "CheckName",
    "CheckStatus",
    "VerificationReport",
    "VerificationResult",
]
