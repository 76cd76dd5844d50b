"""Deployment settings schemas - the validated shape of a settings document."""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]*$"

# =============================================================================
# Enums
# =============================================================================


class DNSAuthority(str, Enum):
    """Who owns record creation in the DNS zone."""

    SELF = "self"
    EXTERNAL = "external"


class TLSStrategy(str, Enum):
    """Where TLS is terminated."""

    NONE = "none"
    ACME = "acme"
    EDGE_PROXY = "edge-proxy"
    LOAD_BALANCER = "load-balancer"


class FloatingIPStrategy(str, Enum):
    """Whether the floating address is allocated by this run or reused."""

    REUSE = "reuse"
    CREATE = "create"


class OnError(str, Enum):
    """Behaviour when the custom startup script fails on the server."""

    CONTINUE = "continue"
    FAIL = "fail"


class _Section(BaseModel):
    """Base for every settings section: immutable, unknown keys ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")


# =============================================================================
# Identity & DNS
# =============================================================================


class DeploymentSection(_Section):
    """Deployment identity. Logical resource names derive from it."""

    name: str = Field(pattern=SLUG_PATTERN, max_length=40)
    environment: str = Field(default="production", pattern=SLUG_PATTERN, max_length=20)
    location: str = "fsn1"


class DNSSection(_Section):
    """DNS settings."""

    enabled: bool = False
    authority: DNSAuthority = DNSAuthority.SELF
    records_managed_externally: bool = False
    domain: str = ""
    zone_id: str | None = None

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, value: str) -> str:
        return value.strip().rstrip(".").lower()


# =============================================================================
# TLS (tagged on `strategy`)
# =============================================================================


class _TLSBase(_Section):
    strategy: str
    email: str | None = None

    @property
    def kind(self) -> TLSStrategy:
        return TLSStrategy(self.strategy)


class NoTLS(_TLSBase):
    """Plain HTTP."""

    strategy: Literal["none"] = "none"


class AcmeTLS(_TLSBase):
    """TLS terminated on the server by Caddy with an ACME certificate."""

    strategy: Literal["acme"]
    staging: bool = False


class EdgeProxyTLS(_TLSBase):
    """TLS terminated at the Cloudflare edge; the origin speaks HTTP."""

    strategy: Literal["edge-proxy"]


class LoadBalancerTLS(_TLSBase):
    """TLS terminated at a Hetzner load balancer with a managed certificate."""

    strategy: Literal["load-balancer"]
    certificate_id: int | None = None


TLSConfig = Annotated[
    NoTLS | AcmeTLS | EdgeProxyTLS | LoadBalancerTLS,
    Field(discriminator="strategy"),
]


# =============================================================================
# Floating address (tagged on `strategy`)
# =============================================================================


class ReuseFloatingIP(_Section):
    """Reuse an existing floating IP, found by its name."""

    strategy: Literal["reuse"]
    tag: str = ""


class CreateFloatingIP(_Section):
    """Allocate a floating IP owned by this deployment, named after it."""

    strategy: Literal["create"] = "create"


FloatingIPConfig = Annotated[
    ReuseFloatingIP | CreateFloatingIP,
    Field(discriminator="strategy"),
]


# =============================================================================
# Workload
# =============================================================================


class MachineSection(_Section):
    """Server sizing and the application container it runs."""

    server_type: str = "cx22"
    image: str = "ubuntu-24.04"
    app_image: str = "ghcr.io/outpost/app"
    image_tag: str = "latest"
    app_port: int = Field(default=5000, ge=1, le=65535)
    ssh_public_key: str | None = None


class StartupScriptSection(_Section):
    """Optional script run on the server after the application starts."""

    enabled: bool = False
    path: str | None = None
    on_error: OnError = OnError.CONTINUE


class MonitoringThresholds(_Section):
    max_instances_per_5min: int = Field(default=10, ge=1)
    max_terminations_per_5min: int = Field(default=20, ge=1)
    max_unauthorized_calls_per_15min: int = Field(default=5, ge=1)


class BudgetSection(_Section):
    enabled: bool = False
    monthly_budget_usd: float = Field(default=500.0, gt=0)


class MonitoringSection(_Section):
    """Alert thresholds. Parsed and validated, not provisioned."""

    enabled: bool = False
    email: str | None = None
    thresholds: MonitoringThresholds = Field(default_factory=MonitoringThresholds)
    budget: BudgetSection = Field(default_factory=BudgetSection)


# =============================================================================
# Document
# =============================================================================


class DeploymentConfig(_Section):
    """A validated settings document. Produced once per run, never mutated."""

    deployment: DeploymentSection
    dns: DNSSection = Field(default_factory=DNSSection)
    tls: TLSConfig = Field(default_factory=NoTLS)
    floating_ip: FloatingIPConfig = Field(default_factory=CreateFloatingIP)
    machine: MachineSection = Field(default_factory=MachineSection)
    startup_script: StartupScriptSection = Field(default_factory=StartupScriptSection)
    monitoring: MonitoringSection = Field(default_factory=MonitoringSection)

    @property
    def identifier(self) -> str:
        """Deployment identifier used for names, labels and state keys."""
        return f"{self.deployment.name}-{self.deployment.environment}"
