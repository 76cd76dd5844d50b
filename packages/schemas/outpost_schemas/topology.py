"""Resolved topology schema - the concrete shape a settings document implies."""

from pydantic import BaseModel, ConfigDict

from outpost_schemas.config import TLSStrategy
from outpost_schemas.resources import ResourceKind


class DNSZone(BaseModel):
    """A managed DNS zone as reported by the DNS provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class ResolvedTopology(BaseModel):
    """
    Derived from a DeploymentConfig, never supplied directly.

    Every field is a pure function of the config plus the zone snapshot
    the resolver was given, so re-resolving yields an equal object.
    """

    model_config = ConfigDict(frozen=True)

    deployment: str
    environment: str
    location: str
    tls_strategy: TLSStrategy
    needs_reverse_proxy_tier: bool
    needs_load_balancer_tier: bool
    manages_dns_record: bool
    domain: str | None
    dns_zone_id: str | None
    dns_zone_name: str | None
    public_endpoint: str | None
    endpoint_scheme: str
    floating_ip_owned: bool
    floating_ip_tag: str | None
    resource_kinds: tuple[ResourceKind, ...]

    @property
    def identifier(self) -> str:
        return f"{self.deployment}-{self.environment}"

    @property
    def url(self) -> str | None:
        if self.public_endpoint is None:
            return None
        return f"{self.endpoint_scheme}://{self.public_endpoint}"

    def with_address(self, address: str) -> "ResolvedTopology":
        """Bind the floating address as endpoint in IP-only mode."""
        if self.domain:
            return self
        return self.model_copy(update={"public_endpoint": address})
