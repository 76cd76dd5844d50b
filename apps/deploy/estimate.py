"""
Monthly cost estimate from the Hetzner price list.

Only compute-side resources are priced. DNS, the log bucket and the log
forwarder live on Cloudflare and are not included.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from outpost_schemas import DeploymentConfig, ResolvedTopology

from apps.deploy.providers.hetzner import HetznerProvider

logger = logging.getLogger(__name__)


class PricingUnavailable(LookupError):
    """The price list has no entry for a requested item."""


@dataclass(frozen=True)
class CostLine:
    item: str
    detail: str
    monthly: Decimal


@dataclass
class CostEstimate:
    currency: str
    location: str
    lines: list[CostLine] = field(default_factory=list)
    budget: Decimal | None = None

    @property
    def total(self) -> Decimal:
        return sum((line.monthly for line in self.lines), Decimal("0"))

    @property
    def over_budget(self) -> bool:
        return self.budget is not None and self.total > self.budget


def _monthly_for(prices: list[dict[str, Any]], location: str, item: str) -> Decimal:
    for price in prices:
        if price.get("location") == location:
            return Decimal(price["price_monthly"]["gross"])
    raise PricingUnavailable(f"no {item} price for location {location}")


def _named(entries: list[dict[str, Any]], name: str, item: str) -> dict[str, Any]:
    for entry in entries:
        if entry.get("name") == name:
            return entry
    raise PricingUnavailable(f"unknown {item} '{name}'")


def build_estimate(
    config: DeploymentConfig, topology: ResolvedTopology, pricing: dict[str, Any]
) -> CostEstimate:
    """
    Price a resolved topology against a price list.

    Args:
        config: Validated deployment settings (server type, budget).
        topology: Resolved topology (which tiers exist).
        pricing: The `pricing` object from `GET /pricing`.

    Raises:
        PricingUnavailable: If the server type or location is not listed.
    """
    location = topology.location
    estimate = CostEstimate(currency=pricing.get("currency", "EUR"), location=location)

    server_type = _named(pricing.get("server_types", []), config.machine.server_type, "server type")
    estimate.lines.append(
        CostLine(
            item="server",
            detail=config.machine.server_type,
            monthly=_monthly_for(server_type["prices"], location, "server"),
        )
    )

    if topology.floating_ip_owned:
        ipv4 = next(
            (f for f in pricing.get("floating_ips", []) if f.get("type") == "ipv4"), None
        )
        if ipv4 is None:
            raise PricingUnavailable("no floating IPv4 price")
        estimate.lines.append(
            CostLine(
                item="floating ip",
                detail="ipv4",
                monthly=_monthly_for(ipv4["prices"], location, "floating ip"),
            )
        )

    if topology.needs_load_balancer_tier:
        lb_type = _named(
            pricing.get("load_balancer_types", []),
            HetznerProvider.LOAD_BALANCER_TYPE,
            "load balancer type",
        )
        estimate.lines.append(
            CostLine(
                item="load balancer",
                detail=HetznerProvider.LOAD_BALANCER_TYPE,
                monthly=_monthly_for(lb_type["prices"], location, "load balancer"),
            )
        )

    budget = config.monitoring.budget
    if config.monitoring.enabled and budget.enabled:
        estimate.budget = Decimal(str(budget.monthly_budget_usd))

    logger.debug(
        "Estimated %s %s/month for %s", estimate.total, estimate.currency, config.identifier
    )
    return estimate


async def fetch_estimate(
    config: DeploymentConfig, topology: ResolvedTopology, provider: HetznerProvider
) -> CostEstimate:
    """Fetch current prices and build the estimate."""
    pricing = await provider.get_pricing()
    return build_estimate(config, topology, pricing)
