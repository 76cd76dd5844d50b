"""Convergence probes - DNS resolution, HTTP reachability, certificate issuance."""

import asyncio
import socket
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from outpost_schemas import CheckName, ResolvedTopology, TLSStrategy

from apps.deploy.settings import OperatorSettings

ACCEPTED_HTTP_STATUS = frozenset({200, 301, 302, 308})
TLS_CHECK_STRATEGIES = frozenset({TLSStrategy.ACME, TLSStrategy.LOAD_BALANCER})


@dataclass(frozen=True)
class ProbeOutcome:
    satisfied: bool
    observed: str | None = None


Probe = Callable[[], Awaitable[ProbeOutcome]]


@dataclass(frozen=True)
class Check:
    """One ordered convergence check with its own budget."""

    name: CheckName
    target: str
    probe: Probe
    timeout: float
    interval: float
    initial_delay: float = 0.0
    hint: str | None = None


# =============================================================================
# Probes
# =============================================================================


def dns_probe(domain: str, expected: str | None) -> Probe:
    """Satisfied when `domain` resolves to `expected` (or to anything, if None)."""

    async def probe() -> ProbeOutcome:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(domain, None, family=socket.AF_INET)
        except socket.gaierror as e:
            return ProbeOutcome(False, f"no answer: {e}")
        addresses = sorted({str(info[4][0]) for info in infos})
        observed = ", ".join(addresses)
        if expected is None:
            return ProbeOutcome(bool(addresses), observed)
        return ProbeOutcome(expected in addresses, observed)

    return probe


def http_probe(url: str, client: httpx.AsyncClient) -> Probe:
    """Satisfied on 200 or a redirect (the HTTPS upgrade counts as reachable)."""

    async def probe() -> ProbeOutcome:
        try:
            response = await client.get(url, follow_redirects=False)
        except httpx.HTTPError as e:
            return ProbeOutcome(False, f"{type(e).__name__}: {e}")
        return ProbeOutcome(
            response.status_code in ACCEPTED_HTTP_STATUS, f"HTTP {response.status_code}"
        )

    return probe


def _issuer(cert: dict) -> str:
    fields = dict(item for rdn in cert.get("issuer", ()) for item in rdn)
    return fields.get("organizationName") or fields.get("commonName") or "unknown issuer"


def tls_probe(host: str, port: int = 443, timeout: float = 10.0) -> Probe:
    """Satisfied when a verified TLS handshake succeeds; records the issuer."""

    async def probe() -> ProbeOutcome:
        context = ssl.create_default_context()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=context, server_hostname=host),
                timeout=timeout,
            )
        except (OSError, TimeoutError) as e:
            # ssl.SSLError is an OSError
            return ProbeOutcome(False, f"{type(e).__name__}: {e}")
        try:
            cert = writer.get_extra_info("peercert") or {}
            return ProbeOutcome(True, f"issuer: {_issuer(cert)}; expires {cert.get('notAfter')}")
        finally:
            writer.close()

    return probe


# =============================================================================
# Check list
# =============================================================================


@dataclass(frozen=True)
class Budgets:
    dns_timeout: float = 300.0
    dns_interval: float = 10.0
    http_initial_delay: float = 60.0
    http_timeout: float = 120.0
    http_interval: float = 10.0
    tls_timeout: float = 180.0
    tls_interval: float = 10.0

    @classmethod
    def from_settings(cls, settings: OperatorSettings) -> "Budgets":
        return cls(
            dns_timeout=settings.dns_timeout,
            dns_interval=settings.dns_interval,
            http_initial_delay=settings.http_initial_delay,
            http_timeout=settings.http_timeout,
            http_interval=settings.http_interval,
            tls_timeout=settings.tls_timeout,
            tls_interval=settings.tls_interval,
        )


def build_checks(
    topology: ResolvedTopology,
    address: str | None,
    client: httpx.AsyncClient,
    budgets: Budgets | None = None,
) -> list[Check]:
    """
    Checks for a provisioned topology, in dependency order.

    DNS only applies with a domain. A proxied record resolves to the edge,
    so any answer is accepted there. The certificate check only applies
    where this deployment obtains the certificate (ACME or load balancer).
    """
    budgets = budgets or Budgets()
    endpoint = topology.public_endpoint or address
    checks: list[Check] = []
    if endpoint is None:
        return checks

    if topology.domain:
        expected = None if topology.tls_strategy == TLSStrategy.EDGE_PROXY else address
        checks.append(
            Check(
                name=CheckName.DNS,
                target=topology.domain,
                probe=dns_probe(topology.domain, expected),
                timeout=budgets.dns_timeout,
                interval=budgets.dns_interval,
                hint=(
                    "DNS may still be propagating; check later with "
                    f"`dig +short {topology.domain}`"
                ),
            )
        )

    url = f"http://{endpoint}/"
    checks.append(
        Check(
            name=CheckName.HTTP,
            target=url,
            probe=http_probe(url, client),
            timeout=budgets.http_timeout,
            interval=budgets.http_interval,
            initial_delay=budgets.http_initial_delay,
            hint=f"the app may still be starting; check with `curl -I {url}`",
        )
    )

    if topology.domain and topology.tls_strategy in TLS_CHECK_STRATEGIES:
        checks.append(
            Check(
                name=CheckName.TLS,
                target=f"{topology.domain}:443",
                probe=tls_probe(topology.domain),
                timeout=budgets.tls_timeout,
                interval=budgets.tls_interval,
                hint=(
                    "certificate issuance can take several minutes; check with "
                    f"`openssl s_client -connect {topology.domain}:443 "
                    f"-servername {topology.domain}`"
                ),
            )
        )
    return checks
