"""Domain-to-zone fallback search."""

import logging
from collections.abc import Iterable

from outpost_schemas import DNSZone

from apps.deploy.exceptions import ResolutionError

logger = logging.getLogger(__name__)


def zone_candidates(domain: str) -> list[str]:
    """
    Candidate zone names for a domain, most specific first.

    The full domain comes first, then the domain with its leftmost label
    stripped, repeatedly. A single-label root is never a candidate, so an
    N-label domain yields at most N-1 candidates.

    >>> zone_candidates("app.team.example.com")
    ['app.team.example.com', 'team.example.com', 'example.com']
    """
    labels = [label for label in domain.lower().rstrip(".").split(".") if label]
    return [".".join(labels[i:]) for i in range(len(labels) - 1)]


def find_zone(domain: str, zones: Iterable[DNSZone]) -> DNSZone:
    """
    Find the managed zone that owns `domain`.

    Args:
        domain: Fully-qualified domain the record will be created for.
        zones: Snapshot of zones known to the DNS provider.

    Returns:
        The first zone matching a candidate.

    Raises:
        ResolutionError: If no candidate matches, or a candidate matches
            more than one zone (set dns.zone_id explicitly).
    """
    by_name: dict[str, list[DNSZone]] = {}
    for zone in zones:
        by_name.setdefault(zone.name.lower().rstrip("."), []).append(zone)

    candidates = zone_candidates(domain)
    for step, candidate in enumerate(candidates, 1):
        matches = by_name.get(candidate, [])
        if len(matches) > 1:
            ids = ", ".join(z.id for z in matches)
            raise ResolutionError(
                f"multiple zones named '{candidate}' ({ids}); set dns.zone_id explicitly"
            )
        if matches:
            logger.info("Zone %s found for %s after %d lookup(s)", candidate, domain, step)
            return matches[0]
        logger.debug("No zone named %s", candidate)

    raise ResolutionError(
        f"no managed zone found for '{domain}' (tried: {', '.join(candidates) or 'nothing'})"
    )
