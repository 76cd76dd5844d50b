"""Topology resolution."""

from apps.deploy.topology.resolver import manages_dns_record, required_kinds, resolve
from apps.deploy.topology.zones import find_zone, zone_candidates

__all__ = ["find_zone", "manages_dns_record", "required_kinds", "resolve", "zone_candidates"]
