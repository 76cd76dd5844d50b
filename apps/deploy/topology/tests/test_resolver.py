"""Tests for zone fallback search and topology resolution."""

import logging

import pytest
from outpost_schemas import DNSZone, ResourceKind, TLSStrategy

from apps.deploy.exceptions import ResolutionError
from apps.deploy.topology import find_zone, manages_dns_record, required_kinds, resolve
from apps.deploy.topology.zones import zone_candidates

K = ResourceKind

# =============================================================================
# Zone fallback search
# =============================================================================


class TestZoneCandidates:
    """Tests for candidate generation."""

    def test_most_specific_first(self):
        assert zone_candidates("app.team.example.com") == [
            "app.team.example.com",
            "team.example.com",
            "example.com",
        ]

    @pytest.mark.parametrize(
        "domain,count",
        [
            ("example.com", 1),
            ("a.example.com", 2),
            ("a.b.c.d.example.com", 5),
        ],
    )
    def test_at_most_n_minus_one_candidates(self, domain, count):
        """An N-label domain yields N-1 candidates."""
        candidates = zone_candidates(domain)

        assert len(candidates) == count
        assert len(candidates) == len(domain.split(".")) - 1

    def test_never_single_label_root(self):
        """The TLD alone is never searched."""
        assert "com" not in zone_candidates("app.team.example.com")

    def test_single_label_has_no_candidates(self):
        assert zone_candidates("localhost") == []

    def test_trailing_dot_and_case(self):
        assert zone_candidates("App.Example.COM.") == ["app.example.com", "example.com"]


class TestFindZone:
    """Tests for find_zone()."""

    def test_fallback_two_steps(self, zones, caplog):
        """Misses on the full domain and team.example.com, hits example.com."""
        with caplog.at_level(logging.INFO, logger="apps.deploy.topology.zones"):
            zone = find_zone("app.team.example.com", zones)

        assert zone.id == "zone-example"
        assert "after 3 lookup(s)" in caplog.text

    def test_exact_match_wins(self):
        """The most specific zone wins over its parent."""
        zones = [
            DNSZone(id="parent", name="example.com"),
            DNSZone(id="child", name="team.example.com"),
        ]

        assert find_zone("app.team.example.com", zones).id == "child"

    def test_not_found_lists_candidates(self, zones):
        with pytest.raises(ResolutionError) as exc_info:
            find_zone("app.unknown.net", zones)

        assert "app.unknown.net, unknown.net" in exc_info.value.message

    def test_does_not_match_tld_zone(self):
        """A zone named like the TLD is never a candidate."""
        with pytest.raises(ResolutionError):
            find_zone("example.com", [DNSZone(id="tld", name="com")])

    def test_ambiguous_zone_is_error(self):
        """Two zones with the same name require an explicit zone id."""
        zones = [
            DNSZone(id="z1", name="example.com"),
            DNSZone(id="z2", name="example.com"),
        ]

        with pytest.raises(ResolutionError) as exc_info:
            find_zone("app.example.com", zones)

        assert "set dns.zone_id explicitly" in exc_info.value.message


# =============================================================================
# Resolution
# =============================================================================


class TestResolve:
    """Tests for resolve()."""

    def test_edge_proxy_scenario(self, make_config, edge_proxy_overrides, zones):
        """Edge proxy under a deeper subdomain resolves the parent zone."""
        config = make_config(
            **{**edge_proxy_overrides, "tls": {"strategy": "edge-proxy", "email": "a@b.com"}}
        )

        topology = resolve(config, zones)

        assert topology.dns_zone_id == "zone-example"
        assert topology.dns_zone_name == "example.com"
        assert topology.endpoint_scheme == "https"
        assert topology.needs_reverse_proxy_tier is True
        assert topology.needs_load_balancer_tier is False
        assert topology.url == "https://app.team.example.com"

    def test_ip_only(self, make_config):
        """Without DNS the endpoint waits for the floating address."""
        topology = resolve(make_config())

        assert topology.tls_strategy == TLSStrategy.NONE
        assert topology.endpoint_scheme == "http"
        assert topology.public_endpoint is None
        assert topology.domain is None
        assert topology.manages_dns_record is False
        assert topology.floating_ip_owned is True

    def test_with_address_binds_ip_only_endpoint(self, make_config):
        topology = resolve(make_config()).with_address("203.0.113.7")

        assert topology.url == "http://203.0.113.7"

    def test_with_address_keeps_domain(self, make_config, edge_proxy_overrides, zones):
        topology = resolve(make_config(**edge_proxy_overrides), zones).with_address("203.0.113.7")

        assert topology.public_endpoint == "app.team.example.com"

    def test_load_balancer(self, make_config, zones):
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com"},
            tls={"strategy": "load-balancer"},
        )

        topology = resolve(config, zones)

        assert topology.needs_load_balancer_tier is True
        assert topology.needs_reverse_proxy_tier is False
        assert K.LOAD_BALANCER in topology.resource_kinds
        assert K.CERTIFICATE in topology.resource_kinds

    def test_explicit_zone_id_skips_search(self, make_config, zones):
        config = make_config(
            dns={"enabled": True, "domain": "app.team.example.com", "zone_id": "zone-other"}
        )

        topology = resolve(config, zones)

        assert topology.dns_zone_id == "zone-other"
        assert topology.dns_zone_name == "other.org"

    def test_explicit_zone_id_must_exist(self, make_config, zones):
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com", "zone_id": "missing"}
        )

        with pytest.raises(ResolutionError):
            resolve(config, zones)

    def test_offline_keeps_explicit_zone(self, make_config):
        """Without a zone snapshot, only an explicit id is carried."""
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com", "zone_id": "zone-example"}
        )

        topology = resolve(config)

        assert topology.dns_zone_id == "zone-example"
        assert topology.dns_zone_name is None

    def test_external_records_need_no_zone(self, make_config):
        """No zone lookup when someone else creates the record."""
        config = make_config(
            dns={
                "enabled": True,
                "domain": "shop.unmanaged.net",
                "authority": "external",
                "records_managed_externally": True,
            }
        )

        topology = resolve(config, [])

        assert topology.manages_dns_record is False
        assert topology.dns_zone_id is None
        assert topology.public_endpoint == "shop.unmanaged.net"
        assert K.DNS_RECORD not in topology.resource_kinds

    def test_reused_floating_ip(self, make_config):
        topology = resolve(make_config(floating_ip={"strategy": "reuse", "tag": "shop-ip"}))

        assert topology.floating_ip_owned is False
        assert topology.floating_ip_tag == "shop-ip"
        assert K.FLOATING_IP not in topology.resource_kinds

    def test_deterministic(self, make_config, edge_proxy_overrides, zones):
        """The same config and snapshot always resolve to an equal topology."""
        config = make_config(**edge_proxy_overrides)

        assert resolve(config, zones) == resolve(config, list(reversed(zones)))


class TestRequiredKinds:
    """Tests for the kinds a config implies."""

    def test_ip_only_kinds(self, make_config):
        assert required_kinds(make_config()) == (
            K.SECURITY_GROUP,
            K.CREDENTIAL,
            K.ROLE_BINDING,
            K.INSTANCE,
            K.FLOATING_IP,
            K.IP_ASSOCIATION,
            K.LOG_SINK,
            K.LOG_FUNCTION,
            K.LOG_SUBSCRIPTION,
        )

    def test_existing_certificate_drops_certificate_kind(self, make_config):
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com"},
            tls={"strategy": "load-balancer", "certificate_id": 12},
        )

        kinds = required_kinds(config)

        assert K.LOAD_BALANCER in kinds
        assert K.CERTIFICATE not in kinds

    def test_manages_dns_record(self, make_config, edge_proxy_overrides):
        assert manages_dns_record(make_config(**edge_proxy_overrides)) is True
        assert manages_dns_record(make_config()) is False
