"""Tests for settings loading and cross-field validation."""

from pathlib import Path

import pytest
from outpost_schemas import (
    AcmeTLS,
    CreateFloatingIP,
    DNSAuthority,
    LoadBalancerTLS,
    NoTLS,
    ReuseFloatingIP,
    TLSStrategy,
)

from apps.deploy.config import RULES, check_rules, load_config, load_document, validate
from apps.deploy.exceptions import ConfigurationError

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"

# =============================================================================
# Shape
# =============================================================================


class TestShape:
    """Tests for parsing the raw document into typed sections."""

    def test_minimal_document_gets_defaults(self, document):
        """Only the deployment name is required."""
        config = validate({"deployment": {"name": "shop"}})

        assert config.deployment.environment == "production"
        assert config.identifier == "shop-production"
        assert isinstance(config.tls, NoTLS)
        assert isinstance(config.floating_ip, CreateFloatingIP)
        assert config.dns.enabled is False
        assert config.dns.authority == DNSAuthority.SELF
        assert config.machine.app_port == 5000

    def test_tls_variant_selected_by_strategy(self, make_config):
        """The strategy tag picks the TLS model."""
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com"},
            tls={"strategy": "acme", "email": "ops@example.com", "staging": True},
        )

        assert isinstance(config.tls, AcmeTLS)
        assert config.tls.kind == TLSStrategy.ACME
        assert config.tls.staging is True

    def test_load_balancer_certificate_id(self, make_config):
        """A load-balancer strategy can name an existing certificate."""
        config = make_config(
            dns={"enabled": True, "domain": "shop.example.com"},
            tls={"strategy": "load-balancer", "certificate_id": 4711},
        )

        assert isinstance(config.tls, LoadBalancerTLS)
        assert config.tls.certificate_id == 4711

    def test_domain_is_normalized(self, make_config):
        """Domains are lowercased and lose a trailing dot."""
        config = make_config(dns={"enabled": True, "domain": " Shop.Example.COM. "})

        assert config.dns.domain == "shop.example.com"

    def test_unknown_keys_are_ignored(self, document):
        """Unknown keys do not fail validation."""
        config = validate(document(dns={"enabled": False, "ttl": 300}, extra_section={"a": 1}))

        assert config.dns.enabled is False

    def test_unknown_tls_strategy_is_reported(self, document):
        """An unknown strategy is a shape violation naming the field."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(tls={"strategy": "self-signed"}))

        assert any(v.startswith("tls") for v in exc_info.value.violations)

    def test_all_shape_errors_reported_together(self, document):
        """Every shape problem is listed, not just the first."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(
                document(
                    deployment={"name": "Not A Slug"},
                    machine={"app_port": 70000},
                )
            )

        violations = exc_info.value.violations
        assert len(violations) == 2
        assert any("deployment.name" in v for v in violations)
        assert any("machine.app_port" in v for v in violations)

    def test_missing_deployment_section(self):
        """The deployment section is required."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate({})

        assert exc_info.value.violations == ["deployment: Field required"]

    def test_config_is_immutable(self, make_config):
        """Validated sections cannot be mutated."""
        config = make_config()

        with pytest.raises(ValueError):
            config.deployment.name = "other"


# =============================================================================
# Cross-field rules
# =============================================================================


class TestRules:
    """Tests for the cross-field rules."""

    def test_valid_ip_only_config(self, make_config):
        """The base IP-only document passes every rule."""
        assert check_rules(make_config()) == []

    @pytest.mark.parametrize(
        "tls",
        [
            {"strategy": "edge-proxy"},
            {"strategy": "load-balancer"},
            {"strategy": "acme", "email": "ops@example.com"},
        ],
    )
    def test_tls_without_dns_is_single_violation(self, document, tls):
        """TLS other than none with DNS disabled is exactly one violation."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(tls=tls))

        assert exc_info.value.violations == [
            f"tls.strategy '{tls['strategy']}' requires dns.enabled = true"
        ]

    def test_acme_requires_email(self, document):
        """ACME needs a contact address."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(
                document(
                    dns={"enabled": True, "domain": "shop.example.com"},
                    tls={"strategy": "acme"},
                )
            )

        assert len(exc_info.value.violations) == 1
        assert "tls.email" in exc_info.value.violations[0]

    def test_dns_requires_domain(self, document):
        """Enabling DNS without a domain is a violation."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(dns={"enabled": True}))

        assert exc_info.value.violations == ["dns.enabled = true requires a non-empty dns.domain"]

    def test_single_record_owner(self, document):
        """Self authority and externally managed records contradict."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(
                document(
                    dns={
                        "enabled": True,
                        "domain": "shop.example.com",
                        "authority": "self",
                        "records_managed_externally": True,
                    }
                )
            )

        assert "only one party can create records" in exc_info.value.violations[0]

    def test_external_authority_with_external_records_is_valid(self, make_config):
        """An external authority that manages records is consistent."""
        config = make_config(
            dns={
                "enabled": True,
                "domain": "shop.example.com",
                "authority": "external",
                "records_managed_externally": True,
            }
        )

        assert config.dns.authority == DNSAuthority.EXTERNAL

    def test_single_label_domain(self, document):
        """A domain needs a root with at least two labels."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(dns={"enabled": True, "domain": "localhost"}))

        assert "at least two labels" in exc_info.value.violations[0]

    def test_reuse_requires_tag(self, document):
        """Reusing an address needs its name."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(floating_ip={"strategy": "reuse"}))

        assert "floating_ip.tag" in exc_info.value.violations[0]

    def test_reuse_with_tag(self, make_config):
        """Reuse with a tag is valid."""
        config = make_config(floating_ip={"strategy": "reuse", "tag": "shop-ip"})

        assert isinstance(config.floating_ip, ReuseFloatingIP)
        assert config.floating_ip.tag == "shop-ip"

    def test_startup_script_requires_path(self, document):
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(startup_script={"enabled": True}))

        assert "startup_script.path" in exc_info.value.violations[0]

    def test_monitoring_requires_email(self, document):
        with pytest.raises(ConfigurationError) as exc_info:
            validate(document(monitoring={"enabled": True}))

        assert "monitoring.email" in exc_info.value.violations[0]

    def test_every_violation_is_listed(self, document):
        """Independent rule violations are all reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate(
                document(
                    tls={"strategy": "acme"},
                    floating_ip={"strategy": "reuse"},
                    monitoring={"enabled": True},
                )
            )

        assert len(exc_info.value.violations) == 4
        assert "4 configuration violation(s)" in exc_info.value.message

    def test_rules_are_independent(self, make_config):
        """Each rule can be run on its own."""
        config = make_config()

        assert all(rule(config) is None for rule in RULES)


# =============================================================================
# Loading
# =============================================================================


class TestLoading:
    """Tests for reading settings files."""

    def test_load_config_from_file(self, write_config):
        """A file on disk is parsed and validated."""
        path = write_config()

        config = load_config(path)

        assert config.identifier == "shop-test"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_document(tmp_path / "nope.yaml")

        assert "not found" in exc_info.value.violations[0]

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("deployment: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_document(path)

        assert exc_info.value.violations[0].startswith("invalid YAML")
        assert exc_info.value.source == str(path)

    def test_empty_file_reports_missing_deployment(self, tmp_path):
        """An empty file is an empty mapping, which lacks a deployment."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)

        assert "deployment: Field required" in exc_info.value.violations

    def test_top_level_list_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_document(path)

        assert "mapping" in exc_info.value.violations[0]

    @pytest.mark.parametrize("path", sorted(EXAMPLES_DIR.glob("*.yaml")), ids=lambda p: p.stem)
    def test_example_configs_are_valid(self, path):
        """Every shipped example validates."""
        config = load_config(path)

        assert config.identifier
