"""Cross-field rules for a shape-valid DeploymentConfig.

Each rule is independent: it inspects the config and returns a violation
message or None. The validator runs all of them so the operator sees every
problem at once.
"""

from collections.abc import Callable

from outpost_schemas import DeploymentConfig, DNSAuthority, ReuseFloatingIP, TLSStrategy

Rule = Callable[[DeploymentConfig], str | None]

TLS_REQUIRING_DNS = (TLSStrategy.ACME, TLSStrategy.EDGE_PROXY, TLSStrategy.LOAD_BALANCER)


def tls_requires_dns(config: DeploymentConfig) -> str | None:
    strategy = config.tls.kind
    if strategy in TLS_REQUIRING_DNS and not config.dns.enabled:
        return f"tls.strategy '{strategy.value}' requires dns.enabled = true"
    return None


def acme_requires_email(config: DeploymentConfig) -> str | None:
    if config.tls.kind == TLSStrategy.ACME and not config.tls.email:
        return "tls.strategy 'acme' requires tls.email for the certificate authority"
    return None


def dns_requires_domain(config: DeploymentConfig) -> str | None:
    if config.dns.enabled and not config.dns.domain:
        return "dns.enabled = true requires a non-empty dns.domain"
    return None


def single_record_owner(config: DeploymentConfig) -> str | None:
    if config.dns.authority == DNSAuthority.SELF and config.dns.records_managed_externally:
        return (
            "dns.authority 'self' contradicts dns.records_managed_externally = true; "
            "only one party can create records"
        )
    return None


def domain_has_root(config: DeploymentConfig) -> str | None:
    domain = config.dns.domain
    if domain and len(domain.split(".")) < 2:
        return f"dns.domain '{domain}' must have at least two labels (e.g. example.com)"
    return None


def reuse_requires_tag(config: DeploymentConfig) -> str | None:
    if isinstance(config.floating_ip, ReuseFloatingIP) and not config.floating_ip.tag:
        return "floating_ip.strategy 'reuse' requires floating_ip.tag to find the address"
    return None


def startup_script_requires_path(config: DeploymentConfig) -> str | None:
    if config.startup_script.enabled and not config.startup_script.path:
        return "startup_script.enabled = true requires startup_script.path"
    return None


def monitoring_requires_email(config: DeploymentConfig) -> str | None:
    if config.monitoring.enabled and not config.monitoring.email:
        return "monitoring.enabled = true requires monitoring.email for alerts"
    return None


RULES: tuple[Rule, ...] = (
    tls_requires_dns,
    acme_requires_email,
    dns_requires_domain,
    single_record_owner,
    domain_has_root,
    reuse_requires_tag,
    startup_script_requires_path,
    monitoring_requires_email,
)


def check_rules(config: DeploymentConfig, rules: tuple[Rule, ...] = RULES) -> list[str]:
    """Run every rule and collect the violations, in rule order."""
    return [msg for rule in rules if (msg := rule(config)) is not None]
