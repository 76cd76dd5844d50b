"""Outpost Infrastructure - Pulumi Entry Point.

Declarative rendition of one deployment settings document:
- Hetzner: firewall, SSH key, server, floating IP, load balancer tier
- Cloudflare: DNS record, log bucket, log-forwarding Worker, Logpush job

The resolved topology decides which tiers exist, exactly as for
`outpost apply`; only the execution engine differs.
"""

from pathlib import Path

import pulumi
from src import outputs
from src.cloudflare import dns, logs, workers
from src.hetzner import firewall, floating_ip, load_balancer, server

from apps.deploy import services
from apps.deploy.cloud_init import generate_cloud_init
from apps.deploy.config import load_config
from apps.deploy.topology import resolve

# Settings document from stack config, relative to the repo root
config = pulumi.Config()
config_path = Path(__file__).resolve().parent.parent / config.require("config_path")
account_id = config.require("cloudflare_account_id")

settings = load_config(config_path)
topology = resolve(settings)
user_data = generate_cloud_init(
    settings, topology, services.read_startup_script(settings, config_path)
)

# =============================================================================
# Hetzner Infrastructure
# =============================================================================

# Firewall applied by label selector
hetzner_firewall = firewall.create_firewall(topology)
binding = firewall.bind_firewall(topology, hetzner_firewall)

# SSH key for server access
ssh_key = server.create_ssh_key(settings, topology)

# Application server
app_server = server.create_server(
    settings,
    topology,
    ssh_key_id=ssh_key.id.apply(int),
    user_data=user_data,
    binding=binding,
)

# Floating IP (created or reused) assigned to the server
floating_ip_id, floating_address = floating_ip.floating_ip(topology)
floating_ip.assign_floating_ip(topology, floating_ip_id, app_server)

# Load balancer tier
address = floating_address
if topology.needs_load_balancer_tier:
    lb = load_balancer.create_load_balancer(settings, topology, app_server)
    address = lb.ipv4

# =============================================================================
# Cloudflare Infrastructure
# =============================================================================

dns_record = dns.create_dns_record(topology, address) if topology.manages_dns_record else None

log_forwarder = workers.create_log_forwarder(topology, account_id)
log_pipeline = logs.create_log_pipeline(topology, account_id, log_forwarder)

# =============================================================================
# Outputs
# =============================================================================

outputs.export_outputs(
    topology=topology,
    server=app_server,
    address=address,
    logs=log_pipeline,
    dns_record=dns_record,
)
