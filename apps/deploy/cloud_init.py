"""Cloud-init configuration for the deployment's server."""

import textwrap

from outpost_schemas import AcmeTLS, DeploymentConfig, OnError, ResolvedTopology, TLSStrategy

CONFIG_DIR = "/etc/outpost"
STARTUP_SCRIPT_PATH = f"{CONFIG_DIR}/custom-startup.sh"


def _indent(text: str, spaces: int) -> str:
    return textwrap.indent(text.rstrip("\n") + "\n", " " * spaces)


def render_caddyfile(config: DeploymentConfig, topology: ResolvedTopology) -> str | None:
    """Caddyfile for the reverse-proxy tier, or None when there is none.

    ACME: Caddy obtains the certificate itself. Edge proxy: the edge
    terminates TLS, so Caddy only serves plain HTTP for the domain.
    """
    if not topology.needs_reverse_proxy_tier:
        return None
    upstream = f"localhost:{config.machine.app_port}"
    if topology.tls_strategy == TLSStrategy.ACME:
        acme_ca = ""
        if isinstance(config.tls, AcmeTLS) and config.tls.staging:
            acme_ca = "\n    acme_ca https://acme-staging-v02.api.letsencrypt.org/directory"
        return (
            f"{{\n    email {config.tls.email}{acme_ca}\n}}\n\n"
            f"{topology.domain} {{\n    reverse_proxy {upstream}\n}}\n"
        )
    return f"http://{topology.domain} {{\n    reverse_proxy {upstream}\n}}\n"


def render_bootstrap(
    config: DeploymentConfig,
    topology: ResolvedTopology,
    startup_script: str | None = None,
) -> str:
    """Shell script that installs Caddy (if needed), runs the custom startup
    script and starts the app container."""
    image = f"{config.machine.app_image}:{config.machine.image_tag}"
    port = config.machine.app_port
    caddy = topology.needs_reverse_proxy_tier
    # Behind Caddy the app is only reachable locally; otherwise port 80
    # (and the load balancer's destination port) maps straight to it.
    binding = f"127.0.0.1:{port}:{port}" if caddy else f"0.0.0.0:80:{port}"

    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        "export DEBIAN_FRONTEND=noninteractive",
        "",
    ]
    if caddy:
        lines += [
            f'echo ">> Installing Caddy (tls: {topology.tls_strategy.value})"',
            "curl -1sLf 'https://dl.cloudsmith.io/public/caddy/stable/gpg.key' "
            "| gpg --dearmor -o /usr/share/keyrings/caddy-stable-archive-keyring.gpg",
            "curl -1sLf 'https://dl.cloudsmith.io/public/caddy/stable/debian.deb.txt' "
            "> /etc/apt/sources.list.d/caddy-stable.list",
            "apt-get update",
            "apt-get install -y caddy",
            f"cp {CONFIG_DIR}/Caddyfile /etc/caddy/Caddyfile",
            "",
        ]

    if startup_script is not None:
        if config.startup_script.on_error == OnError.FAIL:
            lines.append(STARTUP_SCRIPT_PATH)
        else:
            lines.append(
                f'{STARTUP_SCRIPT_PATH} || echo ">> Custom startup failed; continuing"'
            )
        lines.append("")

    lines += [
        f'docker pull "{image}"',
        "docker rm -f app 2>/dev/null || true",
        f'docker run -d --name app --restart unless-stopped -p "{binding}" \\',
        f"  --mount type=bind,src={CONFIG_DIR},dst=/config,ro \\",
        f"  -e DEPLOYMENT={topology.identifier} \\",
        f"  -e PUBLIC_URL={topology.url or ''} \\",
        f'  "{image}"',
    ]
    if caddy:
        lines += ["", "systemctl restart caddy"]
    lines += ["", f'echo ">> {topology.identifier} bootstrap complete"']
    return "\n".join(lines) + "\n"


def generate_cloud_init(
    config: DeploymentConfig,
    topology: ResolvedTopology,
    startup_script: str | None = None,
) -> str:
    """Generate the cloud-init document for the deployment's server.

    Sets up:
    - Docker from the official repository
    - Docker log rotation
    - Caddy reverse proxy (ACME and edge-proxy strategies)
    - The optional custom startup script
    - The app container

    Args:
        config: Validated deployment settings
        topology: Resolved topology for the same settings
        startup_script: Contents of the custom startup script, if enabled

    Returns:
        Cloud-init YAML configuration string
    """
    ssh_keys_section = ""
    if config.machine.ssh_public_key:
        ssh_keys_section = f"""
ssh_authorized_keys:
  - {config.machine.ssh_public_key}
"""

    files = [
        f"""  - path: {CONFIG_DIR}/bootstrap.sh
    permissions: '0755'
    content: |
{_indent(render_bootstrap(config, topology, startup_script), 6)}""",
        """  - path: /etc/docker/daemon.json
    permissions: '0644'
    content: |
      {"log-driver": "json-file", "log-opts": {"max-size": "10m", "max-file": "3"}}
""",
    ]
    caddyfile = render_caddyfile(config, topology)
    if caddyfile is not None:
        files.append(
            f"""  - path: {CONFIG_DIR}/Caddyfile
    permissions: '0644'
    content: |
{_indent(caddyfile, 6)}"""
        )
    if startup_script is not None:
        files.append(
            f"""  - path: {STARTUP_SCRIPT_PATH}
    permissions: '0755'
    content: |
{_indent(startup_script, 6)}"""
        )
    write_files = "".join(files)

    return f"""#cloud-config
package_update: true
{ssh_keys_section}
packages:
  - ca-certificates
  - curl
  - gnupg

write_files:
{write_files}
runcmd:
  # Install Docker from official repository
  - install -m 0755 -d /etc/apt/keyrings
  - curl -fsSL https://download.docker.com/linux/ubuntu/gpg -o /etc/apt/keyrings/docker.asc
  - chmod a+r /etc/apt/keyrings/docker.asc
  - |
    echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc] https://download.docker.com/linux/ubuntu $(. /etc/os-release && echo "$VERSION_CODENAME") stable" > /etc/apt/sources.list.d/docker.list
  - apt-get update
  - apt-get install -y docker-ce docker-ce-cli containerd.io
  - systemctl enable --now docker
  - {CONFIG_DIR}/bootstrap.sh

final_message: "{topology.identifier} server ready - $(date)"
"""
