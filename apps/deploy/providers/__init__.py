"""Cloud providers - implementations of the provider capability surface."""

from apps.deploy.exceptions import AccessDenied
from apps.deploy.providers.base import CloudProvider, ResourceProvider
from apps.deploy.providers.cloudflare import CloudflareProvider
from apps.deploy.providers.composite import CompositeProvider
from apps.deploy.providers.hetzner import HetznerProvider
from apps.deploy.providers.mock import MockProvider
from apps.deploy.settings import OperatorSettings

SUPPORTED = ("cloud", "mock")


def get_provider(name: str, settings: OperatorSettings) -> CloudProvider:
    """
    Get a provider instance by name.

    Use this factory rather than instantiating providers directly; it wires
    credentials from the operator settings.

    Args:
        name: "cloud" (Hetzner + Cloudflare) or "mock".
        settings: Operator settings holding the API tokens.

    Returns:
        A provider implementing the CloudProvider protocol.

    Raises:
        ValueError: If the provider is not supported.
        AccessDenied: If the cloud provider is requested without credentials.

    Example:
        provider = get_provider("cloud", get_settings())
        zones = await provider.list_zones()
    """
    if name == "mock":
        return MockProvider()
    elif name == "cloud":
        missing = [
            env
            for env, value in (
                ("OUTPOST_HCLOUD_TOKEN", settings.hcloud_token),
                ("OUTPOST_CLOUDFLARE_API_TOKEN", settings.cloudflare_api_token),
                ("OUTPOST_CLOUDFLARE_ACCOUNT_ID", settings.cloudflare_account_id),
            )
            if not value
        ]
        if missing:
            raise AccessDenied(f"missing credentials: {', '.join(missing)}", provider=name)
        return CompositeProvider(
            hetzner=HetznerProvider(token=settings.hcloud_token or ""),
            cloudflare=CloudflareProvider(
                api_token=settings.cloudflare_api_token or "",
                account_id=settings.cloudflare_account_id or "",
                r2_access_key_id=settings.r2_access_key_id,
                r2_secret_access_key=settings.r2_secret_access_key,
            ),
        )
    else:
        raise ValueError(f"Unsupported provider: {name}. Supported: {', '.join(SUPPORTED)}")


__all__ = [
    "CloudflareProvider",
    "CloudProvider",
    "CompositeProvider",
    "HetznerProvider",
    "MockProvider",
    "ResourceProvider",
    "get_provider",
]
