from typing import Optional

import httpx

from rentcall.utils.exceptions import ConfigurationError
from rentcall.whatsapp.config import WhatsAppConfig
from rentcall.whatsapp.providers.base import BaseMessagingProvider
from rentcall.whatsapp.providers.meta import MetaCloudProvider

PROVIDERS: dict[str, type[BaseMessagingProvider]] = {
    "meta": MetaCloudProvider,
}


def get_provider(
    config: WhatsAppConfig, client: Optional[httpx.AsyncClient] = None
) -> BaseMessagingProvider:
    """Factory function for selecting the configured messaging provider."""
    provider_cls = PROVIDERS.get(config.provider.lower())
    if not provider_cls:
        raise ConfigurationError(f"Unsupported WhatsApp provider: {config.provider}")
    return provider_cls(config, client)
