"""
loqui/features/integrations/registry.py

Provider lookup. Built once per app and passed to whoever needs adapters.
"""

from typing import Dict, Iterable, List, Optional

import httpx

from loqui.features.integrations.adapters.kit import KitAdapter
from loqui.features.integrations.adapters.mailchimp import MailchimpAdapter
from loqui.features.integrations.adapters.manual import beehiiv_adapter, gohighlevel_adapter
from loqui.features.integrations.adapters.sendgrid import SendGridAdapter
from loqui.features.integrations.base import HTTP_TIMEOUT_SECONDS, ProviderAdapter


class ProviderRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider] = adapter

    def get(self, provider: Optional[str]) -> Optional[ProviderAdapter]:
        if not provider:
            return None
        return self._adapters.get(provider.lower())

    def providers(self) -> List[str]:
        return sorted(self._adapters)


def build_default_registry(settings_obj, *, transport: Optional[httpx.BaseTransport] = None) -> ProviderRegistry:
    """All marketing providers, sharing one HTTP client."""
    http_client = httpx.Client(timeout=HTTP_TIMEOUT_SECONDS, transport=transport)
    return ProviderRegistry([
        KitAdapter(
            client_id=settings_obj.KIT_CLIENT_ID,
            client_secret=settings_obj.KIT_CLIENT_SECRET,
            redirect_uri=settings_obj.KIT_REDIRECT_URI,
            state_secret=settings_obj.OAUTH_STATE_SECRET,
            http_client=http_client,
        ),
        MailchimpAdapter(
            client_id=settings_obj.MAILCHIMP_CLIENT_ID,
            client_secret=settings_obj.MAILCHIMP_CLIENT_SECRET,
            redirect_uri=settings_obj.MAILCHIMP_REDIRECT_URI,
            state_secret=settings_obj.OAUTH_STATE_SECRET,
            http_client=http_client,
        ),
        SendGridAdapter(default_api_key=settings_obj.SENDGRID_API_KEY, http_client=http_client),
        beehiiv_adapter(http_client),
        gohighlevel_adapter(http_client),
    ])
