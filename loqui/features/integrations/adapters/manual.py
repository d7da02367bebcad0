"""Providers without an API integration yet. Every operation falls back to manual."""

from loqui.features.integrations.base import ProviderAdapter
from loqui.features.integrations.contracts import DeliveryMode, ProviderCapabilities


class ManualAdapter(ProviderAdapter):
    # What the provider offers in its own UI; none of it is wired up here
    declared_capabilities: ProviderCapabilities
    capabilities = ProviderCapabilities(auth=False)

    def __init__(self, provider: str, display_name: str, declared: ProviderCapabilities, *, http_client=None):
        super().__init__(http_client=http_client)
        self.provider = provider
        self.display_name = display_name
        self.declared_capabilities = declared

    def delivery_mode(self) -> DeliveryMode:
        return DeliveryMode.MANUAL


def beehiiv_adapter(http_client=None) -> ManualAdapter:
    return ManualAdapter(
        "beehiiv",
        "beehiiv",
        ProviderCapabilities(audiences=True, upsert_contact=True, subscribe=True, tag=False, send_or_trigger=True),
        http_client=http_client,
    )


def gohighlevel_adapter(http_client=None) -> ManualAdapter:
    return ManualAdapter(
        "gohighlevel",
        "GoHighLevel",
        ProviderCapabilities(audiences=True, upsert_contact=True, subscribe=True, tag=True, send_or_trigger=True),
        http_client=http_client,
    )
