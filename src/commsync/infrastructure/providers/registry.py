"""Maps provider families onto adapter instances."""

from __future__ import annotations

from typing import Iterator

from commsync.application.ports.provider_adapter import ProviderAdapter
from commsync.domain.errors import UnsupportedProvider
from commsync.domain.models import ProviderType


class AdapterRegistry:
    """The only route from the sync engine to provider code."""

    def __init__(self, adapters: dict[ProviderType, ProviderAdapter] | None = None):
        self._adapters: dict[ProviderType, ProviderAdapter] = dict(adapters or {})

    def register(self, provider_type: ProviderType, adapter: ProviderAdapter) -> None:
        self._adapters[ProviderType(provider_type)] = adapter

    def get(self, provider_type: ProviderType | str) -> ProviderAdapter:
        try:
            return self._adapters[ProviderType(provider_type)]
        except (KeyError, ValueError):
            raise UnsupportedProvider(f"No adapter registered for {provider_type}") from None

    def __contains__(self, provider_type: object) -> bool:
        try:
            return ProviderType(provider_type) in self._adapters
        except ValueError:
            return False

    def __iter__(self) -> Iterator[ProviderType]:
        return iter(self._adapters)
