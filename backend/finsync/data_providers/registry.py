"""
Provider Registry

Maps provider names to adapter instances. Populated at startup; the
orchestrator looks adapters up by the provider field of a ProviderIdentity.
"""
from typing import Optional
from loguru import logger

from finsync.data_providers.adapters.base import BaseAdapter
from finsync.data_providers.identity import normalize_provider
from finsync.utils.exceptions import ProviderNotRegisteredError


class ProviderRegistry:
    """Registry of provider adapters keyed by normalized name."""

    def __init__(self):
        self._adapters: dict[str, BaseAdapter] = {}

    def register(self, adapter: BaseAdapter, replace: bool = False) -> None:
        """
        Register an adapter under its name.

        Raises:
            ValueError: If the name is taken and replace is False
        """
        name = normalize_provider(adapter.name)
        if not name:
            raise ValueError("Adapter name must not be empty")
        if name in self._adapters and not replace:
            raise ValueError(f"Provider '{name}' is already registered")

        self._adapters[name] = adapter
        logger.info(f"Registered provider: {name}")

    def unregister(self, name: str) -> Optional[BaseAdapter]:
        adapter = self._adapters.pop(normalize_provider(name), None)
        if adapter:
            logger.info(f"Unregistered provider: {adapter.name}")
        return adapter

    def get(self, name: str) -> BaseAdapter:
        """
        Get the adapter for a provider.

        Raises:
            ProviderNotRegisteredError: If no adapter is registered
        """
        adapter = self._adapters.get(normalize_provider(name))
        if adapter is None:
            raise ProviderNotRegisteredError(name)
        return adapter

    def find(self, name: str) -> Optional[BaseAdapter]:
        return self._adapters.get(normalize_provider(name))

    def names(self) -> list[str]:
        return sorted(self._adapters)

    def adapters(self) -> list[BaseAdapter]:
        return [self._adapters[name] for name in self.names()]

    def __contains__(self, name: str) -> bool:
        return normalize_provider(name) in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    async def initialize_all(self) -> dict[str, Optional[Exception]]:
        """
        Initialize every adapter.

        Returns:
            Mapping of provider name to the exception raised, or None on success
        """
        results: dict[str, Optional[Exception]] = {}
        for name in self.names():
            try:
                await self._adapters[name].initialize()
                logger.info(f"Initialized provider: {name}")
                results[name] = None
            except Exception as e:
                logger.error(f"Failed to initialize provider {name}: {e}")
                results[name] = e
        return results

    async def close_all(self) -> None:
        """Close every adapter, logging failures."""
        for name in self.names():
            try:
                await self._adapters[name].close()
                logger.info(f"Closed provider: {name}")
            except Exception as e:
                logger.error(f"Error closing provider {name}: {e}")
