"""
Data Source Plugin Base - Abstract interface for read-only lookups.

A data source resolves a few input attributes (usually a name) to the
attributes of an existing remote object, so that resources can
reference IDs without hard-coding them.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from errors import ProviderConfigurationError
from provider import ProviderSession


class DataSourcePlugin(ABC):
    """Abstract base class for data sources."""

    def __init__(self):
        self._provider: Optional[ProviderSession] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Data source type name (e.g., 'pomeriumzero_cluster')."""
        pass

    @property
    @abstractmethod
    def schema(self) -> Dict[str, Any]:
        """Draft 7 JSON Schema of the input attributes."""
        pass

    @property
    def description(self) -> str:
        return ""

    def configure(self, provider: ProviderSession) -> None:
        self._provider = provider

    @property
    def provider(self) -> ProviderSession:
        if self._provider is None:
            raise ProviderConfigurationError(
                f"Data source {self.name} has not been configured"
            )
        return self._provider

    @abstractmethod
    async def read(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perform the lookup.

        Args:
            config: Input attributes

        Returns:
            The inputs merged with the looked-up attributes.

        Raises:
            LookupFailedError: If nothing matches.
        """
        pass
