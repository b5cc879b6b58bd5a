"""
Resource Plugin Base - Abstract interface for resource handlers.

Each resource handler owns one Pomerium Zero resource kind. It declares
the attribute schema for that kind and implements create, read, update,
delete and import against the kind's REST endpoint, mapping between
the snake_case attribute model and the API's camelCase JSON.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from errors import ProviderConfigurationError
from provider import ProviderSession


class ResourcePlugin(ABC):
    """
    Abstract base class for resource handlers.

    Attribute models are flat dicts keyed by attribute name, with None
    standing for null.
    """

    def __init__(self):
        self._provider: Optional[ProviderSession] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Resource type name (e.g., 'pomeriumzero_route')."""
        pass

    @property
    @abstractmethod
    def schema(self) -> Dict[str, Any]:
        """Draft 7 JSON Schema of the configurable attributes."""
        pass

    @property
    def description(self) -> str:
        return ""

    def configure(self, provider: ProviderSession) -> None:
        """Receive the shared provider session."""
        self._provider = provider

    @property
    def provider(self) -> ProviderSession:
        if self._provider is None:
            raise ProviderConfigurationError(
                f"Resource handler {self.name} has not been configured"
            )
        return self._provider

    def normalize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize a configuration before validation and diffing.

        Override to fold equivalent spellings (e.g. empty string vs null)
        into one representation.
        """
        return dict(config)

    def validate_config(self, config: Dict[str, Any]) -> tuple[bool, Optional[str]]:
        """
        Cross-field validation beyond the JSON Schema.

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is None.
        """
        return True, None

    def attribute_equal(self, attribute: str, desired: Any, current: Any) -> bool:
        """Compare one attribute of desired and current state."""
        return desired == current

    @abstractmethod
    async def create(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create the remote resource.

        Args:
            plan: Desired attributes

        Returns:
            The new state attributes, including 'id'.
        """
        pass

    @abstractmethod
    async def read(self, state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Refresh state from the remote resource.

        Args:
            state: Current state attributes

        Returns:
            The refreshed attributes, or None if the resource no longer exists.
        """
        pass

    @abstractmethod
    async def update(
        self, plan: Dict[str, Any], state: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Replace the remote document with the desired attributes.

        Args:
            plan: Desired attributes
            state: Current state attributes (carries the 'id')

        Returns:
            The new state attributes.
        """
        pass

    @abstractmethod
    async def delete(self, state: Dict[str, Any]) -> None:
        """Delete the remote resource."""
        pass

    @abstractmethod
    async def import_state(self, resource_id: str) -> Dict[str, Any]:
        """
        Build state for an existing remote resource.

        Args:
            resource_id: The remote identifier

        Returns:
            The state attributes.
        """
        pass
