"""
Plugin Registry - Discovery and registration of plugins.

This module provides the central registry for resource handlers and
data sources, handling registration, instantiation, and wiring each
instance to the shared provider session.
"""

from importlib.metadata import entry_points
from typing import Dict, Optional, Type

from plugins.base import logger
from plugins.datasources.base import DataSourcePlugin
from plugins.resources.base import ResourcePlugin
from provider import ProviderSession
from validation import validate_schema


class PluginRegistry:
    """
    Central registry for all plugins.

    Resource handlers and data sources live in separate namespaces, so a
    resource and a data source may share a type name.
    """

    def __init__(self):
        # Registered plugin classes (not instantiated)
        self._resource_plugins: Dict[str, Type[ResourcePlugin]] = {}
        self._data_source_plugins: Dict[str, Type[DataSourcePlugin]] = {}

        # Instantiated plugin instances
        self._resource_instances: Dict[str, ResourcePlugin] = {}
        self._data_source_instances: Dict[str, DataSourcePlugin] = {}

        self._provider: Optional[ProviderSession] = None

    # Registration methods

    def register_resource_plugin(self, plugin_class: Type[ResourcePlugin]) -> None:
        """
        Register a resource handler class.

        Args:
            plugin_class: The ResourcePlugin subclass to register

        Raises:
            ValueError: If the handler's schema is not valid Draft 7
        """
        name = _checked_name(plugin_class())

        if name in self._resource_plugins:
            logger.warning(f"Overwriting existing resource plugin: {name}")

        self._resource_plugins[name] = plugin_class
        self._resource_instances.pop(name, None)
        logger.info(f"Registered resource plugin: {name}")

    def register_data_source_plugin(
        self, plugin_class: Type[DataSourcePlugin]
    ) -> None:
        """
        Register a data source class.

        Args:
            plugin_class: The DataSourcePlugin subclass to register

        Raises:
            ValueError: If the data source's schema is not valid Draft 7
        """
        name = _checked_name(plugin_class())

        if name in self._data_source_plugins:
            logger.warning(f"Overwriting existing data source plugin: {name}")

        self._data_source_plugins[name] = plugin_class
        self._data_source_instances.pop(name, None)
        logger.info(f"Registered data source plugin: {name}")

    def configure(self, provider: ProviderSession) -> None:
        """Hand the provider session to every current and future instance."""
        self._provider = provider
        for instance in self._resource_instances.values():
            instance.configure(provider)
        for instance in self._data_source_instances.values():
            instance.configure(provider)

    # Instantiation methods

    def get_resource_plugin(self, name: str) -> ResourcePlugin:
        """
        Get a resource handler instance.

        Raises:
            ValueError: If the type name is not registered
        """
        if name not in self._resource_plugins:
            available = ", ".join(sorted(self._resource_plugins)) or "none"
            raise ValueError(
                f"Unknown resource type: {name}. Available resource types: {available}"
            )

        if name not in self._resource_instances:
            plugin = self._resource_plugins[name]()
            if self._provider is not None:
                plugin.configure(self._provider)
            self._resource_instances[name] = plugin

        return self._resource_instances[name]

    def get_data_source_plugin(self, name: str) -> DataSourcePlugin:
        """
        Get a data source instance.

        Raises:
            ValueError: If the type name is not registered
        """
        if name not in self._data_source_plugins:
            available = ", ".join(sorted(self._data_source_plugins)) or "none"
            raise ValueError(
                f"Unknown data source: {name}. Available data sources: {available}"
            )

        if name not in self._data_source_instances:
            plugin = self._data_source_plugins[name]()
            if self._provider is not None:
                plugin.configure(self._provider)
            self._data_source_instances[name] = plugin

        return self._data_source_instances[name]

    # Discovery methods

    def list_resource_plugins(self) -> list[str]:
        """List all registered resource type names."""
        return list(self._resource_plugins.keys())

    def list_data_source_plugins(self) -> list[str]:
        """List all registered data source type names."""
        return list(self._data_source_plugins.keys())

    def has_resource_plugin(self, name: str) -> bool:
        return name in self._resource_plugins

    def has_data_source_plugin(self, name: str) -> bool:
        return name in self._data_source_plugins


def _checked_name(plugin) -> str:
    valid, error = validate_schema(plugin.schema)
    if not valid:
        raise ValueError(f"Plugin {plugin.name} has an invalid schema: {error}")
    return plugin.name


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """
    Register the built-in resource handlers and data sources, then
    discover extra resource handlers via entry points.
    """
    from plugins.datasources import ClusterDataSource, PolicyDataSource
    from plugins.resources import (
        ClusterSettingsResource,
        PolicyResource,
        RouteResource,
    )

    registry = get_registry()

    for resource_class in (ClusterSettingsResource, RouteResource, PolicyResource):
        registry.register_resource_plugin(resource_class)

    for data_source_class in (ClusterDataSource, PolicyDataSource):
        registry.register_data_source_plugin(data_source_class)

    discovered = entry_points(group="pzctl.resources")
    for ep in discovered:
        try:
            registry.register_resource_plugin(ep.load())
        except Exception as e:
            logger.warning(f"Could not load resource plugin {ep.name}: {e}")
