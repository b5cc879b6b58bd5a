"""
Plugin system for pzctl.

This package provides the resource handlers and data sources that
the controller drives, plus the registry that wires them together.
"""

from plugins.base import ChangeAction, Plan, ResourceChange, UNKNOWN
from plugins.datasources.base import DataSourcePlugin
from plugins.resources.base import ResourcePlugin
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "ChangeAction",
    "Plan",
    "ResourceChange",
    "UNKNOWN",
    "DataSourcePlugin",
    "ResourcePlugin",
    "PluginRegistry",
    "get_registry",
]
