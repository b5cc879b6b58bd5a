"""Built-in resource handlers."""

from plugins.resources.base import ResourcePlugin
from plugins.resources.cluster_settings import ClusterSettingsResource
from plugins.resources.policy import PolicyResource
from plugins.resources.route import RouteResource

__all__ = [
    "ResourcePlugin",
    "ClusterSettingsResource",
    "PolicyResource",
    "RouteResource",
]
