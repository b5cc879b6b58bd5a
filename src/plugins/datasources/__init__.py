"""Built-in data sources."""

from plugins.datasources.base import DataSourcePlugin
from plugins.datasources.cluster import ClusterDataSource
from plugins.datasources.policy import PolicyDataSource

__all__ = ["DataSourcePlugin", "ClusterDataSource", "PolicyDataSource"]
