"""Cluster lookup by name."""

import logging
from typing import Any, Dict

from errors import LookupFailedError
from models import Cluster, decode
from plugins.datasources.base import DataSourcePlugin

logger = logging.getLogger(__name__)

SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1, "description": "Name of the cluster."},
    },
}

OUTPUT_ATTRIBUTES = [
    "id",
    "namespace_id",
    "domain",
    "fqdn",
    "auto_detect_ip_address",
    "created_at",
    "updated_at",
]


class ClusterDataSource(DataSourcePlugin):
    @property
    def name(self) -> str:
        return "pomeriumzero_cluster"

    @property
    def schema(self) -> Dict[str, Any]:
        return SCHEMA

    @property
    def description(self) -> str:
        return "Look up a Pomerium Zero cluster by name."

    async def read(self, config: Dict[str, Any]) -> Dict[str, Any]:
        name = config["name"]
        logger.debug(f"Looking up cluster: {name}")

        data = await self.provider.request("GET", "/clusters", expected_status=200)
        for item in data or []:
            cluster = decode(Cluster, item)
            if cluster.name == name:
                result = {"name": name}
                for attribute in OUTPUT_ATTRIBUTES:
                    result[attribute] = getattr(cluster, attribute)
                return result

        raise LookupFailedError(f"No cluster found with name: {name}")
