"""Policy lookup by name within a namespace."""

import logging
from typing import Any, Dict

from errors import LookupFailedError
from models import PolicyDocument, decode
from plugins.datasources.base import DataSourcePlugin

logger = logging.getLogger(__name__)

SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["name", "namespace_id"],
    "properties": {
        "name": {"type": "string", "minLength": 1, "description": "Name of the policy."},
        "namespace_id": {
            "type": "string",
            "minLength": 1,
            "description": "Namespace to search, including its descendants.",
        },
    },
}


class PolicyDataSource(DataSourcePlugin):
    @property
    def name(self) -> str:
        return "pomeriumzero_policy"

    @property
    def schema(self) -> Dict[str, Any]:
        return SCHEMA

    @property
    def description(self) -> str:
        return "Look up a Pomerium Zero policy by name."

    async def read(self, config: Dict[str, Any]) -> Dict[str, Any]:
        name = config["name"]
        namespace_id = config["namespace_id"]
        logger.debug(f"Looking up policy {name} in namespace {namespace_id}")

        data = await self.provider.request(
            "GET",
            "/policies",
            expected_status=200,
            params={"namespaceId": namespace_id, "includeDescendants": "true"},
        )
        for item in data or []:
            policy = decode(PolicyDocument, item)
            if policy.name == name:
                return {"name": name, "namespace_id": namespace_id, "id": policy.id}

        raise LookupFailedError(f"No policy found with name: {name}")
