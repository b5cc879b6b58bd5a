"""
Policy resource handler.

Policies carry a PPL (Pomerium Policy Language) document. The document is
kept in state as JSON text and sent to the API as a parsed JSON value.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from errors import NotFoundError
from models import PolicyDocument, decode
from plugins.base import UNKNOWN, is_unknown
from plugins.resources.base import ResourcePlugin

logger = logging.getLogger(__name__)

# Fields the API may echo back as the literal string "null"
NULL_STRING_FIELDS = ["name", "description", "explanation", "remediation"]

SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "name",
        "description",
        "enforced",
        "explanation",
        "namespace_id",
        "ppl",
        "remediation",
    ],
    "properties": {
        "name": {"type": "string", "minLength": 1, "description": "Name of the policy."},
        "description": {"type": "string", "description": "Description of the policy."},
        "enforced": {
            "type": "boolean",
            "description": "Whether the policy applies to every route in its namespace.",
        },
        "explanation": {
            "type": "string",
            "description": "Explanation shown to users when access is denied.",
        },
        "namespace_id": {
            "type": "string",
            "minLength": 1,
            "description": "ID of the namespace the policy belongs to.",
        },
        "ppl": {
            "type": ["string", "object", "array"],
            "description": "Policy Policy Language document, as a JSON string.",
        },
        "remediation": {
            "type": "string",
            "description": "Remediation steps shown when access is denied.",
        },
    },
}


def canonical_ppl(ppl: Any) -> str:
    """Serialize a PPL value with sorted keys and no insignificant whitespace."""
    if isinstance(ppl, str):
        ppl = json.loads(ppl)
    return json.dumps(ppl, sort_keys=True, separators=(",", ":"))


def policy_request(plan: Dict[str, Any]) -> Dict[str, Any]:
    """Build the request body shared by create and update."""
    return {
        "name": plan["name"],
        "description": plan["description"],
        "enforced": plan["enforced"],
        "explanation": plan["explanation"],
        "namespaceId": plan["namespace_id"],
        "ppl": json.loads(plan["ppl"]),
        "remediation": plan["remediation"],
    }


def policy_to_state(policy: PolicyDocument) -> Dict[str, Any]:
    """Map an API policy document to state attributes."""
    state: Dict[str, Any] = {
        "id": policy.id,
        "enforced": policy.enforced,
        "namespace_id": policy.namespace_id,
        "ppl": json.dumps(policy.ppl),
    }
    for attribute in NULL_STRING_FIELDS:
        value = getattr(policy, attribute)
        state[attribute] = "" if value == "null" else value

    if policy.routes:
        logger.info(
            f"Policy {policy.id} is attached to {len(policy.routes)} route(s); "
            f"route attachments are managed on the route"
        )
    return state


class PolicyResource(ResourcePlugin):
    """Manages a policy in Pomerium Zero."""

    @property
    def name(self) -> str:
        return "pomeriumzero_policy"

    @property
    def schema(self) -> Dict[str, Any]:
        return SCHEMA

    @property
    def description(self) -> str:
        return "Manages a policy resource in Pomerium Zero."

    def normalize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        config = dict(config)
        ppl = config.get("ppl")
        if is_unknown(ppl):
            config["ppl"] = UNKNOWN
        elif isinstance(ppl, (dict, list)):
            config["ppl"] = json.dumps(ppl)
        return config

    def validate_config(self, config: Dict[str, Any]) -> tuple[bool, Optional[str]]:
        ppl = self.normalize_config(config).get("ppl")
        if not isinstance(ppl, str):
            return True, None
        try:
            json.loads(ppl)
        except ValueError as e:
            return False, f"ppl is not valid JSON: {e}"
        return True, None

    def attribute_equal(self, attribute: str, desired: Any, current: Any) -> bool:
        if attribute == "ppl" and desired is not None and current is not None:
            try:
                return canonical_ppl(desired) == canonical_ppl(current)
            except ValueError:
                return False
        return desired == current

    async def create(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        plan = self.normalize_config(plan)
        logger.debug(f"Creating policy: {plan['name']}")

        data = await self.provider.request(
            "POST", "/policies", expected_status=201, json_body=policy_request(plan)
        )
        created = decode(PolicyDocument, data)

        state = {attribute: plan.get(attribute) for attribute in SCHEMA["properties"]}
        state["id"] = created.id
        return state

    async def read(self, state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        policy_id = state["id"]
        try:
            data = await self.provider.request(
                "GET", f"/policies/{policy_id}", expected_status=200
            )
        except NotFoundError:
            logger.info(f"Policy {policy_id} not found")
            return None
        return policy_to_state(decode(PolicyDocument, data))

    async def update(
        self, plan: Dict[str, Any], state: Dict[str, Any]
    ) -> Dict[str, Any]:
        plan = self.normalize_config(plan)
        policy_id = state["id"]
        logger.debug(f"Updating policy: {policy_id}")

        try:
            data = await self.provider.request(
                "PUT",
                f"/policies/{policy_id}",
                expected_status=200,
                json_body=policy_request(plan),
            )
        except NotFoundError as e:
            raise NotFoundError(
                body=e.body,
                message=(
                    f"policy with ID {policy_id} not found. "
                    f"It may have been deleted outside of pzctl"
                ),
            ) from e

        updated = policy_to_state(decode(PolicyDocument, data))
        updated["id"] = policy_id
        return updated

    async def delete(self, state: Dict[str, Any]) -> None:
        logger.debug(f"Deleting policy: {state['id']}")
        await self.provider.request(
            "DELETE", f"/policies/{state['id']}", expected_status=204
        )

    async def import_state(self, resource_id: str) -> Dict[str, Any]:
        state = await self.read({"id": resource_id})
        if state is None:
            raise NotFoundError(message=f"Unable to read policy {resource_id}")
        return state

    async def list_policies(
        self, namespace_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List policies as summaries of id, name and enforced."""
        params = None
        if namespace_id:
            params = {"namespaceId": namespace_id, "includeDescendants": "true"}

        data = await self.provider.request(
            "GET", "/policies", expected_status=200, params=params
        )
        policies = [decode(PolicyDocument, item) for item in data or []]
        return [
            {"id": p.id, "name": p.name, "enforced": p.enforced} for p in policies
        ]
