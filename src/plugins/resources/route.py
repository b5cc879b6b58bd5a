"""
Route resource handler.

A route maps a source URL to one or more upstream URLs, with optional
path prefix matching/rewriting, protocol flags, and the IDs of the
policies applied to requests on the route.
"""

import logging
from typing import Any, Dict, Optional

from errors import NotFoundError, ProviderError
from plugins.resources.base import ResourcePlugin

logger = logging.getLogger(__name__)

# attribute name -> API field name, for boolean flags
BOOL_FLAGS = {
    "allow_spdy": "allowSpdy",
    "allow_websockets": "allowWebsockets",
    "enable_google_cloud_serverless_authentication": (
        "enableGoogleCloudServerlessAuthentication"
    ),
    "pass_identity_headers": "passIdentityHeaders",
    "preserve_host_header": "preserveHostHeader",
    "show_error_details": "showErrorDetails",
    "tls_skip_verify": "tlsSkipVerify",
    "tls_upstream_allow_renegotiation": "tlsUpstreamAllowRenegotiation",
}

# Flags sent on every request; the rest only when set
ALWAYS_SENT_FLAGS = [
    "allow_spdy",
    "enable_google_cloud_serverless_authentication",
    "show_error_details",
    "tls_skip_verify",
    "tls_upstream_allow_renegotiation",
]

OPTIONAL_FIELDS = {
    "to": "to",
    "allow_websockets": "allowWebsockets",
    "pass_identity_headers": "passIdentityHeaders",
    "preserve_host_header": "preserveHostHeader",
    "policy_ids": "policyIds",
    "prefix": "prefix",
    "prefix_rewrite": "prefixRewrite",
}

STRING_LIST = {"type": "array", "items": {"type": "string"}}


def _flag(description: str, default: Optional[bool] = None) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": ["boolean", "null"], "description": description}
    if default is not None:
        prop["default"] = default
    return prop


SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["name", "namespace_id", "from", "to"],
    "properties": {
        "name": {
            "type": "string",
            "minLength": 1,
            "description": "Name of the route. Must be unique within the namespace.",
        },
        "namespace_id": {
            "type": "string",
            "minLength": 1,
            "description": "ID of the namespace the route is created in.",
        },
        "from": {
            "type": "string",
            "minLength": 1,
            "description": "Source URL Pomerium listens on.",
        },
        "to": dict(
            STRING_LIST,
            minItems=1,
            description="Upstream URLs requests are forwarded to.",
        ),
        "allow_spdy": _flag("Allow the SPDY protocol.", False),
        "allow_websockets": _flag("Allow WebSocket connections.", False),
        "enable_google_cloud_serverless_authentication": _flag(
            "Enable Google Cloud Serverless Authentication.", False
        ),
        "pass_identity_headers": _flag("Pass identity headers upstream."),
        "preserve_host_header": _flag("Preserve the original Host header.", False),
        "show_error_details": _flag("Show detailed error messages.", True),
        "tls_skip_verify": _flag("Skip TLS verification of upstreams.", False),
        "tls_upstream_allow_renegotiation": _flag(
            "Allow TLS renegotiation with upstreams.", False
        ),
        "policy_ids": dict(
            STRING_LIST,
            type=["array", "null"],
            description="IDs of the policies applied to this route.",
        ),
        "prefix": {
            "type": ["string", "null"],
            "description": "Only match requests with this path prefix.",
        },
        "prefix_rewrite": {
            "type": ["string", "null"],
            "description": "Rewrite the matched prefix before forwarding.",
        },
        "kubernetes_service_account_token": {
            "type": ["string", "null"],
            "description": "Kubernetes service account token for upstream auth.",
            "x-sensitive": True,
        },
    },
}


def route_request(plan: Dict[str, Any]) -> Dict[str, Any]:
    """Build the request body shared by create and update."""
    body: Dict[str, Any] = {
        "name": plan.get("name") or "",
        "namespaceId": plan.get("namespace_id") or "",
        "from": plan.get("from") or "",
        "kubernetesServiceAccountToken": (
            plan.get("kubernetes_service_account_token") or ""
        ),
    }
    for attribute in ALWAYS_SENT_FLAGS:
        body[BOOL_FLAGS[attribute]] = bool(plan.get(attribute))

    for attribute, field_name in OPTIONAL_FIELDS.items():
        value = plan.get(attribute)
        if value is not None:
            body[field_name] = value
    return body


def _as_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _as_str_list(value: Any) -> Optional[list]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return None


def route_response_to_state(
    data: Any, prior: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Map an API route document to state attributes.

    Booleans become None when absent or not booleans. A service account
    token the API does not echo back keeps its value from ``prior``.
    """
    prior = prior or {}
    if not isinstance(data, dict) or not isinstance(data.get("id"), str):
        raise ProviderError(f"error decoding response: unexpected route document {data!r}")

    state: Dict[str, Any] = {
        "id": data["id"],
        "name": data.get("name") if isinstance(data.get("name"), str) else None,
        "namespace_id": (
            data.get("namespaceId") if isinstance(data.get("namespaceId"), str) else None
        ),
        "from": data.get("from") if isinstance(data.get("from"), str) else None,
        "to": _as_str_list(data.get("to")),
    }

    for attribute, field_name in BOOL_FLAGS.items():
        state[attribute] = _as_bool(data.get(field_name))

    state["policy_ids"] = _as_str_list(data.get("policyIds"))

    for attribute, field_name in (("prefix", "prefix"), ("prefix_rewrite", "prefixRewrite")):
        value = data.get(field_name)
        state[attribute] = value if isinstance(value, str) else None

    token = data.get("kubernetesServiceAccountToken")
    if isinstance(token, str) and token:
        state["kubernetes_service_account_token"] = token
    else:
        state["kubernetes_service_account_token"] = prior.get(
            "kubernetes_service_account_token"
        )
    return state


class RouteResource(ResourcePlugin):
    """Manages a route in Pomerium Zero."""

    @property
    def name(self) -> str:
        return "pomeriumzero_route"

    @property
    def schema(self) -> Dict[str, Any]:
        return SCHEMA

    @property
    def description(self) -> str:
        return "Manages a route resource in Pomerium Zero."

    async def create(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"Creating route: {plan.get('name')}")
        data = await self.provider.request(
            "POST", "/routes", expected_status=201, json_body=route_request(plan)
        )
        return route_response_to_state(data, plan)

    async def read(self, state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        route_id = state["id"]
        try:
            data = await self.provider.request(
                "GET", f"/routes/{route_id}", expected_status=200
            )
        except NotFoundError:
            logger.info(f"Route {route_id} not found")
            return None
        return route_response_to_state(data, state)

    async def update(
        self, plan: Dict[str, Any], state: Dict[str, Any]
    ) -> Dict[str, Any]:
        route_id = state["id"]
        logger.debug(f"Updating route: {route_id}")
        data = await self.provider.request(
            "PUT", f"/routes/{route_id}", expected_status=200, json_body=route_request(plan)
        )
        return route_response_to_state(data, plan)

    async def delete(self, state: Dict[str, Any]) -> None:
        logger.debug(f"Deleting route: {state['id']}")
        await self.provider.request(
            "DELETE", f"/routes/{state['id']}", expected_status=204
        )

    async def import_state(self, resource_id: str) -> Dict[str, Any]:
        state = await self.read({"id": resource_id})
        if state is None:
            raise NotFoundError(message=f"Unable to read route {resource_id}")
        return state
