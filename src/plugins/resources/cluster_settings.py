"""
Cluster settings resource handler.

Manages the settings document of a Pomerium Zero cluster: network
address, cookie policy, timeouts, identity-provider credentials and
tracing. The document lives at /clusters/{id}/settings, where id is the
cluster ID (also the cluster's namespace ID).
"""

import logging
from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel

from errors import NotFoundError
from models import ClusterSettingsDocument, decode
from plugins.resources.base import ResourcePlugin

logger = logging.getLogger(__name__)

# Always sent as plain values
STRING_FIELDS = [
    "address",
    "cookie_expire",
    "cookie_name",
    "default_upstream_timeout",
    "dns_lookup_family",
    "log_level",
    "timeout_idle",
    "timeout_read",
    "timeout_write",
]
BOOL_FIELDS = [
    "auto_apply_changesets",
    "cookie_http_only",
    "pass_identity_headers",
    "skip_xff_append",
]
# Empty string from the API means "not set"
NULLABLE_STRING_FIELDS = [
    "authenticate_service_url",
    "identity_provider",
    "identity_provider_client_id",
    "identity_provider_url",
    "proxy_log_level",
]
IDP_FIELDS = [
    "identity_provider",
    "identity_provider_client_id",
    "identity_provider_client_secret",
    "identity_provider_url",
    "authenticate_service_url",
]
# Order of attributes in request bodies
ATTRIBUTES = [
    "address",
    "authenticate_service_url",
    "auto_apply_changesets",
    "cookie_expire",
    "cookie_http_only",
    "cookie_name",
    "default_upstream_timeout",
    "dns_lookup_family",
    "identity_provider",
    "identity_provider_client_id",
    "identity_provider_client_secret",
    "identity_provider_url",
    "log_level",
    "pass_identity_headers",
    "proxy_log_level",
    "skip_xff_append",
    "timeout_idle",
    "timeout_read",
    "timeout_write",
    "tracing_sample_rate",
    "codec_type",
]


def _optional(type_name: str, description: str, **extra: Any) -> Dict[str, Any]:
    prop = {"type": [type_name, "null"], "description": description}
    prop.update(extra)
    return prop


SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["id"],
    "properties": {
        "id": {
            "type": "string",
            "minLength": 1,
            "description": "The cluster ID these settings belong to.",
        },
        "address": _optional(
            "string", "Address of the cluster, typically ':443' for HTTPS traffic."
        ),
        "authenticate_service_url": _optional(
            "string", "URL of the authenticate service (custom IdP only)."
        ),
        "auto_apply_changesets": _optional(
            "boolean", "Whether to automatically apply changesets."
        ),
        "cookie_expire": _optional("string", "Expiration time for cookies."),
        "cookie_http_only": _optional("boolean", "Whether cookies are HTTP only."),
        "cookie_name": _optional("string", "Name of the authentication cookie."),
        "default_upstream_timeout": _optional(
            "string", "Default timeout for upstream requests."
        ),
        "dns_lookup_family": _optional(
            "string", "DNS lookup family to use (e.g. 'V4_ONLY')."
        ),
        "identity_provider": _optional(
            "string", "Identity provider; Hosted Authenticate is used when unset."
        ),
        "identity_provider_client_id": _optional(
            "string", "Client ID for the identity provider."
        ),
        "identity_provider_client_secret": _optional(
            "string", "Client secret for the identity provider.", **{"x-sensitive": True}
        ),
        "identity_provider_url": _optional("string", "URL of the identity provider."),
        "log_level": _optional("string", "Log level of the cluster."),
        "pass_identity_headers": _optional(
            "boolean", "Whether to pass identity headers upstream."
        ),
        "proxy_log_level": _optional("string", "Log level of the proxy component."),
        "skip_xff_append": _optional(
            "boolean", "Whether to skip appending X-Forwarded-For headers."
        ),
        "timeout_idle": _optional("string", "Idle timeout for connections."),
        "timeout_read": _optional("string", "Read timeout for connections."),
        "timeout_write": _optional("string", "Write timeout for connections."),
        "tracing_sample_rate": _optional(
            "number", "Sampling rate for tracing.", minimum=0, maximum=1
        ),
        "codec_type": _optional("string", "HTTP codec type (e.g. 'auto', 'http1')."),
    },
}


def create_settings_request(plan: Dict[str, Any]) -> Dict[str, Any]:
    """Build the POST body: the ID plus every non-empty attribute."""
    body: Dict[str, Any] = {"id": plan["id"]}
    for attribute in ATTRIBUTES:
        value = plan.get(attribute)
        if value is None or value == "" or value is False or value == 0:
            continue
        body[to_camel(attribute)] = value
    return body


def update_settings_request(plan: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the PUT body.

    passIdentityHeaders, skipXffAppend and codecType are always sent.
    Nullable attributes are only sent when set.
    """
    body: Dict[str, Any] = {}
    for attribute in ATTRIBUTES:
        value = plan.get(attribute)

        if attribute in ("pass_identity_headers", "skip_xff_append"):
            body[to_camel(attribute)] = bool(value)
        elif attribute == "codec_type":
            body["codecType"] = value or ""
        elif attribute == "identity_provider_client_secret":
            if value is not None:
                body["identityProviderClientSecret"] = value
        elif value is None or value == "" or value is False or value == 0:
            continue
        else:
            body[to_camel(attribute)] = value
    return body


def settings_to_state(
    settings: ClusterSettingsDocument, prior: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Map an API settings document to state attributes.

    The API returns its own document ID; the state always keeps the
    cluster ID from ``prior``. codec_type is not returned by the API and
    is carried over from ``prior``.
    """
    state: Dict[str, Any] = {"id": prior["id"]}

    for attribute in STRING_FIELDS + BOOL_FIELDS:
        state[attribute] = getattr(settings, attribute)

    for attribute in NULLABLE_STRING_FIELDS:
        state[attribute] = getattr(settings, attribute) or None

    state["identity_provider_client_secret"] = settings.identity_provider_client_secret
    state["tracing_sample_rate"] = settings.tracing_sample_rate
    state["codec_type"] = prior.get("codec_type")
    return state


class ClusterSettingsResource(ResourcePlugin):
    """Manages settings for a Pomerium Zero cluster."""

    @property
    def name(self) -> str:
        return "pomeriumzero_cluster_settings"

    @property
    def schema(self) -> Dict[str, Any]:
        return SCHEMA

    @property
    def description(self) -> str:
        return (
            "Manages settings for a Pomerium Zero Cluster: authentication, "
            "timeouts, and logging."
        )

    def normalize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        config = dict(config)
        if config.get("proxy_log_level") == "":
            config["proxy_log_level"] = None
        return config

    def validate_config(self, config: Dict[str, Any]) -> tuple[bool, Optional[str]]:
        """All identity-provider fields are set together or not at all."""
        config = self.normalize_config(config)
        set_fields = [f for f in IDP_FIELDS if config.get(f) is not None]

        if set_fields and len(set_fields) != len(IDP_FIELDS):
            return False, (
                "Invalid Identity Provider Configuration: when configuring a custom "
                "identity provider, all related fields (identity_provider, "
                "identity_provider_client_id, identity_provider_client_secret, "
                "identity_provider_url, authenticate_service_url) must be provided."
            )
        return True, None

    def _path(self, cluster_id: str) -> str:
        return f"/clusters/{cluster_id}/settings"

    async def create(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        plan = self.normalize_config(plan)
        logger.debug(f"Creating cluster settings for cluster: {plan['id']}")

        await self.provider.request(
            "POST",
            self._path(plan["id"]),
            expected_status=201,
            json_body=create_settings_request(plan),
        )

        state = {attribute: plan.get(attribute) for attribute in ATTRIBUTES}
        state["id"] = plan["id"]
        return state

    async def read(self, state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        cluster_id = state["id"]
        logger.debug(f"Reading cluster settings for cluster: {cluster_id}")

        try:
            data = await self.provider.request(
                "GET", self._path(cluster_id), expected_status=200
            )
        except NotFoundError:
            logger.info(f"Cluster settings for {cluster_id} not found")
            return None

        return settings_to_state(decode(ClusterSettingsDocument, data), state)

    async def update(
        self, plan: Dict[str, Any], state: Dict[str, Any]
    ) -> Dict[str, Any]:
        plan = self.normalize_config(plan)
        cluster_id = state["id"]
        logger.debug(f"Updating cluster settings for cluster: {cluster_id}")

        data = await self.provider.request(
            "PUT",
            self._path(cluster_id),
            expected_status=200,
            json_body=update_settings_request(plan),
        )

        prior = dict(plan, id=cluster_id)
        return settings_to_state(decode(ClusterSettingsDocument, data), prior)

    async def delete(self, state: Dict[str, Any]) -> None:
        logger.debug(f"Deleting cluster settings for cluster: {state['id']}")
        await self.provider.request(
            "DELETE", self._path(state["id"]), expected_status=204
        )

    async def import_state(self, resource_id: str) -> Dict[str, Any]:
        state = await self.read({"id": resource_id})
        if state is None:
            raise NotFoundError(
                message=f"Unable to read cluster settings for {resource_id}"
            )
        return state
