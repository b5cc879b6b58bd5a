"""
Wire models - JSON documents exchanged with the Pomerium Zero API.

The API speaks camelCase JSON; these models expose snake_case attributes
and accept either spelling on input.
"""

from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from errors import ProviderError


class WireModel(BaseModel):
    """Base model for API documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Dump to a camelCase JSON-compatible dict."""
        return self.model_dump(by_alias=True, mode="json")


T = TypeVar("T", bound=WireModel)


def decode(model: Type[T], data: Any) -> T:
    """
    Parse an API response body into ``model``.

    Raises:
        ProviderError: If the body does not match the model.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProviderError(f"error decoding response: {e}") from e


def _null_to_empty(value: Any) -> Any:
    return "" if value is None else value


class TokenResponse(WireModel):
    """Response of the token exchange endpoint."""

    id_token: str


class Organization(WireModel):
    """An organization the API token has access to."""

    id: str
    name: str = ""


class Cluster(WireModel):
    """A Pomerium Zero cluster."""

    id: str = ""
    name: str = ""
    namespace_id: str = ""
    domain: str = ""
    fqdn: str = ""
    auto_detect_ip_address: str = ""
    created_at: str = ""
    updated_at: str = ""

    @field_validator(
        "id",
        "name",
        "namespace_id",
        "domain",
        "fqdn",
        "auto_detect_ip_address",
        "created_at",
        "updated_at",
        mode="before",
    )
    @classmethod
    def null_strings(cls, v: Any) -> Any:
        return _null_to_empty(v)


class RouteRef(WireModel):
    """A route attached to a policy."""

    id: str = ""
    name: str = ""


class PolicyDocument(WireModel):
    """A policy as returned by the API."""

    id: str = ""
    name: str = ""
    description: str = ""
    enforced: bool = False
    explanation: str = ""
    namespace_id: str = ""
    ppl: Any = None
    remediation: str = ""
    routes: List[RouteRef] = Field(default_factory=list)

    @field_validator(
        "id",
        "name",
        "description",
        "explanation",
        "namespace_id",
        "remediation",
        mode="before",
    )
    @classmethod
    def null_strings(cls, v: Any) -> Any:
        return _null_to_empty(v)

    @field_validator("routes", mode="before")
    @classmethod
    def null_routes(cls, v: Any) -> Any:
        return [] if v is None else v


class ClusterSettingsDocument(WireModel):
    """Cluster settings as returned by the API."""

    id: str = ""
    address: str = ""
    authenticate_service_url: str = ""
    auto_apply_changesets: bool = False
    cookie_expire: str = ""
    cookie_http_only: bool = False
    cookie_name: str = ""
    default_upstream_timeout: str = ""
    dns_lookup_family: str = ""
    identity_provider: str = ""
    identity_provider_client_id: str = ""
    identity_provider_client_secret: Optional[str] = None
    identity_provider_url: str = ""
    log_level: str = ""
    pass_identity_headers: bool = False
    proxy_log_level: str = ""
    skip_xff_append: bool = False
    timeout_idle: str = ""
    timeout_read: str = ""
    timeout_write: str = ""
    tracing_sample_rate: float = 0.0

    @field_validator(
        "id",
        "address",
        "authenticate_service_url",
        "cookie_expire",
        "cookie_name",
        "default_upstream_timeout",
        "dns_lookup_family",
        "identity_provider",
        "identity_provider_client_id",
        "identity_provider_url",
        "log_level",
        "proxy_log_level",
        "timeout_idle",
        "timeout_read",
        "timeout_write",
        mode="before",
    )
    @classmethod
    def null_strings(cls, v: Any) -> Any:
        return _null_to_empty(v)

    @field_validator(
        "auto_apply_changesets",
        "cookie_http_only",
        "pass_identity_headers",
        "skip_xff_append",
        mode="before",
    )
    @classmethod
    def null_bools(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("tracing_sample_rate", mode="before")
    @classmethod
    def null_rate(cls, v: Any) -> Any:
        return 0.0 if v is None else v
