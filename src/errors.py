"""
Error types raised by the provider session, resource handlers and controller.
"""

from typing import Optional


class ProviderError(Exception):
    """Base error for anything that goes wrong talking to Pomerium Zero."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderConfigurationError(ProviderError):
    """Raised when the provider is missing configuration or was never configured."""


class AuthenticationError(ProviderError):
    """Raised when the API token cannot be exchanged for a bearer token."""


class OrganizationLookupError(ProviderError):
    """Raised when the organization identifier cannot be resolved."""


class APIError(ProviderError):
    """Raised when the API answers with an unexpected status code."""

    def __init__(self, status_code: int, body: str = "", message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(
            message
            or f"unexpected status code: {status_code}. Response body: {body}"
        )


class NotFoundError(APIError):
    """Raised when the API answers 404 for a resource."""

    def __init__(self, body: str = "", message: Optional[str] = None):
        super().__init__(404, body, message)


class LookupFailedError(ProviderError):
    """Raised when a data source lookup has no match."""


class ConfigValidationError(Exception):
    """Raised when a resource configuration is invalid."""

    def __init__(self, address: str, message: str):
        self.address = address
        self.message = message
        super().__init__(f"{address}: {message}")


class ManifestError(Exception):
    """Raised for malformed manifests (unknown types, bad references, cycles)."""


class StateError(Exception):
    """Raised when the state file cannot be read or written."""
