"""
Provider Session - Authenticated access to the Pomerium Zero API.

Exchanges the long-lived API token for a short-lived bearer token,
resolves the organization identifier, and hands out a single request
helper that every resource handler and data source shares.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from config import DEFAULT_API_URL
from errors import (
    APIError,
    AuthenticationError,
    NotFoundError,
    OrganizationLookupError,
    ProviderConfigurationError,
    ProviderError,
)
from models import Organization, TokenResponse

logger = logging.getLogger(__name__)

PROVIDER_TYPE_NAME = "pomeriumzero"


class ProviderSession:
    """
    Holds the bearer token and organization ID for one pzctl run.

    Each request opens its own aiohttp session with the configured timeout.
    Requests are issued one at a time; there are no retries.
    """

    def __init__(self, api_url: str = DEFAULT_API_URL, timeout: int = 10):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.token: Optional[str] = None
        self.organization_id: Optional[str] = None

    @property
    def token_endpoint(self) -> str:
        return f"{self.api_url}/token"

    @property
    def organizations_endpoint(self) -> str:
        return f"{self.api_url}/organizations"

    @property
    def configured(self) -> bool:
        return bool(self.token and self.organization_id)

    async def configure(self, api_token: Optional[str]) -> None:
        """
        Authenticate and resolve the organization.

        Args:
            api_token: The Pomerium Zero API token.

        Raises:
            ProviderConfigurationError: If no token was given.
            AuthenticationError: If the token exchange fails.
            OrganizationLookupError: If the organization cannot be resolved.
        """
        logger.info("Starting provider configuration")

        if not api_token:
            raise ProviderConfigurationError(
                "The API token is required to authenticate with Pomerium Zero."
            )

        self.token = await self._get_token(api_token)
        logger.info("Token obtained successfully")

        self.organization_id = await self._get_organization_id()
        logger.info(f"Organization ID obtained successfully: {self.organization_id}")

    async def _get_token(self, api_token: str) -> str:
        """Exchange the API token for a bearer token."""
        logger.debug("Sending request to token endpoint")
        try:
            status, body = await self._send(
                "POST",
                self.token_endpoint,
                headers={"Content-Type": "application/json"},
                json_body={"refreshToken": api_token},
            )
        except ProviderError as e:
            raise AuthenticationError(f"Unable to authenticate: {e.message}") from e

        if status != 200:
            logger.error(f"Unexpected status code from token endpoint: {status}")
            raise AuthenticationError(f"unexpected status code: {status}")

        try:
            return TokenResponse.model_validate(json.loads(body)).id_token
        except (json.JSONDecodeError, ValidationError) as e:
            raise AuthenticationError(f"error decoding response: {e}") from e

    async def _get_organization_id(self) -> str:
        """Look up the single organization the token belongs to."""
        logger.debug("Fetching organization ID")
        try:
            status, body = await self._send(
                "GET", self.organizations_endpoint, headers=self._auth_headers()
            )
        except ProviderError as e:
            raise OrganizationLookupError(
                f"Unable to fetch organization ID: {e.message}"
            ) from e

        if status != 200:
            logger.error(f"Unexpected status code from organizations: {status}")
            raise OrganizationLookupError(f"unexpected status code: {status}")

        try:
            organizations = [Organization.model_validate(o) for o in json.loads(body)]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise OrganizationLookupError(f"error decoding response: {e}") from e

        if len(organizations) != 1:
            raise OrganizationLookupError("unexpected number of organizations returned")

        return organizations[0].id

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        json_body: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        """Send one HTTP request and return (status, body text)."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        kwargs: Dict[str, Any] = {"headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, **kwargs) as response:
                    body = await response.text()
                    logger.debug(f"{method} {url} -> {response.status}")
                    return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error making request: {method} {url}: {e}")
            raise ProviderError(f"error making request: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        expected_status: int,
        json_body: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Call an organization-scoped endpoint.

        Args:
            method: HTTP method.
            path: Path below /organizations/{id}, e.g. "/routes".
            expected_status: The only status code treated as success.
            json_body: Optional request body.
            params: Optional query parameters.

        Returns:
            The decoded JSON response, or None for an empty body.

        Raises:
            ProviderConfigurationError: If configure() has not run.
            NotFoundError: On 404.
            APIError: On any other unexpected status.
        """
        if not self.configured:
            raise ProviderConfigurationError(
                "Provider is not configured. Call configure() first."
            )

        url = f"{self.organizations_endpoint}/{self.organization_id}{path}"
        status, body = await self._send(
            method, url, headers=self._auth_headers(), json_body=json_body, params=params
        )

        if status == expected_status:
            if not body:
                return None
            try:
                return json.loads(body)
            except ValueError as e:
                raise ProviderError(f"error decoding response: {e}") from e

        if status == 404:
            raise NotFoundError(body)
        raise APIError(status, body)
