"""TrustTax API client.

Async client for the upstream profile endpoints the form core consumes.

Usage:
    from portal.api_client import PortalApiClient

    async with PortalApiClient(token="eyJ...") as client:
        me = await client.get_me()
        ssn = await client.get_decrypted_ssn()

Decrypt endpoints are only called on an explicit user reveal; their results
are never logged.
"""

import logging
from typing import Any, Mapping, Optional, Protocol

import httpx

from portal.config import settings
from portal.profile.schemas import (
    DriverLicenseValues,
    PassportValues,
    ServerProfile,
    UpdateProfilePayload,
)

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    """Base exception for client errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class AuthenticationError(ApiClientError):
    """401 from the API, or no token to send."""


class NotFoundError(ApiClientError):
    """404 from the API."""


class NetworkError(ApiClientError):
    """No response from the API (connection refused, timeout, ...)."""


class ProfileApi(Protocol):
    """The operations ProfileFormReconciler needs from the API."""

    async def get_me(self) -> ServerProfile: ...

    async def update_profile(self, payload: Mapping[str, Any]) -> ServerProfile: ...

    async def get_decrypted_ssn(self) -> Optional[str]: ...

    async def get_decrypted_driver_license(self) -> Optional[DriverLicenseValues]: ...

    async def get_decrypted_passport(self) -> Optional[PassportValues]: ...


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    """Pull the server's message out of an error body, verbatim."""
    try:
        data = response.json()
    except ValueError:
        return response.text or "Request failed", None

    message: Any = None
    if isinstance(data, dict):
        envelope = data.get("error")
        if isinstance(envelope, dict):
            message = envelope.get("message")
        if message is None:
            message = data.get("message")
    if isinstance(message, list):
        message = "; ".join(str(m) for m in message)
    return str(message) if message else "Request failed", data


class PortalApiClient:
    """Async client for the TrustTax profile API.

    Attributes:
        base_url: Base URL of the TrustTax API
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the API (defaults to settings.api_base_url)
            token: JWT bearer token of the signed-in user
            timeout: Request timeout in seconds (defaults to settings.request_timeout)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PortalApiClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise AuthenticationError("No authentication token found", status_code=401)
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._token}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
    ) -> dict:
        """Make an API request."""
        try:
            response = await self._client.request(
                method=method,
                url=path,
                headers=self._headers(),
                json=json,
            )
        except httpx.TransportError as exc:
            logger.warning("API transport failure %s %s error=%s", method, path, type(exc).__name__)
            raise NetworkError(
                "Unable to connect to server. Please check your connection."
            ) from exc

        if response.status_code >= 400:
            message, details = _error_message(response)
            logger.info("API error %s %s status=%d", method, path, response.status_code)
            if response.status_code == 401:
                raise AuthenticationError(message, status_code=401, details=details)
            if response.status_code == 404:
                raise NotFoundError(message, status_code=404, details=details)
            raise ApiClientError(message, status_code=response.status_code, details=details)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # Profile
    async def get_me(self) -> ServerProfile:
        """Fetch the signed-in user's profile (masked identifiers only)."""
        data = await self._request("GET", "/auth/me")
        return ServerProfile.model_validate(data)

    async def update_profile(self, payload: Mapping[str, Any]) -> ServerProfile:
        """Send a minimal-diff update; keys not present stay unchanged server-side."""
        body = UpdateProfilePayload.model_validate(dict(payload)).to_wire()
        data = await self._request("PATCH", "/auth/profile", json=body)
        logger.info("Profile updated keys=%s", sorted(body))
        return ServerProfile.model_validate(data)

    # Decrypt-on-demand
    async def get_decrypted_ssn(self) -> Optional[str]:
        data = await self._request("GET", "/auth/profile/decrypt-ssn")
        return data.get("ssn")

    async def get_decrypted_driver_license(self) -> Optional[DriverLicenseValues]:
        data = await self._request("GET", "/auth/profile/decrypt-driver-license")
        raw = data.get("driverLicense")
        if raw is None:
            return None
        return DriverLicenseValues.model_validate(raw)

    async def get_decrypted_passport(self) -> Optional[PassportValues]:
        data = await self._request("GET", "/auth/profile/decrypt-passport")
        raw = data.get("passport")
        if raw is None:
            return None
        return PassportValues.model_validate(raw)
