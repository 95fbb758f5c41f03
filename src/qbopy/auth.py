"""OAuth2 bearer credentials and token refresh for QuickBooks Online."""

from __future__ import annotations

import asyncio
import base64
import logging
import threading
from datetime import datetime, timedelta, timezone

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from qbopy.client_base import parse_error_response
from qbopy.config import ClientConfig
from qbopy.exceptions import QBODecodeError, QBOInvalidClientError, QBOTransportError
from qbopy.models import TokenResponse
from qbopy.transport import AsyncTransport, Transport

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current wall-clock time, timezone aware."""
    return datetime.now(timezone.utc)


class Credential(BaseModel):
    """Immutable snapshot of the bearer token a request is signed with."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    expires_at: datetime
    refresh_token: str | None = Field(default=None, repr=False)

    @classmethod
    def with_placeholder_expiry(
        cls, access_token: str, refresh_token: str | None = None
    ) -> Credential:
        """Credential whose real lifetime is not known yet."""
        return cls(
            access_token=access_token,
            expires_at=utcnow() + ClientConfig.PLACEHOLDER_TTL,
            refresh_token=refresh_token,
        )


class BaseCredentialState:
    """Holds the current credential and swaps it as a whole on refresh.

    Readers take a snapshot through ``current``; a refresh replaces the
    snapshot in a single assignment, so no reader ever sees a new token
    paired with a stale expiry or refresh token.
    """

    def __init__(self, credential: Credential) -> None:
        self._credential = credential

    @property
    def current(self) -> Credential:
        return self._credential

    @property
    def access_token(self) -> str:
        return self._credential.access_token

    @property
    def refresh_token(self) -> str | None:
        return self._credential.refresh_token

    @property
    def expires_at(self) -> datetime:
        return self._credential.expires_at

    @property
    def can_refresh(self) -> bool:
        return self._credential.refresh_token is not None

    def is_expired(self) -> bool:
        """Whether the access token has passed its expiry instant."""
        return utcnow() >= self._credential.expires_at

    def replace(self, credential: Credential) -> None:
        """Swap in a credential obtained outside the refresh flow."""
        self._credential = credential

    def _build_refresh_request(
        self, client_id: str, client_secret: str, token_endpoint: str
    ) -> httpx.Request:
        refresh_token = self._credential.refresh_token
        if refresh_token is None:
            raise ValueError("Cannot refresh access token without a refresh token")
        basic = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
        return httpx.Request(
            "POST",
            token_endpoint,
            headers={
                "Authorization": f"Basic {basic}",
                "Accept": "application/json",
            },
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    def _apply_token_response(self, response: httpx.Response) -> Credential:
        if not response.is_success:
            raise parse_error_response(
                response,
                error_class=QBOInvalidClientError,
                prefix="Failed to refresh OAuth2 token",
            )
        try:
            token = TokenResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise QBODecodeError(
                f"Unexpected token endpoint response: {e}",
                status_code=response.status_code,
            ) from e

        issued_at = utcnow()
        credential = Credential(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=issued_at + timedelta(seconds=token.expires_in),
        )
        self._credential = credential
        logger.info("Refreshed OAuth2 access token, expires at %s", credential.expires_at)
        return credential


class CredentialState(BaseCredentialState):
    """Credential holder for the synchronous client."""

    def __init__(self, credential: Credential) -> None:
        super().__init__(credential)
        self._refresh_lock = threading.Lock()

    def refresh(
        self,
        client_id: str,
        client_secret: str,
        transport: Transport,
        token_endpoint: str = ClientConfig.TOKEN_ENDPOINT,
    ) -> Credential:
        """Exchange the refresh token for a new access token.

        Requests already in flight keep the token they were built with.

        Args:
            client_id: OAuth2 client ID
            client_secret: OAuth2 client secret
            transport: Transport used to reach the token endpoint
            token_endpoint: Token endpoint URL from the discovery document

        Returns:
            The new credential

        Raises:
            QBOInvalidClientError: If the token endpoint rejects the request
            QBOTransportError: If the token endpoint could not be reached
            QBODecodeError: If the token response is malformed
        """
        with self._refresh_lock:
            return self._refresh_locked(client_id, client_secret, transport, token_endpoint)

    def refresh_if_expired(
        self,
        client_id: str,
        client_secret: str,
        transport: Transport,
        token_endpoint: str = ClientConfig.TOKEN_ENDPOINT,
    ) -> Credential | None:
        """Refresh only if the token is still expired once the lock is held.

        Callers that queued behind a refresh find the new token already in
        place and return without contacting the token endpoint.

        Returns:
            The new credential, or None if no refresh was needed
        """
        with self._refresh_lock:
            if not self.is_expired():
                return None
            return self._refresh_locked(client_id, client_secret, transport, token_endpoint)

    def _refresh_locked(
        self,
        client_id: str,
        client_secret: str,
        transport: Transport,
        token_endpoint: str,
    ) -> Credential:
        request = self._build_refresh_request(client_id, client_secret, token_endpoint)
        try:
            response = transport.send(request)
        except httpx.TransportError as e:
            raise QBOTransportError(f"Failed to refresh OAuth2 token: {e}") from e
        return self._apply_token_response(response)


class AsyncCredentialState(BaseCredentialState):
    """Credential holder for the async client."""

    def __init__(self, credential: Credential) -> None:
        super().__init__(credential)
        self._refresh_lock = asyncio.Lock()

    async def refresh(
        self,
        client_id: str,
        client_secret: str,
        transport: AsyncTransport,
        token_endpoint: str = ClientConfig.TOKEN_ENDPOINT,
    ) -> Credential:
        """Exchange the refresh token for a new access token (async).

        See CredentialState.refresh.
        """
        async with self._refresh_lock:
            return await self._refresh_locked(
                client_id, client_secret, transport, token_endpoint
            )

    async def refresh_if_expired(
        self,
        client_id: str,
        client_secret: str,
        transport: AsyncTransport,
        token_endpoint: str = ClientConfig.TOKEN_ENDPOINT,
    ) -> Credential | None:
        """Refresh only if the token is still expired once the lock is held (async).

        See CredentialState.refresh_if_expired.
        """
        async with self._refresh_lock:
            if not self.is_expired():
                return None
            return await self._refresh_locked(
                client_id, client_secret, transport, token_endpoint
            )

    async def _refresh_locked(
        self,
        client_id: str,
        client_secret: str,
        transport: AsyncTransport,
        token_endpoint: str,
    ) -> Credential:
        request = self._build_refresh_request(client_id, client_secret, token_endpoint)
        try:
            response = await transport.send(request)
        except httpx.TransportError as e:
            raise QBOTransportError(f"Failed to refresh OAuth2 token: {e}") from e
        return self._apply_token_response(response)
