"""Synchronous QuickBooks Online API client."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import httpx

from qbopy._version import __version__
from qbopy.auth import Credential, CredentialState
from qbopy.batch import (
    BatchItemResult,
    BatchOperation,
    assign_batch_ids,
    build_batch_body,
    check_batch_size,
    parse_batch_response,
    reconcile,
)
from qbopy.client_base import (
    BaseQBContext,
    decode_response,
    entity_statement,
    parse_error_response,
    require_sync_fields,
    settings_from_env,
    unwrap_entity,
)
from qbopy.config import ClientConfig, Environment
from qbopy.exceptions import QBOTransportError
from qbopy.limiter import RateLimiter
from qbopy.models import DiscoveryDoc, QueryResponse
from qbopy.request import QueryPairs, build_request
from qbopy.transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fetch_discovery_doc(environment: Environment, transport: Transport) -> DiscoveryDoc:
    """Fetch the OpenID discovery document for an environment.

    Raises:
        QBOBadRequestError: If the provider answers with an error
        QBOTransportError: If the provider could not be reached
        QBODecodeError: If the document is malformed
    """
    request = httpx.Request(
        "GET", environment.discovery_url, headers={"Accept": "application/json"}
    )
    try:
        response = transport.send(request)
    except httpx.TransportError as e:
        raise QBOTransportError(f"Failed to fetch discovery document: {e}") from e
    if not response.is_success:
        raise parse_error_response(response)
    return decode_response(response, DiscoveryDoc)


class QBContext(BaseQBContext):
    """Shared state for talking to one QuickBooks Online company.

    Owns the credential and two independent rate limiters: one for regular
    calls and one for batch calls. Safe to share between threads.
    """

    def __init__(
        self,
        environment: Environment,
        company_id: str,
        access_token: str,
        *,
        refresh_token: str | None = None,
        credentials: CredentialState | None = None,
        qbo_limiter: RateLimiter | None = None,
        batch_limiter: RateLimiter | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the context.

        Args:
            environment: Sandbox or production
            company_id: QuickBooks company (realm) ID
            access_token: OAuth2 access token
            refresh_token: OAuth2 refresh token, needed to refresh
            credentials: Existing credential holder to share instead of
                building one from the tokens
            qbo_limiter: Existing regular-call limiter to share
            batch_limiter: Existing batch limiter to share
            **kwargs: discovery_doc, client_id, client_secret, auto_refresh,
                rate_limit, batch_rate_limit, reset_duration
        """
        super().__init__(environment, company_id, **kwargs)
        self.credentials = credentials or CredentialState(
            Credential.with_placeholder_expiry(access_token, refresh_token)
        )
        self.qbo_limiter = qbo_limiter or RateLimiter(self.rate_limit, self.reset_duration)
        self.batch_limiter = batch_limiter or RateLimiter(
            self.batch_rate_limit, self.reset_duration
        )

    @classmethod
    def new(
        cls,
        environment: Environment,
        company_id: str,
        access_token: str,
        transport: Transport,
        **kwargs: Any,
    ) -> QBContext:
        """Create a context, fetching the discovery document first."""
        discovery_doc = fetch_discovery_doc(environment, transport)
        return cls(
            environment, company_id, access_token, discovery_doc=discovery_doc, **kwargs
        )

    @classmethod
    def from_env(
        cls,
        transport: Transport,
        environment: Environment | None = None,
        **kwargs: Any,
    ) -> QBContext:
        """Create a context from environment variables.

        Loads a ``.env`` file if present, without overriding variables that
        are already set.

        Environment variables:
        - ``QB_COMPANY_ID`` and ``QB_ACCESS_TOKEN`` (required)
        - ``QB_REFRESH_TOKEN``, ``QB_CLIENT_ID``, ``QB_CLIENT_SECRET``
        - ``QB_ENVIRONMENT`` (``sandbox`` or ``production``)

        Raises:
            ValueError: If a required variable is missing
        """
        settings = settings_from_env(environment)
        settings.update(kwargs)
        return cls.new(transport=transport, **settings)

    @property
    def access_token(self) -> str:
        return self.credentials.access_token

    def is_expired(self) -> bool:
        """Whether the current access token has expired."""
        return self.credentials.is_expired()

    def with_access_token(self, access_token: str) -> QBContext:
        """Return a context using a different access token.

        The new context shares this context's rate limiters.
        """
        return QBContext(
            self.environment,
            self.company_id,
            access_token,
            refresh_token=self.credentials.refresh_token,
            qbo_limiter=self.qbo_limiter,
            batch_limiter=self.batch_limiter,
            **self._settings(),
        )

    def with_permission(self, fn: Callable[[QBContext], T], timeout: float | None = None) -> T:
        """Run ``fn`` holding a regular rate limit permit.

        The permit is released however ``fn`` exits.
        """
        with self.qbo_limiter.acquire(timeout):
            return fn(self)

    def with_batch_permission(
        self, fn: Callable[[QBContext], T], timeout: float | None = None
    ) -> T:
        """Run ``fn`` holding a batch rate limit permit.

        The permit is released however ``fn`` exits.
        """
        with self.batch_limiter.acquire(timeout):
            return fn(self)

    def refresh_access_token(
        self,
        transport: Transport,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> Credential:
        """Refresh the access token using the refresh token.

        Client credentials default to the ones the context was built with.
        Requests already in flight keep using the old token.

        Raises:
            QBOInvalidClientError: If the provider rejects the refresh
        """
        client_id, client_secret = self._client_credentials(client_id, client_secret)
        return self.credentials.refresh(
            client_id, client_secret, transport, self.token_endpoint
        )

    def ensure_fresh(self, transport: Transport) -> None:
        """Refresh an expired token first when auto refresh is on.

        Expiry is checked again under the refresh lock, so callers racing on
        the same expired token share a single refresh.
        """
        if self._should_refresh(self.credentials):
            client_id, client_secret = self._client_credentials(None, None)
            refreshed = self.credentials.refresh_if_expired(
                client_id, client_secret, transport, self.token_endpoint
            )
            if refreshed is not None:
                logger.info("Access token expired, refreshed before request")

    def check_authorized(self, transport: Transport) -> bool:
        """Check whether the current access token is accepted by the provider."""
        request = httpx.Request(
            "GET",
            self.environment.user_info_url,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            },
        )
        try:
            response = transport.send(request)
        except httpx.TransportError as e:
            raise QBOTransportError(f"Failed to check authorization: {e}") from e
        if not response.is_success:
            self._log_unauthorized(response)
        return response.is_success


def _send(
    context: QBContext,
    transport: Transport,
    method: str,
    path: str,
    body: Any,
    content_type: str,
    query: QueryPairs | None,
) -> httpx.Response:
    request = build_request(
        method,
        path,
        body,
        query,
        content_type,
        environment=context.environment,
        access_token=context.access_token,
    )
    try:
        response = transport.send(request)
    except httpx.TransportError as e:
        raise QBOTransportError(f"{method} {path} failed: {e}") from e
    if not response.is_success:
        raise parse_error_response(response)
    return response


def execute(
    context: QBContext,
    transport: Transport,
    method: str,
    path: str,
    body: Any = None,
    *,
    content_type: str | None = None,
    query: QueryPairs | None = None,
    response_model: Any = None,
    timeout: float | None = None,
) -> Any:
    """Send one API request under the regular rate limit.

    Args:
        context: Context supplying credential, environment and limiter
        transport: Transport to send with
        method: HTTP method
        path: Path relative to the API base URL
        body: Optional request body
        content_type: Content-Type of the body (default: application/json)
        query: Optional query parameter pairs
        response_model: Type to decode the body into; None returns plain JSON
        timeout: Maximum seconds to wait for a rate limit permit

    Returns:
        Decoded response body

    Raises:
        QBOBadRequestError: On a non-2xx response (or a subclass of it)
        QBOTransportError: If no response was received
        QBODecodeError: If the body does not match ``response_model``
    """
    context.ensure_fresh(transport)

    def run(ctx: QBContext) -> Any:
        response = _send(
            ctx,
            transport,
            method,
            path,
            body,
            content_type or ClientConfig.JSON_CONTENT_TYPE,
            query,
        )
        return decode_response(response, response_model)

    return context.with_permission(run, timeout)


def submit_batch(
    context: QBContext,
    transport: Transport,
    operations: Sequence[BatchOperation],
    timeout: float | None = None,
) -> list[tuple[BatchOperation, BatchItemResult]]:
    """Submit operations as one batch request under the batch rate limit.

    The provider accepts at most 30 operations per batch; chunking larger
    lists is up to the caller.

    Returns:
        (operation, result) pairs in response order

    Raises:
        QBOBatchPartialFailure: If the response leaves out any operation; it
            carries both the missing operations and the matched pairs
    """
    if not operations:
        return []
    check_batch_size(operations)
    context.ensure_fresh(transport)

    correlated = assign_batch_ids(operations)
    body = build_batch_body(correlated)

    def run(ctx: QBContext) -> Any:
        response = _send(
            ctx,
            transport,
            "POST",
            ctx.company_path("batch"),
            body,
            ClientConfig.JSON_CONTENT_TYPE,
            None,
        )
        return decode_response(response)

    data = context.with_batch_permission(run, timeout)
    return reconcile(correlated, parse_batch_response(data))


class QBClient:
    """Synchronous client for the QuickBooks Online API.

    Entity payloads are plain dicts keyed the way the provider spells them
    (``Id``, ``SyncToken``, ``DisplayName``...).
    """

    def __init__(
        self,
        *,
        company_id: str,
        access_token: str,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        environment: Environment = Environment.SANDBOX,
        discovery_doc: DiscoveryDoc | None = None,
        auto_refresh: bool = False,
        timeout: float = ClientConfig.DEFAULT_TIMEOUT,
        context: QBContext | None = None,
    ) -> None:
        """Initialize QuickBooks Online client.

        Args:
            company_id: QuickBooks company (realm) ID
            access_token: OAuth2 access token
            refresh_token: OAuth2 refresh token
            client_id: OAuth2 client ID
            client_secret: OAuth2 client secret
            environment: Sandbox or production
            discovery_doc: Discovery document with the token endpoint
            auto_refresh: Refresh an expired token before each request
            timeout: Request timeout in seconds
            context: Existing context to share instead of building one
        """
        self.context = context or QBContext(
            environment,
            company_id,
            access_token,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            discovery_doc=discovery_doc,
            auto_refresh=auto_refresh,
        )
        self.client = httpx.Client(
            timeout=timeout,
            headers={"User-Agent": f"QBOPy/{__version__}"},
        )

    def __enter__(self) -> QBClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def _request(self, method: str, path: str, body: Any = None, **kwargs: Any) -> Any:
        return execute(self.context, self.client, method, path, body, **kwargs)

    # Authentication

    def refresh_access_token(self) -> Credential:
        """Refresh the access token with the client's OAuth2 credentials."""
        return self.context.refresh_access_token(self.client)

    def check_authorized(self) -> bool:
        """Check whether the current access token is accepted."""
        return self.context.check_authorized(self.client)

    # Entities

    def read(self, entity: str, entity_id: str) -> dict[str, Any]:
        """Read an entity by ID.

        Args:
            entity: Entity name, e.g. ``Invoice``
            entity_id: Entity ID

        Returns:
            Entity data
        """
        data = self._request(
            "GET", self.context.company_path(entity.lower(), str(entity_id))
        )
        return unwrap_entity(data, entity)

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create an entity.

        Args:
            entity: Entity name, e.g. ``Customer``
            data: Entity data

        Returns:
            Created entity as stored by the provider
        """
        created = unwrap_entity(
            self._request("POST", self.context.company_path(entity.lower()), data),
            entity,
        )
        logger.info("Successfully created %s with ID of %s", entity, created.get("Id"))
        return created

    def update(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Update an entity; ``data`` must carry ``Id`` and ``SyncToken``.

        Returns:
            Updated entity
        """
        require_sync_fields(entity, data)
        return unwrap_entity(
            self._request("POST", self.context.company_path(entity.lower()), data),
            entity,
        )

    def delete(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Delete an entity; ``data`` must carry ``Id`` and ``SyncToken``.

        Returns:
            Deletion status as reported by the provider
        """
        require_sync_fields(entity, data)
        deleted = unwrap_entity(
            self._request(
                "POST",
                self.context.company_path(entity.lower()),
                {"Id": data["Id"], "SyncToken": data["SyncToken"]},
                query=[("operation", "delete")],
            ),
            entity,
        )
        logger.info("Successfully deleted %s with ID of %s", entity, data["Id"])
        return deleted

    def query(self, statement: str) -> QueryResponse:
        """Run a query statement, e.g. ``select * from Invoice``."""
        data = self._request(
            "GET", self.context.company_path("query"), query=[("query", statement)]
        )
        response = QueryResponse.model_validate(unwrap_entity(data, "QueryResponse"))
        if not response.items:
            logger.warning("Queried no items for query: %s", statement)
        return response

    def query_entity(
        self, entity: str, where: str = "", max_results: int = 100
    ) -> list[dict[str, Any]]:
        """Query entities of one type.

        Args:
            entity: Entity name, e.g. ``Invoice``
            where: Optional condition, e.g. ``where DocNumber = '1001'``
            max_results: Maximum number of results

        Returns:
            Matching entities
        """
        statement = entity_statement(entity, where, max_results)
        return self.query(statement).items

    def send_email(self, entity: str, entity_id: str, email: str) -> dict[str, Any]:
        """Email a sendable entity (invoice, estimate...) to an address.

        Returns:
            The sent entity
        """
        sent = unwrap_entity(
            self._request(
                "POST",
                self.context.company_path(entity.lower(), str(entity_id), "send"),
                query=[("sendTo", email)],
                content_type="application/octet-stream",
            ),
            entity,
        )
        logger.info("Successfully sent %s with ID of %s", entity, entity_id)
        return sent

    # Batch

    def batch(
        self, operations: Sequence[BatchOperation]
    ) -> list[tuple[BatchOperation, BatchItemResult]]:
        """Submit up to 30 operations as one batch request.

        Raises:
            QBOBatchPartialFailure: If some operations got no response
        """
        return submit_batch(self.context, self.client, operations)
