"""Base client functionality for the QuickBooks Online API."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any

import httpx
from dotenv import load_dotenv
from pydantic import TypeAdapter, ValidationError

from qbopy.config import ClientConfig, Environment
from qbopy.exceptions import (
    QBOBadRequestError,
    QBODecodeError,
    QBOForbiddenError,
    QBOInvalidClientError,
    QBONotFoundError,
    QBORateLimitError,
    QBOServerError,
)
from qbopy.models import DiscoveryDoc, Fault

logger = logging.getLogger(__name__)


def parse_error_response(
    response: httpx.Response,
    error_class: type[QBOBadRequestError] | None = None,
    prefix: str | None = None,
) -> QBOBadRequestError:
    """Parse error response and return appropriate exception.

    The provider fault envelope is tried first, then an OAuth2 error body
    (``error``/``error_description``), then the raw body text.

    Args:
        response: HTTP response from the API
        error_class: Exception class to use instead of the status-based one
        prefix: Text to put in front of the message

    Returns:
        Appropriate QBOBadRequestError subclass
    """
    status_code = response.status_code
    fault: Fault | None = None
    error_data: dict[str, Any] = {}
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        error_data = data
        try:
            fault = Fault.from_response_data(data)
        except ValidationError:
            fault = None

    if fault is not None:
        message = fault.message
    elif "error" in error_data:
        message = str(error_data["error"])
        if error_data.get("error_description"):
            message = f"{message}: {error_data['error_description']}"
    else:
        message = response.text or f"HTTP {status_code} error"

    if prefix:
        message = f"{prefix}: {message}"

    if error_class is None:
        error_class = _error_class_for_status(status_code)

    return error_class(
        message,
        status_code,
        error_data,
        response.request,
        response,
        fault=fault,
    )


def _error_class_for_status(status_code: int) -> type[QBOBadRequestError]:
    if status_code == 401:
        return QBOInvalidClientError
    elif status_code == 403:
        return QBOForbiddenError
    elif status_code == 404:
        return QBONotFoundError
    elif status_code == 429:
        return QBORateLimitError
    elif status_code >= 500:
        return QBOServerError
    return QBOBadRequestError


@lru_cache(maxsize=128)
def _adapter(response_model: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_model)


def decode_response(response: httpx.Response, response_model: Any = None) -> Any:
    """Decode a successful response body.

    Args:
        response: 2xx HTTP response
        response_model: Type to validate the JSON into (pydantic model,
            ``dict[str, Any]``, ``list[Model]``...); None returns plain JSON

    Returns:
        Decoded body, or None for an empty body

    Raises:
        QBODecodeError: If the body is not JSON or does not match the model
    """
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError as e:
        raise QBODecodeError(
            f"Response body is not valid JSON: {e}",
            status_code=response.status_code,
        ) from e
    if response_model is None:
        return data
    try:
        return _adapter(response_model).validate_python(data)
    except ValidationError as e:
        raise QBODecodeError(
            f"Response does not match {getattr(response_model, '__name__', response_model)}: {e}",
            status_code=response.status_code,
            response_data=data if isinstance(data, dict) else None,
        ) from e


def unwrap_entity(data: Any, entity: str) -> dict[str, Any]:
    """Pull the entity object out of a ``{"Invoice": {...}, "time": ...}`` envelope."""
    if not isinstance(data, dict) or not isinstance(data.get(entity), dict):
        raise QBODecodeError(f"Response has no {entity} object")
    return data[entity]


class BaseQBContext:
    """State shared by the sync and async contexts.

    Everything but the credential is fixed at construction. Subclasses add the
    credential holder and the two rate limiters of their flavour.
    """

    def __init__(
        self,
        environment: Environment,
        company_id: str,
        *,
        discovery_doc: DiscoveryDoc | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        auto_refresh: bool = False,
        rate_limit: int = ClientConfig.RATE_LIMIT,
        batch_rate_limit: int = ClientConfig.BATCH_RATE_LIMIT,
        reset_duration: float = ClientConfig.RESET_DURATION,
    ) -> None:
        self.environment = environment
        self.company_id = company_id
        self.discovery_doc = discovery_doc
        self.client_id = client_id
        self.client_secret = client_secret
        self.auto_refresh = auto_refresh
        self.rate_limit = rate_limit
        self.batch_rate_limit = batch_rate_limit
        self.reset_duration = reset_duration

    @property
    def token_endpoint(self) -> str:
        if self.discovery_doc is not None:
            return self.discovery_doc.token_endpoint
        return ClientConfig.TOKEN_ENDPOINT

    def company_path(self, *parts: str) -> str:
        """API path below ``company/{company_id}``."""
        return "/".join(("company", self.company_id, *parts))

    def _client_credentials(
        self, client_id: str | None, client_secret: str | None
    ) -> tuple[str, str]:
        client_id = client_id or self.client_id
        client_secret = client_secret or self.client_secret
        if not client_id or not client_secret:
            raise ValueError(
                "client_id and client_secret are required to refresh the access token"
            )
        return client_id, client_secret

    def _should_refresh(self, credentials: Any) -> bool:
        return self.auto_refresh and credentials.can_refresh and credentials.is_expired()

    def _settings(self) -> dict[str, Any]:
        return {
            "discovery_doc": self.discovery_doc,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "auto_refresh": self.auto_refresh,
            "rate_limit": self.rate_limit,
            "batch_rate_limit": self.batch_rate_limit,
            "reset_duration": self.reset_duration,
        }

    def _log_unauthorized(self, response: httpx.Response) -> None:
        error = parse_error_response(response)
        logger.error("Failed to check authorized status: %s", error)


def entity_statement(entity: str, where: str = "", max_results: int = 100) -> str:
    """Query statement selecting entities of one type."""
    parts = [f"select * from {entity}", where.strip(), f"MAXRESULTS {max_results}"]
    return " ".join(part for part in parts if part)


def require_sync_fields(entity: str, data: dict[str, Any]) -> None:
    """Check an entity carries what update and delete need."""
    if not data.get("Id") or data.get("SyncToken") is None:
        raise ValueError(f"{entity} needs Id and SyncToken for this operation")


def settings_from_env(environment: Environment | None = None) -> dict[str, Any]:
    """Context settings read from ``QB_*`` environment variables.

    Loads a ``.env`` file first without overriding variables already set.

    Raises:
        ValueError: If QB_COMPANY_ID or QB_ACCESS_TOKEN is missing
    """
    load_dotenv(override=False)
    company_id = os.environ.get("QB_COMPANY_ID")
    access_token = os.environ.get("QB_ACCESS_TOKEN")
    if not company_id or not access_token:
        raise ValueError("Missing QB_COMPANY_ID or QB_ACCESS_TOKEN")
    if environment is None:
        environment = Environment.from_name(os.environ.get("QB_ENVIRONMENT", "sandbox"))
    return {
        "environment": environment,
        "company_id": company_id,
        "access_token": access_token,
        "refresh_token": os.environ.get("QB_REFRESH_TOKEN") or None,
        "client_id": os.environ.get("QB_CLIENT_ID") or None,
        "client_secret": os.environ.get("QB_CLIENT_SECRET") or None,
    }
