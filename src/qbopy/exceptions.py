"""Exceptions for the QBOPy library."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from qbopy.batch import BatchItemResult, BatchOperation
    from qbopy.models import Fault


class QBOAPIError(httpx.HTTPStatusError):
    """Base exception for all QuickBooks Online API errors.

    Extends httpx.HTTPStatusError so users can catch both QBOAPIError
    and httpx.HTTPStatusError to handle API errors.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
        request: httpx.Request | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize QBOAPIError.

        Args:
            message: Error message
            status_code: HTTP status code from the API response
            response_data: Full response data from the API
            request: The request that caused the error
            response: The response from the API
        """
        if request and response:
            super().__init__(message, request=request, response=response)
        else:
            # Errors raised before or without a response
            Exception.__init__(self, message)

        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class QBOTransportError(QBOAPIError):
    """Raised when the request never produced a response (DNS, TLS, timeout).

    The underlying httpx.TransportError is available as ``__cause__``.
    """

    pass


class QBODecodeError(QBOAPIError):
    """Raised when a successful response body does not have the expected shape."""

    pass


class QBOBadRequestError(QBOAPIError):
    """Raised for any non-2xx response from the provider.

    The parsed provider fault, when the body carried one, is available as
    ``fault``.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
        request: httpx.Request | None = None,
        response: httpx.Response | None = None,
        fault: Fault | None = None,
    ) -> None:
        super().__init__(message, status_code, response_data, request, response)
        self.fault = fault


class QBOInvalidClientError(QBOBadRequestError):
    """Raised when the provider rejects the credentials (401) or a token refresh.

    Callers should re-run the OAuth2 flow or refresh the access token.
    """

    pass


class QBOForbiddenError(QBOBadRequestError):
    """Raised when the token lacks access to the resource (403)."""

    pass


class QBONotFoundError(QBOBadRequestError):
    """Raised when a resource is not found (404)."""

    pass


class QBORateLimitError(QBOBadRequestError):
    """Raised when the provider throttles the client (429).

    QuickBooks Online allows 500 requests and 40 batches per minute per
    company; wait 60 seconds after being throttled.
    """

    pass


class QBOServerError(QBOBadRequestError):
    """Raised when the provider encounters an error (5xx)."""

    pass


class QBOBatchPartialFailure(QBOAPIError):
    """Raised when a batch response does not account for every submitted operation.

    Attributes:
        missing: Correlation id to original operation, for every operation
            the response did not mention, in submission order
        partial: (operation, result) pairs for the operations that did match,
            in response order
    """

    def __init__(
        self,
        missing: Mapping[str, BatchOperation],
        partial: list[tuple[BatchOperation, BatchItemResult]],
    ) -> None:
        self.missing = dict(missing)
        self.partial = partial
        super().__init__(
            f"Batch response is missing {len(self.missing)} of "
            f"{len(self.missing) + len(self.partial)} operations: "
            f"{', '.join(self.missing)}"
        )

    @property
    def missing_operations(self) -> list[BatchOperation]:
        """Operations to resubmit, in their original order."""
        return list(self.missing.values())
