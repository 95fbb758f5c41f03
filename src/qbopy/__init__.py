"""QBOPy - Modern Python library for the QuickBooks Online accounting API."""

from qbopy._version import __version__
from qbopy.auth import AsyncCredentialState, Credential, CredentialState
from qbopy.batch import (
    BatchItemResult,
    BatchOperation,
    FaultResult,
    QueryResult,
    ResourceResult,
)
from qbopy.client_async import AsyncQBClient, AsyncQBContext
from qbopy.client_sync import QBClient, QBContext
from qbopy.config import ClientConfig, Environment
from qbopy.exceptions import (
    QBOAPIError,
    QBOBadRequestError,
    QBOBatchPartialFailure,
    QBODecodeError,
    QBOForbiddenError,
    QBOInvalidClientError,
    QBONotFoundError,
    QBORateLimitError,
    QBOServerError,
    QBOTransportError,
)
from qbopy.limiter import AsyncRateLimiter, Permit, RateLimiter
from qbopy.models import DiscoveryDoc, Fault, FaultError, QueryResponse

__all__ = [
    "__version__",
    "QBClient",
    "QBContext",
    "AsyncQBClient",
    "AsyncQBContext",
    "Environment",
    "ClientConfig",
    "Credential",
    "CredentialState",
    "AsyncCredentialState",
    "RateLimiter",
    "AsyncRateLimiter",
    "Permit",
    "BatchOperation",
    "BatchItemResult",
    "ResourceResult",
    "QueryResult",
    "FaultResult",
    "DiscoveryDoc",
    "Fault",
    "FaultError",
    "QueryResponse",
    "QBOAPIError",
    "QBOBadRequestError",
    "QBOBatchPartialFailure",
    "QBODecodeError",
    "QBOForbiddenError",
    "QBOInvalidClientError",
    "QBONotFoundError",
    "QBORateLimitError",
    "QBOServerError",
    "QBOTransportError",
]
