"""Environments and client configuration for the QuickBooks Online API."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum


class Environment(str, Enum):
    """QuickBooks Online environment.

    Selects the fixed set of URLs a context talks to. Never changes after a
    context has been created.
    """

    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @classmethod
    def from_name(cls, name: str) -> Environment:
        """Parse an environment name such as ``"sandbox"`` or ``"PRODUCTION"``.

        Raises:
            ValueError: If the name is not a known environment
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown QuickBooks environment {name!r}, "
                "expected 'sandbox' or 'production'"
            ) from None

    @property
    def discovery_url(self) -> str:
        if self is Environment.PRODUCTION:
            return "https://developer.intuit.com/.well-known/openid_configuration/"
        return "https://developer.intuit.com/.well-known/openid_sandbox_configuration/"

    @property
    def endpoint_url(self) -> str:
        if self is Environment.PRODUCTION:
            return "https://quickbooks.api.intuit.com/v3/"
        return "https://sandbox-quickbooks.api.intuit.com/v3/"

    @property
    def user_info_url(self) -> str:
        if self is Environment.PRODUCTION:
            return "https://accounts.platform.intuit.com/v1/openid_connect/userinfo"
        return "https://sandbox-accounts.platform.intuit.com/v1/openid_connect/userinfo"

    @property
    def migration_url(self) -> str:
        if self is Environment.PRODUCTION:
            return "https://developer.api.intuit.com/v2/oauth2/tokens/migrate"
        return "https://developer-sandbox.api.intuit.com/v2/oauth2/tokens/migrate"


class ClientConfig:
    """Configuration for QuickBooks Online API clients.

    Rate limits:
    - Sandbox and production: 500 requests per minute
    - Batch: 30 operations per batch, 40 batches per minute

    After being throttled the provider expects a 60 second pause.
    """

    RATE_LIMIT = 500
    BATCH_RATE_LIMIT = 40
    RESET_DURATION = 60.0
    MAX_BATCH_SIZE = 30
    MINOR_VERSION = "75"
    DEFAULT_TIMEOUT = 30.0
    TOKEN_ENDPOINT = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    # Expiry used until the provider reports a real token lifetime
    PLACEHOLDER_TTL = timedelta(hours=999)

    JSON_CONTENT_TYPE = "application/json"
    MULTIPART_CONTENT_TYPE = "multipart/form-data"
