"""Pytest fixtures for QBOPy tests."""

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from qbopy import AsyncQBContext, Environment, QBClient, QBContext
from qbopy.auth import Credential


@pytest.fixture
def access_token() -> str:
    """Return a test access token."""
    return "test_access_token"


@pytest.fixture
def refresh_token() -> str:
    """Return a test refresh token."""
    return "test_refresh_token"


@pytest.fixture
def company_id() -> str:
    """Return a test company (realm) ID."""
    return "9130348561234"


@pytest.fixture
def oauth_credentials() -> dict[str, str]:
    """Return test OAuth2 client credentials."""
    return {
        "client_id": "test_client_id",
        "client_secret": "test_client_secret",
    }


@pytest.fixture
def token_endpoint() -> str:
    """Return the OAuth2 token endpoint."""
    return "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"


@pytest.fixture
def base_url() -> str:
    """Return the sandbox API base URL."""
    return "https://sandbox-quickbooks.api.intuit.com/v3"


@pytest.fixture
def company_url(base_url: str, company_id: str) -> str:
    """Return the base URL of the test company."""
    return f"{base_url}/company/{company_id}"


@pytest.fixture
def token_response() -> dict[str, Any]:
    """Return a token endpoint response."""
    return {
        "access_token": "new_access_token",
        "refresh_token": "new_refresh_token",
        "token_type": "bearer",
        "expires_in": 3600,
        "x_refresh_token_expires_in": 8726400,
    }


@pytest.fixture
def expired_credential(access_token: str, refresh_token: str) -> Credential:
    """Return a credential that expired a minute ago."""
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )


@pytest.fixture
def context(company_id: str, access_token: str, refresh_token: str) -> QBContext:
    """Create a sandbox QBContext for testing."""
    return QBContext(
        Environment.SANDBOX,
        company_id,
        access_token,
        refresh_token=refresh_token,
    )


@pytest.fixture
def async_context(
    company_id: str, access_token: str, refresh_token: str
) -> AsyncQBContext:
    """Create a sandbox AsyncQBContext for testing."""
    return AsyncQBContext(
        Environment.SANDBOX,
        company_id,
        access_token,
        refresh_token=refresh_token,
    )


@pytest.fixture
def transport():
    """Create a sync httpx transport."""
    client = httpx.Client()
    yield client
    client.close()


@pytest.fixture
async def async_transport():
    """Create an async httpx transport."""
    client = httpx.AsyncClient()
    yield client
    await client.aclose()


@pytest.fixture
def sync_client(company_id: str, access_token: str):
    """Create a sync QBClient for testing."""
    client = QBClient(company_id=company_id, access_token=access_token)
    yield client
    client.close()


@pytest.fixture
def mock_invoice() -> dict[str, Any]:
    """Return mock invoice data."""
    return {
        "Id": "129",
        "SyncToken": "0",
        "DocNumber": "1037",
        "TxnDate": "2024-01-15",
        "TotalAmt": 362.07,
        "CustomerRef": {"value": "1", "name": "Amy's Bird Sanctuary"},
        "Line": [
            {
                "Amount": 362.07,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {"ItemRef": {"value": "1", "name": "Services"}},
            }
        ],
    }


@pytest.fixture
def mock_fault() -> dict[str, Any]:
    """Return a provider fault envelope."""
    return {
        "Fault": {
            "Error": [
                {
                    "Message": "Object Not Found",
                    "Detail": "Object Not Found : Something you're trying to use has been made inactive.",
                    "code": "610",
                    "element": "",
                }
            ],
            "type": "ValidationFault",
        },
        "time": "2024-01-15T09:01:18.141-07:00",
    }
