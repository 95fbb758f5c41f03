"""Tests for the asynchronous executor, context and AsyncQBClient."""

import asyncio
import json
from typing import Any

import httpx
import pytest
import respx
from httpx import Response

from qbopy import AsyncQBClient, AsyncQBContext, BatchOperation, Environment
from qbopy.auth import AsyncCredentialState, Credential
from qbopy.batch import FaultResult, QueryResult
from qbopy.client_async import execute, submit_batch
from qbopy.exceptions import (
    QBOBatchPartialFailure,
    QBODecodeError,
    QBONotFoundError,
    QBOServerError,
    QBOTransportError,
)


@pytest.fixture
async def async_client(company_id: str, access_token: str):
    """Create an async QBClient for testing."""
    client = AsyncQBClient(company_id=company_id, access_token=access_token)
    yield client
    await client.close()


class TestAsyncExecute:
    """Test async request execution."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_execute_success(
        self,
        async_context: AsyncQBContext,
        async_transport: httpx.AsyncClient,
        company_url: str,
        mock_invoice: dict[str, Any],
    ):
        """Test that a 2xx response is decoded."""
        route = respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(200, json={"Invoice": mock_invoice})
        )

        result = await execute(
            async_context,
            async_transport,
            "GET",
            async_context.company_path("invoice", "129"),
        )

        assert result["Invoice"]["Id"] == "129"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer test_access_token"
        assert async_context.qbo_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_response(
        self,
        async_context: AsyncQBContext,
        async_transport: httpx.AsyncClient,
        company_url: str,
        mock_fault: dict[str, Any],
    ):
        """Test that error responses raise the status-specific exception."""
        respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(500, json=mock_fault)
        )

        with pytest.raises(QBOServerError) as exc_info:
            await execute(
                async_context,
                async_transport,
                "GET",
                async_context.company_path("invoice", "129"),
            )

        assert exc_info.value.fault.type == "ValidationFault"
        assert async_context.qbo_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(
        self,
        async_context: AsyncQBContext,
        async_transport: httpx.AsyncClient,
        company_url: str,
    ):
        """Test that connection failures keep the underlying error as cause."""
        respx.get(f"{company_url}/invoice/129").mock(
            side_effect=httpx.ConnectTimeout("timed out")
        )

        with pytest.raises(QBOTransportError) as exc_info:
            await execute(
                async_context,
                async_transport,
                "GET",
                async_context.company_path("invoice", "129"),
            )

        assert isinstance(exc_info.value.__cause__, httpx.ConnectTimeout)
        assert async_context.qbo_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    async def test_cancellation_releases_permit(self, async_context: AsyncQBContext):
        """Test that cancelling a task mid-call gives its permit back."""
        started = asyncio.Event()

        async def slow(ctx: AsyncQBContext):
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(async_context.with_permission(slow))
        await started.wait()
        assert async_context.qbo_limiter.requests_in_window == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert async_context.qbo_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_auto_refresh(
        self,
        company_id: str,
        expired_credential: Credential,
        oauth_credentials: dict[str, str],
        token_endpoint: str,
        token_response: dict[str, Any],
        async_transport: httpx.AsyncClient,
        company_url: str,
    ):
        """Test that an expired token is refreshed before the call."""
        context = AsyncQBContext(
            Environment.SANDBOX,
            company_id,
            expired_credential.access_token,
            credentials=AsyncCredentialState(expired_credential),
            auto_refresh=True,
            **oauth_credentials,
        )
        respx.post(token_endpoint).mock(return_value=Response(200, json=token_response))
        api_route = respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(200, json={"Invoice": {"Id": "129"}})
        )

        await execute(
            context, async_transport, "GET", context.company_path("invoice", "129")
        )

        request = api_route.calls.last.request
        assert request.headers["Authorization"] == "Bearer new_access_token"

    @pytest.mark.asyncio
    @respx.mock
    async def test_concurrent_expired_calls_refresh_once(
        self,
        company_id: str,
        expired_credential: Credential,
        oauth_credentials: dict[str, str],
        token_endpoint: str,
        token_response: dict[str, Any],
        async_transport: httpx.AsyncClient,
        company_url: str,
    ):
        """Test that tasks racing on an expired token share one refresh."""
        context = AsyncQBContext(
            Environment.SANDBOX,
            company_id,
            expired_credential.access_token,
            credentials=AsyncCredentialState(expired_credential),
            auto_refresh=True,
            **oauth_credentials,
        )

        async def slow_token_endpoint(request: httpx.Request) -> Response:
            await asyncio.sleep(0.05)
            return Response(200, json=token_response)

        token_route = respx.post(token_endpoint).mock(side_effect=slow_token_endpoint)
        api_route = respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(200, json={"Invoice": {"Id": "129"}})
        )

        await asyncio.gather(
            *(
                execute(
                    context,
                    async_transport,
                    "GET",
                    context.company_path("invoice", "129"),
                )
                for _ in range(5)
            )
        )

        assert token_route.call_count == 1
        assert api_route.call_count == 5
        for call in api_route.calls:
            assert call.request.headers["Authorization"] == "Bearer new_access_token"


class TestAsyncSubmitBatch:
    """Test async batch submission."""

    @pytest.mark.asyncio
    async def test_empty_batch(
        self, async_context: AsyncQBContext, async_transport: httpx.AsyncClient
    ):
        """Test that an empty batch returns without a request."""
        assert await submit_batch(async_context, async_transport, []) == []
        assert async_context.batch_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_partial_batch(
        self,
        async_context: AsyncQBContext,
        async_transport: httpx.AsyncClient,
        company_url: str,
        mock_fault: dict[str, Any],
    ):
        """Test that a dropped operation is reported with the matched pairs."""
        query = BatchOperation.query("select * from Invoice")
        create = BatchOperation.create("Customer", {"DisplayName": "Amy"})
        delete = BatchOperation.delete("Invoice", {"Id": "129", "SyncToken": "0"})
        respx.post(f"{company_url}/batch").mock(
            return_value=Response(
                200,
                json={
                    "BatchItemResponse": [
                        {"bId": "bId1", "QueryResponse": {"Invoice": []}},
                        {"bId": "bId3", "Fault": mock_fault["Fault"]},
                    ]
                },
            )
        )

        with pytest.raises(QBOBatchPartialFailure) as exc_info:
            await submit_batch(async_context, async_transport, [query, create, delete])

        error = exc_info.value
        assert error.missing == {"bId2": create}
        assert isinstance(error.partial[0][1], QueryResult)
        assert isinstance(error.partial[1][1], FaultResult)
        assert async_context.batch_limiter.requests_in_window == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_batch_limiter_is_independent(
        self,
        company_id: str,
        access_token: str,
        async_transport: httpx.AsyncClient,
        company_url: str,
    ):
        """Test that an exhausted batch limit does not block regular calls."""
        context = AsyncQBContext(
            Environment.SANDBOX, company_id, access_token, batch_rate_limit=1
        )
        respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(200, json={"Invoice": {"Id": "129"}})
        )
        await context.batch_limiter.acquire()

        with pytest.raises(TimeoutError):
            await submit_batch(
                context,
                async_transport,
                [BatchOperation.query("select * from Invoice")],
                timeout=0.05,
            )

        await execute(
            context, async_transport, "GET", context.company_path("invoice", "129")
        )


class TestAsyncContext:
    """Test async context construction."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_new_reads_discovery_document(
        self, company_id: str, access_token: str, async_transport: httpx.AsyncClient
    ):
        """Test that the token endpoint comes from the discovery document."""
        respx.get(Environment.PRODUCTION.discovery_url).mock(
            return_value=Response(
                200, json={"token_endpoint": "https://oauth.example.test/bearer"}
            )
        )

        context = await AsyncQBContext.new(
            Environment.PRODUCTION, company_id, access_token, async_transport
        )

        assert context.environment is Environment.PRODUCTION
        assert context.token_endpoint == "https://oauth.example.test/bearer"

    @pytest.mark.asyncio
    @respx.mock
    async def test_check_authorized(
        self, async_context: AsyncQBContext, async_transport: httpx.AsyncClient
    ):
        """Test the user info probe."""
        respx.get(Environment.SANDBOX.user_info_url).mock(
            return_value=Response(403, json={"error": "insufficient_scope"})
        )
        assert await async_context.check_authorized(async_transport) is False

    def test_with_access_token_shares_limiters(self, async_context: AsyncQBContext):
        """Test that a derived context keeps the limiters."""
        derived = async_context.with_access_token("other_token")
        assert derived.access_token == "other_token"
        assert derived.qbo_limiter is async_context.qbo_limiter
        assert derived.batch_limiter is async_context.batch_limiter


class TestAsyncQBClient:
    """Test the entity helpers of AsyncQBClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_read(
        self,
        async_client: AsyncQBClient,
        company_url: str,
        mock_invoice: dict[str, Any],
    ):
        """Test reading an invoice by ID."""
        respx.get(f"{company_url}/invoice/129").mock(
            return_value=Response(200, json={"Invoice": mock_invoice})
        )
        invoice = await async_client.read("Invoice", "129")
        assert invoice["TotalAmt"] == 362.07

    @pytest.mark.asyncio
    @respx.mock
    async def test_read_not_found(self, async_client: AsyncQBClient, company_url: str):
        """Test reading a missing entity."""
        respx.get(f"{company_url}/invoice/999").mock(
            return_value=Response(404, text="Not Found")
        )
        with pytest.raises(QBONotFoundError):
            await async_client.read("Invoice", "999")

    @pytest.mark.asyncio
    @respx.mock
    async def test_create(self, async_client: AsyncQBClient, company_url: str):
        """Test creating a customer."""
        route = respx.post(f"{company_url}/customer").mock(
            return_value=Response(200, json={"Customer": {"Id": "58"}})
        )
        customer = await async_client.create("Customer", {"DisplayName": "Amy"})
        assert customer["Id"] == "58"
        assert json.loads(route.calls.last.request.content) == {"DisplayName": "Amy"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_delete(
        self,
        async_client: AsyncQBClient,
        company_url: str,
        mock_invoice: dict[str, Any],
    ):
        """Test deleting an invoice."""
        route = respx.post(f"{company_url}/invoice").mock(
            return_value=Response(200, json={"Invoice": {"Id": "129", "status": "Deleted"}})
        )
        result = await async_client.delete("Invoice", mock_invoice)
        assert result["status"] == "Deleted"
        assert route.calls.last.request.url.params["operation"] == "delete"

    @pytest.mark.asyncio
    @respx.mock
    async def test_query_entity(
        self,
        async_client: AsyncQBClient,
        company_url: str,
        mock_invoice: dict[str, Any],
    ):
        """Test querying entities of one type."""
        route = respx.get(f"{company_url}/query").mock(
            return_value=Response(
                200, json={"QueryResponse": {"Invoice": [mock_invoice]}}
            )
        )
        items = await async_client.query_entity("Invoice")
        assert [item["Id"] for item in items] == ["129"]
        assert (
            route.calls.last.request.url.params["query"]
            == "select * from Invoice MAXRESULTS 100"
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_query_with_empty_body(
        self, async_client: AsyncQBClient, company_url: str
    ):
        """Test that an empty 2xx query body is a decode error."""
        respx.get(f"{company_url}/query").mock(return_value=Response(200))
        with pytest.raises(QBODecodeError):
            await async_client.query("select * from Invoice")

    @pytest.mark.asyncio
    @respx.mock
    async def test_batch(self, async_client: AsyncQBClient, company_url: str):
        """Test submitting a batch through the client."""
        respx.post(f"{company_url}/batch").mock(
            return_value=Response(
                200,
                json={
                    "BatchItemResponse": [
                        {"bId": "bId1", "QueryResponse": {"Customer": [{"Id": "1"}]}}
                    ]
                },
            )
        )
        results = await async_client.batch(
            [BatchOperation.query("select * from Customer")]
        )
        assert results[0][1].response.items == [{"Id": "1"}]

    @pytest.mark.asyncio
    async def test_context_manager(self, company_id: str, access_token: str):
        """Test that the client closes its HTTP client on exit."""
        async with AsyncQBClient(
            company_id=company_id, access_token=access_token
        ) as client:
            assert not client.client.is_closed
        assert client.client.is_closed
