"""Construction of outgoing QuickBooks Online API requests.

Everything here is pure: no I/O, no shared state. The executor builds a fresh
request for every call from the context's current credential.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

import httpx
from pydantic import BaseModel

from qbopy.config import ClientConfig, Environment

logger = logging.getLogger(__name__)

QueryPairs = Iterable[tuple[str, str]]

_BODYLESS_METHODS = frozenset({"GET", "DELETE"})


def build_url(
    environment: Environment,
    path: str,
    query: QueryPairs | None = None,
) -> httpx.URL:
    """Build the absolute URL for an API path.

    Caller pairs keep their order and the ``minorversion`` parameter is always
    appended last. A caller pair with the same name is not removed.

    Args:
        environment: Environment selecting the API base URL
        path: Path relative to the base URL, e.g. ``company/123/invoice/1``
        query: Optional query parameter pairs

    Returns:
        Absolute URL with encoded query string
    """
    params = [(str(key), str(value)) for key, value in query or ()]
    params.append(("minorversion", ClientConfig.MINOR_VERSION))
    return httpx.URL(environment.endpoint_url + path.lstrip("/"), params=params)


def set_headers(content_type: str, access_token: str) -> dict[str, str]:
    """Headers sent with every API request.

    The multipart content type is left out so the encoder can add its boundary.
    """
    headers = {"Authorization": f"Bearer {access_token}"}
    if content_type != ClientConfig.MULTIPART_CONTENT_TYPE:
        headers["Content-Type"] = content_type
    headers["Accept"] = "application/json"
    return headers


def encode_body(body: Any) -> bytes:
    """Serialize a request body to JSON bytes."""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode()
    if isinstance(body, BaseModel):
        body = body.model_dump(by_alias=True, exclude_none=True, mode="json")
    return json.dumps(body).encode()


def build_request(
    method: str,
    path: str,
    body: Any = None,
    query: QueryPairs | None = None,
    content_type: str = ClientConfig.JSON_CONTENT_TYPE,
    *,
    environment: Environment,
    access_token: str,
) -> httpx.Request:
    """Build a fully-formed API request.

    GET and DELETE requests never carry a body; one passed in is ignored.
    With the multipart content type the body is handed to httpx as the
    ``files`` mapping.

    Args:
        method: HTTP method
        path: API path relative to the environment's base URL
        body: Optional body (pydantic model, JSON-serializable value, str or bytes)
        query: Optional query parameter pairs
        content_type: Content-Type of the body
        environment: Environment selecting the base URL
        access_token: Bearer token to authorize with

    Returns:
        Request ready to be sent by a transport
    """
    method = method.upper()
    url = build_url(environment, path, query)
    headers = set_headers(content_type, access_token)

    attach = method not in _BODYLESS_METHODS and body is not None
    logger.debug(
        "Built request %s %s (%s)",
        method,
        path,
        "with body" if attach else "no body",
    )

    if not attach:
        return httpx.Request(method, url, headers=headers)
    if content_type == ClientConfig.MULTIPART_CONTENT_TYPE:
        return httpx.Request(method, url, headers=headers, files=body)
    return httpx.Request(method, url, headers=headers, content=encode_body(body))
