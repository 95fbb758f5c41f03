"""Transport interfaces the clients send requests through.

``httpx.Client`` and ``httpx.AsyncClient`` satisfy these protocols as-is;
any object with a compatible ``send`` can be used instead.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx


@runtime_checkable
class Transport(Protocol):
    """Blocking transport: sends a built request and returns the full response."""

    def send(self, request: httpx.Request) -> httpx.Response: ...


@runtime_checkable
class AsyncTransport(Protocol):
    """Async transport: sends a built request and returns the full response."""

    async def send(self, request: httpx.Request) -> httpx.Response: ...
