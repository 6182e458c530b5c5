"""Shared test helpers (not fixtures)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from config import settings


@contextmanager
def override_settings(**overrides: Any) -> Iterator[None]:
    original: dict[str, Any] = {}
    for key, value in overrides.items():
        original[key] = getattr(settings, key)
        setattr(settings, key, value)
    try:
        yield
    finally:
        for key, value in original.items():
            setattr(settings, key, value)


async def aiter_of(items: Iterable[Any]) -> AsyncIterator[Any]:
    """Async generator over *items*, yielding control between items."""
    for item in items:
        await asyncio.sleep(0)
        yield item


async def collect(iterator: AsyncIterator[Any]) -> list[Any]:
    return [item async for item in iterator]


def streaming_response(
    chunks: Iterable[bytes],
    *,
    content_type: str | None = "text/html; charset=utf-8",
    status_code: int = 200,
) -> httpx.Response:
    """An unread response whose body arrives as *chunks*."""
    headers = {"content-type": content_type} if content_type else {}
    return httpx.Response(status_code, headers=headers, content=aiter_of(list(chunks)))
