"""Helpers for best-effort concurrent side effects."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from typing import TypeVar

T = TypeVar("T")


async def settle_all(awaitables: Iterable[Awaitable[T]]) -> list[T | BaseException]:
  """Await everything and return results or exceptions in input order.

  One failure never cancels or hides the others; callers inspect the
  returned list and decide what to log.
  """
  pending = list(awaitables)
  if not pending:
    return []
  return await asyncio.gather(*pending, return_exceptions=True)


def chunked(items: list[T], size: int) -> list[list[T]]:
  """Split items into consecutive chunks of at most `size` elements."""
  if size <= 0:
    raise ValueError("Chunk size must be positive.")
  return [items[start : start + size] for start in range(0, len(items), size)]
