"""Manually invalidated cache cell for derived repository content."""

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class ContentCache(Generic[T]):
    """Lazily computed value that stays cached until ``invalidate`` is called.

    There is no time-based expiry. Only one load runs at a time; callers
    arriving while a load is in flight wait for it and share its result.
    A failed load is not cached.
    """

    def __init__(self, loader: Callable[[], Awaitable[T]]) -> None:
        """Initialize the cache.

        Args:
            loader: Coroutine function producing a fresh value
        """
        self._loader = loader
        self._lock = asyncio.Lock()
        self._value: Optional[T] = None
        self._loaded = False
        self._generation = 0

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def get(self) -> T:
        """Return the cached value, loading it first if needed."""
        if self._loaded:
            return self._value

        async with self._lock:
            if self._loaded:
                return self._value

            generation = self._generation
            value = await self._loader()
            # An invalidation during the load makes this value stale already
            if generation == self._generation:
                self._value = value
                self._loaded = True
            return value

    def invalidate(self) -> None:
        """Drop the cached value so the next ``get`` reloads it."""
        self._generation += 1
        self._value = None
        self._loaded = False
