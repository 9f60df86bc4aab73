"""Lifecycle of the mirrored checkout: one clone, then periodic pulls."""

import asyncio
import logging
import random
from contextlib import AsyncExitStack
from enum import Enum
from typing import Callable, List, Optional

from backends.errors import AcquisitionError
from backends.git import GitClient

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 15 * 60.0
DEFAULT_RETRY_BACKOFF = 30.0


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    CLONING = "cloning"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


class RepositorySession:
    """Owns the single checkout of the mirrored repository.

    The clone runs once in a background task. Every caller of ``get_path``
    awaits that same task, so concurrent callers never trigger a second
    clone and all of them see the same path or the same failure. A failed
    clone is final.

    Once the checkout exists, a refresh task pulls it every
    ``refresh_interval`` seconds and notifies the refresh listeners after
    each successful pull. Failed pulls are logged and retried with
    exponential backoff, capped at the refresh interval, for as long as the
    session is open. Readers keep using the last good checkout meanwhile.
    """

    def __init__(
        self,
        url: str,
        git_client: GitClient,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        """Initialize repository session.

        Args:
            url: Repository to mirror
            git_client: Client used to clone and pull
            refresh_interval: Seconds between pulls
            retry_backoff: Seconds before the first retry of a failed pull
        """
        self.url = url
        self.git_client = git_client
        self.refresh_interval = refresh_interval
        self.retry_backoff = min(retry_backoff, refresh_interval)

        self._state = SessionState.NOT_STARTED
        self._listeners: List[Callable[[], None]] = []
        self._stack = AsyncExitStack()
        self._clone_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def add_refresh_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback to run after every successful pull."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Start cloning in the background. Does nothing if already started."""
        if self._clone_task is not None:
            return
        if self._state is SessionState.TERMINATED:
            raise AcquisitionError("Repository session has been closed")
        self._state = SessionState.CLONING
        self._clone_task = asyncio.create_task(self._acquire(), name=f"clone {self.url}")

    async def get_path(self) -> str:
        """Wait for the checkout and return its root directory.

        Raises:
            AcquisitionError: If the clone failed or the session is closed
        """
        if self._state is SessionState.TERMINATED:
            raise AcquisitionError("Repository session has been closed")
        self.start()
        # shield: a cancelled caller must not cancel the shared clone
        return await asyncio.shield(self._clone_task)

    async def refresh(self) -> None:
        """Pull the checkout once and notify listeners on success.

        Raises:
            AcquisitionError: If the pull fails
        """
        path = await self.get_path()
        await self.git_client.pull(path)
        logger.info(f"Pulled latest changes for {self.url}")

        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Refresh listener failed")

    async def close(self) -> None:
        """Stop background work and remove the checkout."""
        self._state = SessionState.TERMINATED
        tasks = [
            task
            for task in (self._refresh_task, self._clone_task)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._clone_task is not None and self._clone_task.done() and not self._clone_task.cancelled():
            # Mark a failed clone as retrieved
            self._clone_task.exception()

        await self._stack.aclose()

    async def __aenter__(self) -> "RepositorySession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _acquire(self) -> str:
        logger.info(f"Cloning {self.url}")
        try:
            path = await self._stack.enter_async_context(self.git_client.clone(self.url))
        except Exception as exc:
            self._state = SessionState.FAILED
            logger.error(f"Failed to clone {self.url}: {exc}")
            raise

        self._state = SessionState.READY
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name=f"refresh {self.url}")
        return path

    def _retry_delay(self, failures: int) -> float:
        """Exponential backoff with bounded jitter, capped at the refresh interval."""
        base = min(self.refresh_interval, self.retry_backoff * (2 ** (failures - 1)))
        return min(self.refresh_interval, base + random.uniform(0.0, base / 10))

    async def _refresh_loop(self) -> None:
        failures = 0
        while True:
            delay = self.refresh_interval if failures == 0 else self._retry_delay(failures)
            await asyncio.sleep(delay)
            try:
                await self.refresh()
            except Exception as exc:
                failures += 1
                logger.warning(
                    f"Pull failed for {self.url} (attempt {failures}), keeping last checkout: {exc}"
                )
            else:
                failures = 0
