"""
Single-flight token refresh for gateway clients.

When several in-flight requests fail with an expiry response at once, only
one refresh call is made. Every caller waits in a FIFO queue and is released
together: all retry with the new credentials, or all fail.
"""

import asyncio
import logfire

from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional


class AuthenticationFailed(Exception):
    """The session could not be recovered; the user has to log in again."""


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """
    Coordinates credential refresh across concurrent requests.

    Credentials carry a generation number that increases on every successful
    refresh. A caller reports the generation its failed request was sent
    with, so a request that raced a refresh that already finished retries
    straight away instead of triggering a second one.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[None]],
        on_failure: Optional[Callable[[], None]] = None,
        timeout: float = 10.0,
    ):
        """
        Args:
            refresh: Coroutine function performing the refresh call and storing the new tokens
            on_failure: Called once when a refresh fails, to discard local credentials
            timeout: Seconds after which a pending refresh is abandoned
        """
        self._refresh = refresh
        self._on_failure = on_failure
        self.timeout = timeout

        self.state = RefreshState.IDLE
        self.generation = 0
        self.refresh_calls = 0

        self._lock = asyncio.Lock()
        self._waiters: deque[asyncio.Future] = deque()
        self._task: Optional[asyncio.Task] = None

    async def recover(self, seen_generation: int) -> int:
        """
        Wait until credentials newer than `seen_generation` are available.

        Returns:
            The generation the caller should retry with

        Raises:
            AuthenticationFailed: The refresh failed or timed out
        """
        async with self._lock:
            if self.generation > seen_generation:
                return self.generation

            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

            if self.state is RefreshState.IDLE:
                self.state = RefreshState.REFRESHING
                self.refresh_calls += 1
                self._task = asyncio.create_task(self._run_refresh())

        return await waiter

    async def _run_refresh(self) -> None:
        try:
            await asyncio.wait_for(self._refresh(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logfire.warning("Token refresh timed out after {timeout}s", timeout=self.timeout)
            await self._settle(AuthenticationFailed("Token refresh timed out"))
        except asyncio.CancelledError:
            self._release(AuthenticationFailed("Token refresh was cancelled"))
            raise
        except AuthenticationFailed as e:
            logfire.info("Token refresh rejected: {reason}", reason=str(e))
            await self._settle(e)
        except Exception as e:
            logfire.warning("Token refresh failed: {error_type}", error_type=type(e).__name__)
            failure = AuthenticationFailed("Token refresh failed")
            failure.__cause__ = e
            await self._settle(failure)
        else:
            await self._settle(None)

    async def _settle(self, error: Optional[AuthenticationFailed]) -> None:
        async with self._lock:
            if error is None:
                self.generation += 1
            self._release(error)

    def _release(self, error: Optional[AuthenticationFailed]) -> None:
        try:
            if error is not None and self._on_failure is not None:
                self._on_failure()
        except Exception as e:
            logfire.error("Discarding local credentials failed: {error_type}", error_type=type(e).__name__)
        finally:
            # Waiters are released even when discarding credentials fails
            self._flush(error)

    def _flush(self, error: Optional[AuthenticationFailed]) -> None:
        # FIFO: waiters are released in the order they arrived
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if error is None:
                waiter.set_result(self.generation)
            else:
                waiter.set_exception(error)
        self.state = RefreshState.IDLE
        self._task = None
