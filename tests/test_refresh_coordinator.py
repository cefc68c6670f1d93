"""Single-flight refresh coordination."""

import asyncio
from unittest.mock import MagicMock

import pytest

from client.refresh import AuthenticationFailed, RefreshCoordinator, RefreshState


class GatedRefresh:
    """Refresh callable that blocks until the test releases it."""

    def __init__(self, error: Exception | None = None):
        self.calls = 0
        self.error = error
        self.gate = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error


async def test_concurrent_expiries_share_one_refresh():
    refresh = GatedRefresh()
    coordinator = RefreshCoordinator(refresh)

    waiters = [asyncio.create_task(coordinator.recover(0)) for _ in range(5)]
    await asyncio.sleep(0)
    assert coordinator.state is RefreshState.REFRESHING

    refresh.gate.set()
    results = await asyncio.gather(*waiters)

    assert refresh.calls == 1
    assert coordinator.refresh_calls == 1
    assert results == [1] * 5
    assert coordinator.state is RefreshState.IDLE


async def test_failure_rejects_every_waiter_and_discards_credentials():
    refresh = GatedRefresh(error=AuthenticationFailed("Refresh rejected: token_expired"))
    on_failure = MagicMock()
    coordinator = RefreshCoordinator(refresh, on_failure=on_failure)

    waiters = [asyncio.create_task(coordinator.recover(0)) for _ in range(3)]
    await asyncio.sleep(0)
    refresh.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(result, AuthenticationFailed) for result in results)
    on_failure.assert_called_once_with()
    assert coordinator.generation == 0
    assert coordinator.state is RefreshState.IDLE


async def test_unexpected_refresh_error_is_reported_as_authentication_failure():
    refresh = GatedRefresh(error=ConnectionError("network down"))
    coordinator = RefreshCoordinator(refresh)
    refresh.gate.set()

    with pytest.raises(AuthenticationFailed) as excinfo:
        await coordinator.recover(0)

    assert isinstance(excinfo.value.__cause__, ConnectionError)


async def test_timeout_rejects_queue():
    refresh = GatedRefresh()
    on_failure = MagicMock()
    coordinator = RefreshCoordinator(refresh, on_failure=on_failure, timeout=0.05)

    results = await asyncio.gather(
        coordinator.recover(0), coordinator.recover(0), return_exceptions=True
    )

    assert all(isinstance(result, AuthenticationFailed) for result in results)
    assert refresh.calls == 1
    on_failure.assert_called_once_with()


async def test_stale_generation_retries_without_refreshing():
    refresh = GatedRefresh()
    refresh.gate.set()
    coordinator = RefreshCoordinator(refresh)

    assert await coordinator.recover(0) == 1
    # A request sent with generation 0 failed after the refresh already landed
    assert await coordinator.recover(0) == 1
    assert refresh.calls == 1


async def test_next_expiry_after_success_refreshes_again():
    refresh = GatedRefresh()
    refresh.gate.set()
    coordinator = RefreshCoordinator(refresh)

    assert await coordinator.recover(0) == 1
    assert await coordinator.recover(1) == 2
    assert refresh.calls == 2


async def test_late_arrival_joins_pending_refresh():
    refresh = GatedRefresh()
    coordinator = RefreshCoordinator(refresh)

    first = asyncio.create_task(coordinator.recover(0))
    await asyncio.sleep(0)
    second = asyncio.create_task(coordinator.recover(0))
    await asyncio.sleep(0)

    refresh.gate.set()
    assert await first == await second == 1
    assert refresh.calls == 1


async def test_waiters_are_released_when_discarding_credentials_fails():
    refresh = GatedRefresh(error=AuthenticationFailed("Refresh rejected: 401"))
    refresh.gate.set()
    on_failure = MagicMock(side_effect=RuntimeError("keychain locked"))
    coordinator = RefreshCoordinator(refresh, on_failure=on_failure)

    results = await asyncio.wait_for(
        asyncio.gather(coordinator.recover(0), coordinator.recover(0), return_exceptions=True),
        timeout=1.0,
    )

    assert all(isinstance(result, AuthenticationFailed) for result in results)
    on_failure.assert_called_once_with()
    assert coordinator.state is RefreshState.IDLE


async def test_cancelled_refresh_rejects_waiters_and_discards_credentials():
    refresh = GatedRefresh()
    on_failure = MagicMock()
    coordinator = RefreshCoordinator(refresh, on_failure=on_failure)

    waiter = asyncio.create_task(coordinator.recover(0))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert refresh.calls == 1

    coordinator._task.cancel()
    result = (await asyncio.gather(waiter, return_exceptions=True))[0]

    assert isinstance(result, AuthenticationFailed)
    on_failure.assert_called_once_with()
    assert coordinator.state is RefreshState.IDLE
