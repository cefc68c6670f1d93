"""Blocking-safe data access bridge.

Synchronous storage drivers (pymongo, redis-py) and CPU-heavy password
hashing must never run on the event loop. `BlockingBridge.run` hands the call
to a bounded thread pool and awaits the result.

Two failure channels stay distinct:

- `StorageError` (and subclasses) raised by the operation itself propagate
  unchanged to the caller, which may retry `StorageUnavailable`.
- Anything else escaping the worker means the worker crashed before producing
  a result. It is logged loudly and surfaced as `WorkerFailure`.
"""

import asyncio
import functools
import logfire

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from utils.exceptions import StorageError, WorkerFailure

T = TypeVar("T")


class BlockingBridge:
    """Offloads blocking calls onto a bounded worker pool."""

    def __init__(self, max_workers: int = 8):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="storage-bridge"
        )

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run `fn(*args, **kwargs)` on the worker pool and await its result.

        Raises:
            StorageError: The storage operation failed.
            WorkerFailure: The worker failed for any other reason.
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(fn, *args, **kwargs)
        try:
            return await loop.run_in_executor(self._executor, call)
        except StorageError:
            raise
        except Exception as e:
            logfire.error(
                "Storage worker crashed running {operation}: {error_type}",
                operation=getattr(fn, "__qualname__", repr(fn)),
                error_type=type(e).__name__,
            )
            raise WorkerFailure() from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
