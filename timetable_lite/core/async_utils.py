"""Bounded-wait async helpers for Timetable Lite.

Usage Example:
    ```python
    from timetable_lite.core.async_utils import AsyncOrchestrator, AsyncTimeoutError

    orchestrator = AsyncOrchestrator(default_timeout=3.0)

    try:
        holidays = await orchestrator.run_with_timeout(provider.get_holidays(start, end))
    except AsyncTimeoutError:
        holidays = {}
    ```
"""

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncOrchestratorError(Exception):
    """Base exception for AsyncOrchestrator errors."""


class AsyncTimeoutError(AsyncOrchestratorError):
    """Raised when async operation exceeds timeout."""


@dataclass
class OperationHealth:
    """Outcome counters of bounded operations."""

    operations: int = 0
    errors: int = 0
    timeouts: int = 0
    last_error_time: Optional[float] = None

    def record_success(self) -> None:
        self.operations += 1

    def record_failure(self, timed_out: bool = False) -> None:
        self.operations += 1
        self.errors += 1
        if timed_out:
            self.timeouts += 1
        self.last_error_time = time.time()

    def as_dict(self) -> dict[str, Any]:
        def rate(count: int) -> float:
            return count / self.operations if self.operations else 0.0

        return {
            "operation_count": self.operations,
            "error_count": self.errors,
            "timeout_count": self.timeouts,
            "error_rate": rate(self.errors),
            "timeout_rate": rate(self.timeouts),
            "last_error_time": self.last_error_time,
        }


class AsyncOrchestrator:
    """Runs awaitables under a timeout and tracks their health.

    Used for calls to collaborators that may hang (such as an external
    holiday provider) so they never block timetable resolution.
    """

    def __init__(self, default_timeout: float = 30.0, enable_health_tracking: bool = True):
        """Initialize async orchestrator.

        Args:
            default_timeout: Default timeout for operations in seconds
            enable_health_tracking: Enable health tracking for operations
        """
        self.default_timeout = default_timeout
        self.health: Optional[OperationHealth] = (
            OperationHealth() if enable_health_tracking else None
        )

        logger.debug(
            "AsyncOrchestrator initialized: default_timeout=%.1fs, health_tracking=%s",
            default_timeout,
            enable_health_tracking,
        )

    async def run_with_timeout(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await coro, cancelling it once the timeout expires.

        Args:
            coro: Awaitable to run
            timeout: Timeout in seconds (uses default if None)

        Raises:
            AsyncTimeoutError: If the timeout expires
        """
        limit = timeout if timeout is not None else self.default_timeout

        try:
            result = await asyncio.wait_for(coro, timeout=limit)
        except asyncio.TimeoutError as e:
            if self.health is not None:
                self.health.record_failure(timed_out=True)
            logger.warning("Operation timed out after %.1fs", limit)
            raise AsyncTimeoutError(f"Operation exceeded timeout of {limit}s") from e
        except Exception:
            if self.health is not None:
                self.health.record_failure()
            raise

        if self.health is not None:
            self.health.record_success()
        return result

    def get_health_stats(self) -> dict[str, Any]:
        """Get health statistics for monitoring."""
        if self.health is None:
            return {"health_tracking": "disabled"}
        return self.health.as_dict()
