"""
Fail-Soft Boundary

Every call into a shared backend (key-value store, content store, job queue)
goes through ``fail_soft``. The wrapper bounds the call with a timeout, logs
failures with the caller's stage, reports them to an optional error hook and
hands back a ``Result`` instead of raising. Callers then decide the fallback
(compute directly, return the default version, count the item as failed).

Usage:
    result = await fail_soft(
        "cache_get",
        lambda: store.get(key),
        timeout=2.0,
        key=key,
        on_error=monitor.record_error,
    )
    raw = result.unwrap_or(None)

Author: System Architect
Date: 2025-12-10
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from feedcache.core.logging import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

ErrorHook = Callable[[str, str | None, BaseException], None]


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a fail-soft call: either a value or the error that replaced it."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        """Return the value on success, ``default`` on failure."""
        return self.value if self.error is None else default

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Result[T]":
        return cls(error=error)


async def fail_soft(
    operation: str,
    call: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = None,
    key: str | None = None,
    stage: str = "FAIL_SOFT",
    on_error: ErrorHook | None = None,
) -> Result[T]:
    """
    Run ``call`` and capture any failure as a ``Result``.

    Args:
        operation: Short name used in logs and metrics ("cache_get", "find", ...)
        call: Zero-argument coroutine factory
        timeout: Seconds before the call counts as failed (None = unbounded)
        key: Affected key or item id, for logging
        stage: Log stage of the caller
        on_error: Hook called as ``on_error(operation, key, error)``

    Returns:
        Result: success with the call's value, or failure with the exception

    Cancellation is never captured.
    """
    try:
        if timeout is None:
            value = await call()
        else:
            value = await asyncio.wait_for(call(), timeout=timeout)
        return Result.success(value)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        if isinstance(e, asyncio.TimeoutError):
            e = TimeoutError(f"{operation} timed out after {timeout}s")
        log_stage(
            logger,
            stage,
            f"{operation} failed",
            level="warning",
            operation=operation,
            key=key,
            error=str(e),
            error_type=type(e).__name__,
        )
        if on_error is not None:
            on_error(operation, key, e)
        return Result.failure(e)
