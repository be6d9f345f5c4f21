"""HTTP rate-limit and transient-error backoff helpers."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

log = logging.getLogger("optionpilot.rate_limit")


class RateLimitError(Exception):
    """Raised when retries are exhausted."""


def _extract_retry_after(headers: object) -> float | None:
    if not isinstance(headers, dict):
        return None
    retry_after = headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        return float(retry_after)
    except (TypeError, ValueError):
        return None


def _status_of(exc: BaseException) -> int | None:
    status: Any = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


async def backoff_request(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 5,
    *,
    max_wait: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Execute an async HTTP call, backing off on 429 and 5xx responses.

    Any other error propagates on the first attempt.
    """

    delay = 1.0
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as exc:
            status = _status_of(exc)
            if status is None or not (status == 429 or 500 <= status < 600):
                raise
            if status == 429:
                retry_after = _extract_retry_after(getattr(exc, "headers", {}))
                if retry_after is not None:
                    delay = max(delay, retry_after)
            if attempt == max_retries:
                raise RateLimitError(f"Max retries exceeded after HTTP {status}") from exc
            log.warning("rate_limit.retry", extra={"status": status, "attempt": attempt + 1, "delay": delay})
            await sleep(delay)
            delay = min(delay * 2, max_wait)
    raise RateLimitError("Max retries exceeded")
