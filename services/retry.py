# services/retry.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

from errors import GenerationFailure, VerificationMismatch
from request_context import get_request_id

log = logging.getLogger("engine")

T = TypeVar("T")

RETRYABLE = (GenerationFailure, VerificationMismatch)

@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    exclusions: List[str] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None

async def retry_with_exclusions(
    attempt: Callable[[int, Tuple[str, ...]], Awaitable[T]],
    *,
    max_attempts: int,
    backoff_s: float = 0.0,
    exclusions: Iterable[str] = (),
    label: str = "",
) -> RetryOutcome[T]:
    """
    Run `attempt(n, exclusions)` up to max_attempts times.

    GenerationFailure / VerificationMismatch end an attempt; the rejected
    name (when the error carries one) joins the exclusions handed to the
    next attempt. Backoff grows linearly: backoff_s * attempt number.
    Anything else propagates.
    """
    excluded: List[str] = [e for e in exclusions if e]
    errors: List[Exception] = []
    for n in range(1, max_attempts + 1):
        try:
            value = await attempt(n, tuple(excluded))
            return RetryOutcome(value=value, attempts=n, exclusions=excluded, errors=errors)
        except RETRYABLE as e:
            errors.append(e)
            rejected = getattr(e, "name", None)
            if rejected and rejected not in excluded:
                excluded.append(rejected)
            log.info("Attempt %d/%d failed: %s", n, max_attempts, e, extra={
                "request_id": get_request_id(),
                "label": label,
            })
            if n < max_attempts and backoff_s > 0:
                await asyncio.sleep(backoff_s * n)
    return RetryOutcome(value=None, attempts=max_attempts, exclusions=excluded, errors=errors)
