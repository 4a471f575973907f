# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable


class RetryError(RuntimeError):
    """All attempts failed; the last failure is chained as __cause__."""


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Retry decorator for idempotent reads such as manifest fetches.

    Bootstrap phases are never wrapped in this: a failed phase goes to the
    error state and waits for an explicit retry from the user.
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        raise RetryError(f"{fn.__name__} failed after {retries} attempts") from exc
                    time.sleep(wait)
                    wait *= backoff
        return wrapper
    return decorator
