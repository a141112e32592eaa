# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/utils/retry.py
import time
import functools
from typing import Callable


class RetryError(RuntimeError):
    def __init__(self, message: str, attempts: int, last_exc: Exception | None):
        super().__init__(message)
        self.attempts = attempts
        self.last_exc = last_exc


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...],
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Re-run an idempotent operation when it raises one of `retry_on`.

    Only meant for optimistic-concurrency conflicts; transient I/O errors are
    left to the caller. Anything not in `retry_on` propagates immediately.

    retries: total number of attempts
    delay: seconds between attempts
    on_retry: callback(attempt, exception), called before sleeping
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if attempt == retries:
                        break
                    if on_retry:
                        on_retry(attempt, exc)
                    if delay:
                        time.sleep(delay)
            raise RetryError(
                f"{fn.__name__} failed after {retries} attempts", retries, last_exc
            ) from last_exc
        return wrapper
    return decorator
