"""
Retry decorator for SSH channel operations
"""
import functools
import time

import paramiko

from .logging import log, warn

RETRY_MAX = 3
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Only transport-level failures are retried; a remote command that runs and
# exits non-zero is a result, not an error.
RETRYABLE = (paramiko.SSHException, EOFError, ConnectionError, TimeoutError, OSError)


def retried(fn):
    """Decorator: retry fn up to RETRY_MAX times with exponential back-off."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        delay = RETRY_BASE_DELAY
        for attempt in range(1, RETRY_MAX + 1):
            try:
                return fn(*args, **kwargs)
            except RETRYABLE as exc:
                if attempt == RETRY_MAX:
                    raise
                warn(f"{fn.__name__} failed (attempt {attempt}/{RETRY_MAX}): {exc}")
                log(f"  retrying in {delay:.0f}s …")
                time.sleep(delay)
                delay = min(delay * 2, 30)

    return wrapper
