"""Bounded retry for ETag-guarded index writes."""
import os
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from docvault.errors import PreconditionFailedError
from docvault.logging import get_logger

logger = get_logger(__name__)

INDEX_WRITE_ATTEMPTS = int(os.getenv("INDEX_WRITE_ATTEMPTS", "3"))
INDEX_RETRY_WAIT_MAX = float(os.getenv("INDEX_RETRY_WAIT_MAX", "1.0"))

T = TypeVar("T")


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.warning("index_write_conflict", extra={
        "operation": getattr(retry_state.fn, "__name__", str(retry_state.fn)),
        "attempt": retry_state.attempt_number,
        "call_args": [str(a) for a in retry_state.args[:2]],
    })


def with_conflict_retry(fn: Callable[..., T], *args: Any, attempts: int = None, **kwargs: Any) -> T:
    """
    Call ``fn(*args, **kwargs)``, re-running it on ``PreconditionFailedError``.

    Each attempt re-reads the document, so a retry applies the change on top
    of whatever the concurrent writer left. After the last attempt the
    conflict is re-raised for the caller to report.
    """
    retryer = Retrying(
        stop=stop_after_attempt(attempts or INDEX_WRITE_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=INDEX_RETRY_WAIT_MAX),
        retry=retry_if_exception_type(PreconditionFailedError),
        before_sleep=_log_conflict,
        reraise=True,
    )
    return retryer(fn, *args, **kwargs)
