"""Resilient data gateway: the only path from the handlers to the store.

Every read and write runs through :meth:`DataGateway.execute`, which

* returns immediately on success (no overhead for the common case),
* retries failures it can positively classify as *transient* (DNS
  failure, refused/reset connections, broken pipes, generic network
  errors, 5xx responses) with exponential backoff
  ``base_delay * 2 ** (attempt - 1)`` between attempts,
* surfaces *permanent* failures on the first attempt as the matching
  :mod:`sahay.errors` type (404 → NotFound, 409/unique violation →
  Conflict, anything else → InvalidInput),
* raises :class:`UnavailableError` once transient retries are exhausted,
* raises :class:`GatewayTimeoutError` when an overall deadline expires,
  regardless of how many attempts remain,
* before re-issuing a non-idempotent write, runs the caller's ``recover``
  lookup so a write that landed before its response was lost is not
  applied twice.

The gateway is built once per process (see :func:`create_gateway`) and
handed to the handlers explicitly.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
import socket
import time
from typing import Any, Callable, TypeVar

import httpx

from sahay.config import (
    GATEWAY_BASE_DELAY_SECONDS,
    GATEWAY_DEADLINE_SECONDS,
    GATEWAY_MAX_ATTEMPTS,
)
from sahay.errors import (
    ConflictError,
    GatewayTimeoutError,
    InvalidInputError,
    NotFoundError,
    SchedulingError,
    UnavailableError,
)
from sahay.services.metrics import MetricsClient, metrics as default_metrics
from sahay.services.supabase_client import StoreError, SupabaseClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERVICE = "supabase"

# PostgREST "no rows" for single-object requests, Postgres unique_violation
_PG_NO_ROWS = "PGRST116"
_PG_UNIQUE_VIOLATION = "23505"

_TRANSIENT_MESSAGE = re.compile(
    r"enotfound|eai_again|getaddrinfo|name or service not known"
    r"|temporary failure in name resolution|nodename nor servname"
    r"|econnrefused|connection refused|econnreset|connection reset"
    r"|broken pipe|epipe|network|timed out|timeout",
    re.IGNORECASE,
)

_TRANSIENT_TYPES = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    ConnectionError,
    socket.gaierror,
)


class _DeadlineExpired(Exception):
    pass


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is likely to go away on retry."""
    if isinstance(exc, SchedulingError):
        return False
    if isinstance(exc, StoreError):
        return exc.status_code is not None and exc.status_code >= 500
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    return bool(_TRANSIENT_MESSAGE.search(str(exc)))


def to_permanent_error(exc: BaseException, operation: str) -> SchedulingError:
    """Map a non-retryable failure onto the scheduling error taxonomy."""
    if isinstance(exc, SchedulingError):
        return exc
    if isinstance(exc, StoreError):
        if exc.status_code == 404 or exc.code == _PG_NO_ROWS:
            return NotFoundError(f"No matching record was found ({operation}).")
        if exc.status_code == 409 or exc.code == _PG_UNIQUE_VIOLATION:
            return ConflictError(
                "That record collides with an existing one. Choose different details."
            )
    return InvalidInputError(f"The request could not be processed ({operation}).")


class DataGateway:
    """Wraps a :class:`SupabaseClient` with retries, backoff and a deadline."""

    def __init__(
        self,
        store: SupabaseClient,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        deadline: float | None = None,
        metrics: MetricsClient | None = None,
    ):
        self._store = store
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._deadline = deadline
        self._metrics = metrics or default_metrics
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None

    # ── Core retry loop ──────────────────────────────────────────────

    def execute(
        self,
        operation: Callable[[], T],
        *,
        name: str,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        deadline: float | None = None,
        recover: Callable[[], T | None] | None = None,
    ) -> T:
        """Run *operation* with transient-failure retries.

        Args:
            operation: zero-argument callable performing one store call.
            name: identifies the operation in logs and metrics.
            max_attempts: total tries for transient failures.
            base_delay: first backoff delay in seconds (doubles each retry).
            deadline: overall budget in seconds; ``None`` uses the
                gateway default (which may itself be ``None`` = unbounded).
            recover: run before every retry; a non-``None`` result means the
                previous attempt was applied and is returned instead of
                re-running *operation*.  It may raise a
                :class:`SchedulingError` to stop retrying.
        """
        attempts = max_attempts or self._max_attempts
        delay_base = self._base_delay if base_delay is None else base_delay
        budget = self._deadline if deadline is None else deadline

        started = time.monotonic()
        expires_at = started + budget if budget else None
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                if attempt > 1 and recover is not None:
                    recovered = self._attempt(recover, expires_at)
                    if recovered is not None:
                        logger.info(
                            "%s had already been applied; recovered on attempt %d/%d",
                            name, attempt, attempts,
                        )
                        self._metrics.record_success(SERVICE, name, self._elapsed_ms(started))
                        return recovered
                result = self._attempt(operation, expires_at)
            except _DeadlineExpired:
                raise self._timed_out(name, attempt, budget, started) from None
            except Exception as exc:
                if not is_transient(exc):
                    error = to_permanent_error(exc, name)
                    logger.info(
                        "%s failed permanently on attempt %d/%d (%s: %s)",
                        name, attempt, attempts, error.error_type.value, exc,
                    )
                    self._metrics.record_failure(
                        SERVICE, name, error.error_type.value, self._elapsed_ms(started),
                    )
                    raise error from exc

                last_error = exc
                if attempt == attempts:
                    break
                delay = delay_base * (2 ** (attempt - 1))
                if expires_at is not None and time.monotonic() + delay >= expires_at:
                    raise self._timed_out(name, attempt, budget, started) from exc
                logger.warning(
                    "%s attempt %d/%d failed (%s, transient). Retrying in %.0fms",
                    name, attempt, attempts, type(exc).__name__, delay * 1000,
                )
                self._metrics.record_retry(SERVICE, name, attempt)
                time.sleep(delay)
                continue

            self._metrics.record_success(SERVICE, name, self._elapsed_ms(started))
            if attempt > 1:
                logger.info("%s succeeded on attempt %d/%d", name, attempt, attempts)
            return result

        logger.error(
            "%s unavailable after %d attempts: %s", name, attempts, last_error,
        )
        self._metrics.record_failure(
            SERVICE, name, UnavailableError.error_type.value, self._elapsed_ms(started),
        )
        raise UnavailableError(
            "The appointment system is temporarily unavailable. Please try again shortly."
        ) from last_error

    def _attempt(self, operation: Callable[[], T], expires_at: float | None) -> T:
        if expires_at is None:
            return operation()

        remaining = expires_at - time.monotonic()
        if remaining <= 0:
            raise _DeadlineExpired
        future = self._pool().submit(operation)
        try:
            return future.result(timeout=remaining)
        except concurrent.futures.TimeoutError:
            if future.done():
                raise  # the operation itself timed out; classify normally
            raise _DeadlineExpired from None

    def _timed_out(
        self, name: str, attempt: int, budget: float | None, started: float,
    ) -> GatewayTimeoutError:
        logger.error("%s exceeded its %.1fs deadline on attempt %d", name, budget or 0, attempt)
        self._metrics.record_failure(
            SERVICE, name, GatewayTimeoutError.error_type.value, self._elapsed_ms(started),
        )
        return GatewayTimeoutError(
            "The appointment system took too long to respond. Please try again."
        )

    def _pool(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=8, thread_name_prefix="gateway",
            )
        return self._executor

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.monotonic() - started) * 1000

    # ── Store operations ─────────────────────────────────────────────

    def select(self, table: str, **query: Any) -> list[dict[str, Any]]:
        return self.execute(lambda: self._store.select(table, **query), name=f"select {table}")

    def insert(
        self,
        table: str,
        row: dict[str, Any],
        *,
        recover: Callable[[], dict[str, Any] | None] | None = None,
    ) -> dict[str, Any]:
        """Insert *row*.  Without *recover* a lost response may leave a duplicate."""
        return self.execute(
            lambda: self._store.insert(table, row), name=f"insert {table}", recover=recover,
        )

    def update(
        self, table: str, values: dict[str, Any], *, match: dict[str, Any],
    ) -> list[dict[str, Any]]:
        return self.execute(
            lambda: self._store.update(table, values, match=match), name=f"update {table}",
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._store.close()


def create_gateway(store: SupabaseClient | None = None) -> DataGateway:
    """Build the process-wide gateway from configuration."""
    return DataGateway(
        store or SupabaseClient(),
        max_attempts=GATEWAY_MAX_ATTEMPTS,
        base_delay=GATEWAY_BASE_DELAY_SECONDS,
        deadline=GATEWAY_DEADLINE_SECONDS or None,
    )
