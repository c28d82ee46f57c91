"""Rate-limited, retrying HTTP client.

Every remote fetch made by an importer goes through a
``RateLimitedClient``.  The client:

1. Paces dispatches so consecutive requests on *this instance* are at
   least ``RateLimit.min_interval_s`` apart.  The issuing caller is
   suspended; there is no background thread and no cross-instance queue.
2. Retries network errors and non-2xx responses up to ``max_retries``
   times, sleeping ``backoff_base_s * 2**attempt`` before the next attempt.
3. Raises ``NetworkError`` (carrying the last cause and the attempt
   count) once retries are exhausted.

Clock, sleep and transport are injectable so tests never touch the
network or wait in real time.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from chronomap.core.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUESTS_PER_MINUTE,
    DEFAULT_TIMEOUT_S,
    USER_AGENT,
)
from chronomap.core.exceptions import TransientError
from chronomap.models.feature import ModelValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from chronomap.core.constants import SourceDefinition

logger = logging.getLogger("chronomap.net.client")

SECONDS_PER_MINUTE = 60.0
SECONDS_PER_HOUR = 3600.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class NetworkError(TransientError):
    """Raised when a request fails after all retry attempts.

    Attributes:
        cause: The last underlying exception (``httpx.HTTPError`` or decode error).
        attempts: Number of attempts made.
        endpoint: The endpoint that was requested.
    """

    default_stage = "network"
    default_code = "NETWORK_REQUEST_FAILED"

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        attempts: int = 0,
        endpoint: str = "",
    ) -> None:
        self.cause = cause
        self.attempts = attempts
        self.endpoint = endpoint
        super().__init__(message)

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["attempts"] = self.attempts
        payload["endpoint"] = self.endpoint
        return payload


# ---------------------------------------------------------------------------
# Rate limit + stats
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RateLimit:
    """Request pacing expressed in exactly one unit.

    Leaving every unit unset selects the default of
    ``DEFAULT_REQUESTS_PER_MINUTE``.
    """

    requests_per_second: float | None = None
    requests_per_minute: float | None = None
    requests_per_hour: float | None = None

    def __post_init__(self) -> None:
        units = {
            "requests_per_second": self.requests_per_second,
            "requests_per_minute": self.requests_per_minute,
            "requests_per_hour": self.requests_per_hour,
        }
        active = {k: v for k, v in units.items() if v is not None}
        if len(active) > 1:
            raise ModelValidationError(
                "RateLimit", ",".join(active), list(active.values()), "only one unit may be set"
            )
        for key, value in active.items():
            if value <= 0:
                raise ModelValidationError("RateLimit", key, value, "must be > 0")

    @property
    def min_interval_s(self) -> float:
        """Minimum spacing between consecutive dispatches, in seconds."""
        if self.requests_per_second is not None:
            return 1.0 / self.requests_per_second
        if self.requests_per_minute is not None:
            return SECONDS_PER_MINUTE / self.requests_per_minute
        if self.requests_per_hour is not None:
            return SECONDS_PER_HOUR / self.requests_per_hour
        return SECONDS_PER_MINUTE / DEFAULT_REQUESTS_PER_MINUTE

    @classmethod
    def for_source(cls, source: SourceDefinition) -> RateLimit:
        """Build the rate limit a source definition publishes."""
        if source.requests_per_second is not None:
            return cls(requests_per_second=source.requests_per_second)
        return cls(requests_per_minute=source.requests_per_minute)


@dataclass(frozen=True, slots=True)
class ClientStats:
    """Snapshot of a client's request counters."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0

    @property
    def success_rate(self) -> float:
        finished = self.successful_requests + self.failed_requests
        if finished == 0:
            return 0.0
        return self.successful_requests / finished

    def to_dict(self) -> dict[str, object]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": round(self.success_rate, 4),
        }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RateLimitedClient:
    """HTTP client with per-instance pacing and exponential-backoff retry.

    Counters: every dispatched attempt increments ``total_requests``; a
    request that eventually succeeds increments ``successful_requests``;
    one that exhausts its retries increments ``failed_requests``.

    Example usage::

        with RateLimitedClient("eonet", EONET.base_url,
                               rate_limit=RateLimit.for_source(EONET)) as client:
            events = client.get_json("/events", params={"status": "open"})
    """

    def __init__(
        self,
        name: str,
        base_url: str = "",
        *,
        rate_limit: RateLimit | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        headers: Mapping[str, str] | None = None,
        backoff_base_s: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            msg = f"max_retries must be >= 0, got {max_retries}"
            raise ValueError(msg)
        self._name = name
        self._rate_limit = rate_limit or RateLimit()
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._clock = clock
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout_s,
            headers={"User-Agent": USER_AGENT, **dict(headers or {})},
            transport=transport,
            follow_redirects=True,
        )
        self._pace_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._last_dispatch: float | None = None
        self._total = 0
        self._succeeded = 0
        self._failed = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def rate_limit(self) -> RateLimit:
        return self._rate_limit

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send a request, pacing and retrying as configured.

        Returns:
            The first successful (2xx) ``httpx.Response``.

        Raises:
            NetworkError: After ``max_retries + 1`` failed attempts.
        """
        last_error: httpx.HTTPError | None = None
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            self._wait_for_slot()
            with self._stats_lock:
                self._total += 1
            try:
                response = self._http.request(
                    method,
                    endpoint,
                    params=params,
                    headers=headers,
                    data=data,
                    json=json,
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    delay = self._backoff_base_s * (2**attempt)
                    logger.warning(
                        "Request attempt %d/%d failed (retryable) | client=%s | "
                        "endpoint=%s | backoff=%.1fs | error=%s",
                        attempt + 1,
                        attempts,
                        self._name,
                        endpoint,
                        delay,
                        exc,
                    )
                    self._sleep(delay)
                continue

            with self._stats_lock:
                self._succeeded += 1
            logger.debug(
                "Request succeeded | client=%s | endpoint=%s | status=%d | attempt=%d",
                self._name,
                endpoint,
                response.status_code,
                attempt + 1,
            )
            return response

        with self._stats_lock:
            self._failed += 1
        logger.error(
            "Request retries exhausted | client=%s | endpoint=%s | attempts=%d | error=%s",
            self._name,
            endpoint,
            attempts,
            last_error,
        )
        msg = f"{method} {endpoint} failed after {attempts} attempts: {last_error}"
        raise NetworkError(msg, cause=last_error, attempts=attempts, endpoint=endpoint)

    def get_json(
        self,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """GET *endpoint* and decode the JSON body.

        Raises:
            NetworkError: If the request fails or the body is not JSON.
        """
        response = self.request(endpoint, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            msg = f"GET {endpoint} returned a non-JSON body: {exc}"
            raise NetworkError(msg, cause=exc, attempts=1, endpoint=endpoint) from exc

    def get_stats(self) -> ClientStats:
        """Return a snapshot of the request counters."""
        with self._stats_lock:
            return ClientStats(
                total_requests=self._total,
                successful_requests=self._succeeded,
                failed_requests=self._failed,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> RateLimitedClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Pacing
    # ------------------------------------------------------------------

    def _wait_for_slot(self) -> None:
        """Suspend the caller until the minimum interval has elapsed."""
        with self._pace_lock:
            now = self._clock()
            if self._last_dispatch is not None:
                wait = self._rate_limit.min_interval_s - (now - self._last_dispatch)
                if wait > 0:
                    logger.debug(
                        "Rate limit wait | client=%s | wait=%.3fs",
                        self._name,
                        wait,
                    )
                    self._sleep(wait)
                    now = self._clock()
            self._last_dispatch = now
