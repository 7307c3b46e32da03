"""
Backoff-aware HTTP client for the pipeline.

Every upstream call (profile, game stream, inference, health ping) goes
through `BackoffFetcher.send`, which:
- Retries 429, 5xx and network-level failures (timeouts included).
- Returns any other response immediately; 4xx other than 429 is permanent.
- Waits base * 2^(attempt-1) between attempts, unless the server sent a
  Retry-After hint, which wins.
- Perturbs each wait by +/-20% and never waits a negative amount.
- Tells the caller about every wait through the optional `on_retry` callback.

After the budget is spent the last failing response is returned (HTTP
failures) or the last network error is raised.
"""

from __future__ import annotations

import asyncio
import email.utils
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

logger = logging.getLogger("openingrec.ingestion.fetch")

MAX_RETRIES_DEFAULT = 5
BASE_DELAY_SECONDS_DEFAULT = 1.0
TIMEOUT_SECONDS_DEFAULT = 30.0
JITTER_FACTOR = 0.2

# (message, attempt)
RetryCallback = Callable[[str, int], None]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RetryDelay:
    """Wait before the next attempt; `base_seconds` is the pre-jitter value."""
    base_seconds: float
    seconds: float


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Retry-After as seconds. Accepts delta-seconds or an HTTP date."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(int(value))
    except ValueError:
        try:
            when = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when is None:
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return max(0.0, seconds)


def compute_delay(
    attempt: int,
    *,
    base_delay_seconds: float = BASE_DELAY_SECONDS_DEFAULT,
    retry_after_seconds: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> RetryDelay:
    """Delay before retry number `attempt` (1-based)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1 (got {attempt})")
    base = base_delay_seconds * (2 ** (attempt - 1))
    if retry_after_seconds is not None:
        base = retry_after_seconds
    jitter = base * JITTER_FACTOR * ((rng or random).uniform(-1.0, 1.0))
    return RetryDelay(base_seconds=base, seconds=max(0.0, base + jitter))


class BackoffFetcher:
    """
    Thin retry layer over a shared `httpx.AsyncClient`.

    The fetcher owns the client it creates; a client passed in by the caller
    (tests use `httpx.MockTransport`) is closed as well by `close()`.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        max_retries: int = MAX_RETRIES_DEFAULT,
        base_delay_seconds: float = BASE_DELAY_SECONDS_DEFAULT,
        timeout_seconds: float = TIMEOUT_SECONDS_DEFAULT,
        sleep: Optional[SleepFn] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self._timeout = httpx.Timeout(timeout_seconds)
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        stream: bool = False,
        timeout_seconds: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> httpx.Response:
        """
        Execute a request with retry.

        With stream=True the body is left unread; the caller must close the
        returned response (`await response.aclose()`).
        """
        timeout = httpx.Timeout(timeout_seconds) if timeout_seconds is not None else self._timeout
        attempt = 0

        while True:
            request = self._client.build_request(
                method, url, params=params, headers=headers, json=json, timeout=timeout
            )
            try:
                response = await self._client.send(request, stream=stream)
            except httpx.RequestError as e:
                attempt += 1
                if attempt > self._max_retries:
                    logger.warning(f"Network error for {url}, retry budget spent: {e!r}")
                    raise
                delay = compute_delay(attempt, base_delay_seconds=self._base_delay, rng=self._rng)
                message = (
                    f"Network error (Attempt {attempt}/{self._max_retries}). "
                    f"Retrying in {delay.seconds:.1f}s..."
                )
                logger.warning(f"{message} [{url}: {e!r}]")
                self._notify(on_retry, message, attempt)
                await self._sleep(delay.seconds)
                continue

            if response.is_success or not is_retryable_status(response.status_code):
                return response

            if attempt >= self._max_retries:
                logger.warning(f"Giving up on {url} after {attempt} retries (status {response.status_code})")
                return response

            attempt += 1
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            delay = compute_delay(
                attempt,
                base_delay_seconds=self._base_delay,
                retry_after_seconds=retry_after,
                rng=self._rng,
            )
            await response.aclose()

            message = (
                f"Server is busy (Attempt {attempt}/{self._max_retries}). "
                f"Retrying in {delay.seconds:.1f}s..."
            )
            logger.warning(f"{message} [{url}: HTTP {response.status_code}]")
            self._notify(on_retry, message, attempt)
            await self._sleep(delay.seconds)

    @staticmethod
    def _notify(on_retry: Optional[RetryCallback], message: str, attempt: int) -> None:
        if on_retry is None:
            return
        try:
            on_retry(message, attempt)
        except Exception:  # noqa: BLE001
            # A broken progress callback must not abort the fetch.
            logger.exception("on_retry callback failed")

    async def close(self) -> None:
        """Cleanup resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "BackoffFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
