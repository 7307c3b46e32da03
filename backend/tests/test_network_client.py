from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone

import httpx
import pytest

from conftest import SleepRecorder, make_fetcher
from ingestion.core.network_client import JITTER_FACTOR, compute_delay, is_retryable_status, parse_retry_after


UTC = timezone.utc


def _sequence_handler(responses: list[httpx.Response], calls: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return responses[min(len(calls), len(responses)) - 1]

    return handler


def test_retryable_statuses():
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(503)
    assert not is_retryable_status(404)
    assert not is_retryable_status(400)


def test_parse_retry_after_seconds_and_dates():
    assert parse_retry_after("5") == 5.0
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None

    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
    assert parse_retry_after("Mon, 01 Jan 2024 12:00:10 GMT", now=now) == 10.0


def test_delay_schedule_doubles_and_jitter_stays_within_bounds():
    rng = random.Random(1)
    previous_base = 0.0
    for attempt in range(1, 8):
        delay = compute_delay(attempt, base_delay_seconds=1.0, rng=rng)
        assert delay.base_seconds == 2 ** (attempt - 1)
        assert delay.base_seconds >= previous_base
        assert delay.seconds >= 0
        assert abs(delay.seconds - delay.base_seconds) <= delay.base_seconds * JITTER_FACTOR + 1e-9
        previous_base = delay.base_seconds


def test_retry_after_hint_overrides_computed_delay():
    delay = compute_delay(4, base_delay_seconds=1.0, retry_after_seconds=3.0, rng=random.Random(3))
    assert delay.base_seconds == 3.0
    assert 2.4 <= delay.seconds <= 3.6

    zero = compute_delay(1, retry_after_seconds=0.0, rng=random.Random(3))
    assert zero.seconds == 0.0


def test_attempt_must_be_positive():
    with pytest.raises(ValueError):
        compute_delay(0)


def test_rate_limited_then_success_retries_once():
    calls: list[httpx.Request] = []
    sleep = SleepRecorder()
    fetcher = make_fetcher(
        _sequence_handler(
            [httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200, json={"ok": True})],
            calls,
        ),
        sleep=sleep,
    )
    notifications: list[tuple[str, int]] = []

    async def run() -> httpx.Response:
        async with fetcher:
            return await fetcher.send(
                "GET", "https://lichess.test/api/user/alice", on_retry=lambda m, a: notifications.append((m, a))
            )

    response = asyncio.run(run())
    assert response.status_code == 200
    assert len(calls) == 2
    assert len(sleep.delays) == 1
    assert 1.6 <= sleep.delays[0] <= 2.4
    assert notifications[0][1] == 1
    assert notifications[0][0].startswith("Server is busy (Attempt 1/5)")


def test_server_errors_exhaust_budget_and_return_last_response():
    calls: list[httpx.Request] = []
    sleep = SleepRecorder()
    fetcher = make_fetcher(_sequence_handler([httpx.Response(503)], calls), max_retries=3, sleep=sleep)

    async def run() -> httpx.Response:
        async with fetcher:
            return await fetcher.send("GET", "https://lichess.test/api/user/alice")

    response = asyncio.run(run())
    assert response.status_code == 503
    # Initial request plus three retries.
    assert len(calls) == 4
    assert len(sleep.delays) == 3
    for attempt, delay in enumerate(sleep.delays, start=1):
        base = 2 ** (attempt - 1)
        assert base * 0.8 - 1e-9 <= delay <= base * 1.2 + 1e-9


def test_client_errors_are_not_retried():
    calls: list[httpx.Request] = []
    sleep = SleepRecorder()
    fetcher = make_fetcher(_sequence_handler([httpx.Response(404)], calls), sleep=sleep)

    async def run() -> httpx.Response:
        async with fetcher:
            return await fetcher.send("GET", "https://lichess.test/api/user/nobody")

    assert asyncio.run(run()).status_code == 404
    assert len(calls) == 1
    assert sleep.delays == []


def test_network_errors_are_raised_after_budget():
    calls: list[httpx.Request] = []
    sleep = SleepRecorder()

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = make_fetcher(handler, max_retries=2, sleep=sleep)

    async def run() -> None:
        async with fetcher:
            await fetcher.send("GET", "https://lichess.test/api/user/alice")

    with pytest.raises(httpx.ConnectError):
        asyncio.run(run())
    assert len(calls) == 3
    assert len(sleep.delays) == 2


def test_timeouts_count_as_retryable_network_failures():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, text="ok")

    fetcher = make_fetcher(handler)

    async def run() -> httpx.Response:
        async with fetcher:
            return await fetcher.send("GET", "https://inference.test/health")

    assert asyncio.run(run()).status_code == 200
    assert len(calls) == 2


def test_broken_retry_callback_does_not_abort_fetch():
    calls: list[httpx.Request] = []
    fetcher = make_fetcher(_sequence_handler([httpx.Response(500), httpx.Response(200)], calls))

    def explode(message: str, attempt: int) -> None:
        raise RuntimeError("ui went away")

    async def run() -> httpx.Response:
        async with fetcher:
            return await fetcher.send("GET", "https://lichess.test/x", on_retry=explode)

    assert asyncio.run(run()).status_code == 200
