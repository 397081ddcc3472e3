import asyncio
import time
from datetime import datetime, timezone
from email.utils import format_datetime

import pytest

import layercake.retry as retry_mod
from layercake import (
    AbortController,
    AbortError,
    BackoffConfig,
    ConfigurationError,
    HttpConfig,
    RequestError,
    RetryBudgetConfig,
    RetryPolicy,
    TransportResponse,
    compose,
    http,
    with_auth,
    with_retry,
)
from layercake.retry import (
    apply_jitter,
    build_backoff_schedule,
    is_idempotent_method,
    parse_retries_shorthand,
    parse_retry_after,
    resolve_retry_schedule,
)

API = "https://api.test"


def _fetch(*statuses, headers=None):
    calls = []

    async def fetch(url, init):
        calls.append(init.method)
        status = statuses[min(len(calls), len(statuses)) - 1]
        if isinstance(status, Exception):
            raise status
        return TransportResponse(status, url, headers or [], b"")

    return fetch, calls


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay, signal=None):
        recorded.append(delay)

    monkeypatch.setattr(retry_mod, "sleep", fake_sleep)
    return recorded


def _client(fetch, **policy):
    policy.setdefault("jitter", 0)
    return compose(http, with_retry(**policy))(API, fetch)


# ---------- engine ----------


@pytest.mark.asyncio
async def test_retries_after_503_with_scheduled_delay(sleeps):
    fetch, calls = _fetch(503, 200)
    resp = await _client(fetch, retries=[1]).bind({}).get("/x")
    assert resp.status == 200  # noqa: PLR2004
    assert len(calls) == 2  # noqa: PLR2004
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_exhaustion_raises_last_error(sleeps):
    fetch, calls = _fetch(500, 502, 503)
    with pytest.raises(RequestError) as exc:
        await _client(fetch, retries=[0.1, 0.2]).bind({}).get("/x")
    assert exc.value.status == 503  # noqa: PLR2004
    assert len(calls) == 3  # noqa: PLR2004
    assert sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(sleeps):
    fetch, calls = _fetch(404)
    with pytest.raises(RequestError):
        await _client(fetch, retries=3).bind({}).get("/x")
    assert len(calls) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_network_errors_and_429_are_retried(sleeps):
    fetch, calls = _fetch(ConnectionError("reset"), 429, 200)
    resp = await _client(fetch, retries=[0.5, 0.5]).bind({}).get("/x")
    assert resp.status == 200  # noqa: PLR2004
    assert len(calls) == 3  # noqa: PLR2004


@pytest.mark.asyncio
async def test_non_idempotent_methods_are_attempted_once(sleeps):
    fetch, calls = _fetch(503, 200)
    with pytest.raises(RequestError):
        await _client(fetch, retries=[1]).bind({}).post("/x")
    assert calls == ["POST"]

    fetch, calls = _fetch(503, 200)
    resp = await _client(fetch, retries=[1], allow_non_idempotent=True).bind({}).post("/x")
    assert resp.status == 200  # noqa: PLR2004
    assert calls == ["POST", "POST"]


@pytest.mark.asyncio
async def test_budget_limits_retries(sleeps):
    fetch, calls = _fetch(503)
    client = _client(fetch, retries=[0, 0], budget=RetryBudgetConfig(1, 0, 1))
    with pytest.raises(RequestError):
        await client.bind({}).get("/x")
    assert len(calls) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_success_refills_budget(sleeps):
    fetch, calls = _fetch(503, 200, 503, 200)
    client = _client(fetch, retries=[0], budget=RetryBudgetConfig(1, 1, 1))
    bound = client.bind({})
    await bound.get("/x")
    await bound.get("/x")
    assert len(calls) == 4  # noqa: PLR2004


@pytest.mark.asyncio
async def test_retry_after_seconds_overrides_schedule(sleeps):
    fetch, _ = _fetch(429, 200, headers=[("retry-after", "2")])
    await _client(fetch, retries=[0.1]).bind({}).get("/x")
    assert sleeps == [2.0]


@pytest.mark.asyncio
async def test_retry_after_is_ignored_for_other_statuses(sleeps):
    fetch, _ = _fetch(500, 200, headers=[("retry-after", "2")])
    await _client(fetch, retries=[0.1]).bind({}).get("/x")
    assert sleeps == [0.1]


@pytest.mark.asyncio
async def test_abort_during_delay_stops_retrying():
    fetch, calls = _fetch(503)
    controller = AbortController()
    client = _client(fetch, retries=[5])
    asyncio.get_running_loop().call_later(0.02, controller.abort)
    started = time.monotonic()
    with pytest.raises(AbortError):
        await client.bind({}).get("/x", {"signal": controller.signal})
    assert time.monotonic() - started < 1
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_real_delay_is_observed():
    fetch, calls = _fetch(503, 200)
    started = time.monotonic()
    await _client(fetch, retries=[0.05]).bind({}).get("/x")
    assert time.monotonic() - started >= 0.04  # noqa: PLR2004
    assert len(calls) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_unknown_exceptions_propagate_without_retry(sleeps):
    fetch, calls = _fetch(200)
    attempts = []

    def strategy(ctx):
        attempts.append(1)
        raise RuntimeError("bad auth")

    client = compose(http, with_auth(strategy), with_retry(retries=[0, 0], jitter=0))(API, fetch)
    with pytest.raises(RuntimeError):
        await client.bind({}).get("/x")
    assert len(attempts) == 1
    assert calls == []


@pytest.mark.asyncio
async def test_per_request_retries_override(sleeps):
    fetch, calls = _fetch(503)
    client = _client(fetch, retries=[0, 0, 0])
    with pytest.raises(RequestError):
        await client.bind({}).get("/x", {"retries": [0.3]})
    assert len(calls) == 2  # noqa: PLR2004
    assert sleeps == [0.3]

    with pytest.raises(ConfigurationError):
        await client.bind({}).get("/x", {"retries": "exp,nope"})


@pytest.mark.asyncio
async def test_bind_config_retries_apply(sleeps):
    fetch, calls = _fetch(503, 503, 200)
    client = _client(fetch)
    await client.bind({}, HttpConfig(retries=[0.1, 0.2])).get("/x")
    assert len(calls) == 3  # noqa: PLR2004
    assert sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_custom_should_retry_with_single_argument(sleeps):
    fetch, calls = _fetch(404, 200)
    client = _client(fetch, retries=[0.1], should_retry=lambda err: err.status == 404)  # noqa: PLR2004
    resp = await client.bind({}).get("/x")
    assert resp.status == 200  # noqa: PLR2004
    assert len(calls) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_failing_jitter_falls_back_to_scheduled_delay(sleeps):
    def jitter(delay, attempt):
        raise ValueError("boom")

    fetch, _ = _fetch(503, 200)
    await _client(fetch, retries=[0.7], jitter=jitter).bind({}).get("/x")
    assert sleeps == [0.7]


def test_invalid_configuration_is_rejected_eagerly():
    with pytest.raises(ConfigurationError):
        with_retry(retries="exp,1")
    with pytest.raises(ConfigurationError):
        with_retry(retries=[1, -1])
    with pytest.raises(ConfigurationError):
        with_retry(retries=True)
    with pytest.raises(ConfigurationError):
        with_retry(retries=float("inf"))
    with pytest.raises(ConfigurationError):
        with_retry(retries=1, budget="lavish")
    with pytest.raises(ConfigurationError):
        with_retry(retries=1, budget="budget,1,nan,1")


# ---------- schedule and delay helpers ----------


def test_idempotent_methods():
    assert is_idempotent_method("get")
    assert is_idempotent_method("PUT")
    assert not is_idempotent_method("POST")
    assert not is_idempotent_method("PATCH")


def test_backoff_schedules():
    assert build_backoff_schedule(4, BackoffConfig(base_delay=1, factor=2, max_delay=5)) == [1, 2, 4, 5]
    assert build_backoff_schedule(3, BackoffConfig(strategy="linear", base_delay=0.5)) == [0.5, 1.0, 1.5]
    assert build_backoff_schedule(0) == []


def test_shorthand_parsing():
    assert parse_retries_shorthand("exp,1,3") == ("exp", 1.0, 3)
    assert parse_retries_shorthand("linear, 0.5, 2") == ("linear", 0.5, 2)
    assert parse_retries_shorthand("cubic,1,3") is None
    assert parse_retries_shorthand("exp,1") is None
    assert parse_retries_shorthand("exp,-1,3") is None


def test_resolve_schedule_forms():
    policy = RetryPolicy(retries=2, backoff=BackoffConfig(base_delay=0.5))
    assert resolve_retry_schedule(policy) == [0.5, 1.0]
    assert resolve_retry_schedule(policy, 2.9) == [0.5, 1.0]
    assert resolve_retry_schedule(policy, "linear,1,3") == [1.0, 2.0, 3.0]
    assert resolve_retry_schedule(policy, [0, 1]) == [0.0, 1.0]
    assert resolve_retry_schedule(RetryPolicy()) == []


def test_jitter_bounds():
    for attempt in range(1, 20):
        value = apply_jitter(1.0, attempt, 0.2)
        assert 0.8 <= value <= 1.2  # noqa: PLR2004
    assert apply_jitter(1.0, 1, 0) == 1.0
    assert apply_jitter(0, 1, 0.5) == 0.0
    assert apply_jitter(1.0, 1, lambda delay: delay * 3) == 3.0  # noqa: PLR2004
    assert apply_jitter(1.0, 1, lambda delay, attempt: -1) == 1.0


def test_parse_retry_after():
    assert parse_retry_after({"retry-after": "3"}) == 3.0  # noqa: PLR2004
    assert parse_retry_after({"retry-after": "-3"}) == 0.0
    assert parse_retry_after({"retry-after": "soon"}) is None
    assert parse_retry_after({}) is None

    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    later = format_datetime(datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc), usegmt=True)
    assert parse_retry_after({"retry-after": later}, now=now.timestamp()) == pytest.approx(30.0)
    assert parse_retry_after({"retry-after": [later]}, now=now.timestamp() + 60) == 0.0
