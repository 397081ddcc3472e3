"""Retry policy engine.

``with_retry`` re-invokes the inner request after a ``RequestError`` following a
delay schedule, subject to an idempotency guard and an optional token-bucket
budget shared by every request made through the composed client.

Cancellation (``AbortError``) is never retried and unknown exception types are
never retried. When retries run out the last failure is raised as is.
"""

import asyncio
import contextlib
import email.utils
import logging
import math
import random
import time
from dataclasses import replace
from datetime import timezone
from typing import Union

from .client import BoundHttpClient, HttpClient
from .compose import HttpWrapper, install_policy
from .endpoint import parse_route_method
from .errors import AbortError, ConfigurationError, RequestError
from .policies import DEFAULT_JITTER_ARGC, DEFAULT_PREDICATE_ARGC, call_flexible, coerce_budget
from .signals import AbortSignal
from .state import BudgetState
from .types import BackoffConfig, HeadersMap, RequestOptions, RequestRoute, RetryPolicy

DEFAULT_JITTER = 0.2
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS", "TRACE"})
RETRY_AFTER_STATUSES = frozenset({429, 503})
TOO_MANY_REQUESTS = 429
SERVER_ERROR = 500
SHORTHAND_PARTS = 3  # "exp,1,3"

RETRY_POLICY = "retry"
BUDGET_RESOURCE = "retry.budget"

_logger = logging.getLogger("layercake")


# ---------- schedule ----------


def is_idempotent_method(method: str) -> bool:
    return method.upper() in IDEMPOTENT_METHODS


def parse_retries_shorthand(value: str) -> Union[tuple[str, float, int], None]:
    """Parse "strategy,base,count" (e.g. "exp,1,3"); None when malformed."""
    parts = [p.strip() for p in value.split(",") if p.strip()]
    if len(parts) != SHORTHAND_PARTS:
        return None
    strategy, base_raw, count_raw = parts
    if strategy not in ("exp", "linear"):
        return None
    try:
        base = float(base_raw)
        count = int(count_raw)
    except ValueError:
        return None
    if not math.isfinite(base) or base < 0 or count < 0:
        return None
    return strategy, base, count


def build_backoff_schedule(count: int, backoff: Union[BackoffConfig, None] = None) -> list[float]:
    backoff = backoff or BackoffConfig()
    schedule = []
    for attempt in range(1, count + 1):
        if backoff.strategy == "linear":
            delay = backoff.base_delay * attempt
        else:
            delay = backoff.base_delay * backoff.factor ** (attempt - 1)
        schedule.append(min(delay, backoff.max_delay))
    return schedule


def _valid_delay(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def resolve_retry_schedule(policy: RetryPolicy, override=None) -> list[float]:
    """Resolve the delay schedule (seconds) from a per-request override or the policy.

    Raises:
        ConfigurationError: malformed schedule input
    """
    retries = override if override is not None else policy.retries
    if retries is None:
        return []
    if isinstance(retries, bool):
        raise ConfigurationError("retries must be a count, a list of delays or a shorthand string")
    if isinstance(retries, (list, tuple)):
        if not all(_valid_delay(d) for d in retries):
            raise ConfigurationError(f"Invalid retry delays {list(retries)!r}; expected seconds >= 0.")
        return [float(d) for d in retries]
    if isinstance(retries, (int, float)):
        if not math.isfinite(retries):
            raise ConfigurationError(f"Invalid retry count {retries!r}.")
        return build_backoff_schedule(max(0, math.floor(retries)), policy.backoff)
    if isinstance(retries, str):
        parsed = parse_retries_shorthand(retries)
        if parsed is None:
            raise ConfigurationError(f'Invalid retries shorthand "{retries}".')
        strategy, base, count = parsed
        return build_backoff_schedule(
            count, replace(policy.backoff, strategy=strategy, base_delay=base)
        )
    raise ConfigurationError("retries must be a count, a list of delays or a shorthand string")


# ---------- delay ----------


def apply_jitter(delay: float, attempt: int, jitter=DEFAULT_JITTER) -> float:
    """Randomize ``delay`` symmetrically by ``jitter`` ratio, or via a custom function."""
    if delay <= 0:
        return 0.0
    if callable(jitter):
        try:
            value = call_flexible(jitter, delay, attempt, default_argc=DEFAULT_JITTER_ARGC)
        except Exception as e:
            with contextlib.suppress(Exception):
                _logger.debug(f"jitter function failed ({e!r}); using {delay}s")
            return delay
        return float(value) if _valid_delay(value) else delay
    ratio = DEFAULT_JITTER if jitter is None else jitter
    if not _valid_delay(ratio) or ratio <= 0:
        return delay
    delta = delay * min(ratio, 1.0)
    return random.uniform(max(0.0, delay - delta), delay + delta)


def parse_retry_after(headers: Union[HeadersMap, None], now: Union[float, None] = None):
    """Return Retry-After in seconds (delta-seconds or HTTP-date), or None when absent/invalid."""
    if not headers:
        return None
    value = headers.get("retry-after")
    if isinstance(value, list):
        value = value[0] if value else None
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        ts = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    return max(0.0, ts.timestamp() - now)


async def sleep(delay: float, signal: Union[AbortSignal, None] = None) -> None:
    """Sleep ``delay`` seconds; an abort on ``signal`` ends the sleep with its AbortError."""
    if delay <= 0:
        return
    if signal is None:
        await asyncio.sleep(delay)
        return
    signal.raise_if_aborted()
    try:
        await asyncio.wait_for(signal.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise signal.error()


# ---------- engine ----------


def _should_retry(policy: RetryPolicy, error: RequestError, route: RequestRoute, attempt: int):
    if policy.should_retry is not None:
        meta = {"route": route, "attempt": attempt}
        return bool(
            call_flexible(policy.should_retry, error, meta, default_argc=DEFAULT_PREDICATE_ARGC)
        )
    status = error.status
    return status is None or status == TOO_MANY_REQUESTS or status >= SERVER_ERROR


def compute_retry_delay(
    error: RequestError,
    policy: RetryPolicy,
    budget: Union[BudgetState, None],
    route: RequestRoute,
    attempt: int,
    schedule: list[float],
) -> Union[float, None]:
    """Return the delay in seconds before the next attempt, or None to give up."""
    if not _should_retry(policy, error, route, attempt):
        return None
    if attempt >= len(schedule):
        return None
    if budget is not None and not budget.try_consume():
        with contextlib.suppress(Exception):
            _logger.debug(f"retry budget exhausted ({budget.tokens:.2f} tokens); giving up")
        return None
    retry_after = None
    if error.status in RETRY_AFTER_STATUSES and error.response is not None:
        retry_after = parse_retry_after(error.response.headers)
    base = retry_after if retry_after is not None else schedule[attempt]
    return apply_jitter(base, attempt + 1, policy.jitter)


def _wrap_request(request_fn, policy: RetryPolicy, budget, config_retries):
    async def retrying(route: RequestRoute, options: Union[RequestOptions, None] = None):
        method = parse_route_method(route)
        if not policy.allow_non_idempotent and not is_idempotent_method(method):
            return await request_fn(route, options)

        override = (options or {}).get("retries")
        if override is None:
            override = config_retries
        schedule = resolve_retry_schedule(policy, override)
        if not schedule:
            return await request_fn(route, options)

        signal = (options or {}).get("signal")
        attempt = 0
        while True:
            try:
                result = await request_fn(route, options)
            except AbortError:
                raise
            except RequestError as error:
                delay = compute_retry_delay(error, policy, budget, route, attempt, schedule)
                if delay is None:
                    raise
                with contextlib.suppress(Exception):
                    _logger.info(
                        f"{error.status or 'network error'} on {method} "
                        f"{error.request.url}; retry {attempt + 1}/{len(schedule)} in {delay:.3f}s"
                    )
                await sleep(delay, signal)
                attempt += 1
                continue
            if budget is not None:
                budget.refill()
            return result

    return retrying


def _wrap_bound(this: HttpClient, bound: BoundHttpClient, ctx, policy: RetryPolicy):
    budget_config = coerce_budget(policy.budget)
    budget = (
        this.resource(BUDGET_RESOURCE, lambda: BudgetState(budget_config))
        if budget_config is not None
        else None
    )
    config_retries = bound.config.retries if bound.config is not None else None
    return bound.with_request(_wrap_request(bound.request_fn, policy, budget, config_retries))


def _check_single_budget(existing: RetryPolicy, new: RetryPolicy) -> None:
    old_budget, new_budget = coerce_budget(existing.budget), coerce_budget(new.budget)
    if old_budget is not None and new_budget is not None and old_budget != new_budget:
        raise ConfigurationError(
            "with_retry applied twice with different budgets; a client holds one retry budget"
        )


def with_retry(policy: Union[RetryPolicy, None] = None, **kwargs) -> HttpWrapper:
    """Add retries to a client.

    Accepts a ``RetryPolicy`` and/or its fields as keywords (keywords win):
    - retries: int (count with backoff), list of delays in seconds, or "exp,1,3"
    - backoff: BackoffConfig (or dict) used for counts and shorthands
    - jitter: ratio in [0, 1] (default 0.2) or fn(delay_seconds, attempt)
    - budget: "off" | "conservative" | "balanced" | "aggressive" |
        "budget,max,refill,cost" | RetryBudgetConfig
    - should_retry: fn(error, meta) -> bool
    - allow_non_idempotent: retry POST/PATCH too (default False)

    Applying ``with_retry`` again on the same client replaces the policy.

    Raises:
        ConfigurationError: malformed schedule or budget, raised here rather than per request
    """
    if isinstance(kwargs.get("backoff"), dict):
        kwargs["backoff"] = BackoffConfig(**kwargs["backoff"])
    policy = replace(policy, **kwargs) if policy is not None else RetryPolicy(**kwargs)
    resolve_retry_schedule(policy)
    coerce_budget(policy.budget)
    return install_policy(RETRY_POLICY, policy, _wrap_bound, check=_check_single_budget)
