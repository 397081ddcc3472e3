"""Timeout and deadline propagation.

``with_timeout`` only computes the numeric ``timeout`` option and, optionally,
a deadline header. Turning the timeout into cancellation is the executor's job.

Semantics:
- The base timeout is the per-request ``timeout``, else the bind config
  timeout, else ``default_timeout``.
- With ``propagate_deadline`` and a deadline on ctx, the effective timeout is
  clamped to the time remaining (never below ``min_timeout``).
- A deadline already in the past fails fast with ``DeadlineExceededError``;
  the inner layers never run.
"""

import contextlib
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Union

from .client import BoundHttpClient, HttpClient
from .compose import HttpWrapper, install_policy
from .errors import ConfigurationError, DeadlineExceededError
from .merge import has_header, merge_request_options
from .types import DeadlineComputation, DeadlineHeaderConfig, RequestOptions, TimeoutPolicy

TIMEOUT_POLICY = "timeout"
DEADLINE_HEADER_MODES = ("absolute-ms", "relative-ms")

_logger = logging.getLogger("layercake")


def _now_ms() -> float:
    return time.time() * 1000.0


def _finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_min(value: float, minimum: float) -> float:
    return minimum if value < minimum else value


def parse_deadline_header(value: Union[str, DeadlineHeaderConfig]) -> DeadlineHeaderConfig:
    """Accept a DeadlineHeaderConfig or the "name[,mode]" shorthand."""
    if isinstance(value, DeadlineHeaderConfig):
        if not value.name:
            raise ConfigurationError("deadline_header requires a header name.")
        if value.mode not in DEADLINE_HEADER_MODES:
            raise ConfigurationError(f'Invalid deadline_header mode "{value.mode}".')
        return value
    parts = [p.strip() for p in value.split(",") if p.strip()]
    if not parts:
        raise ConfigurationError("deadline_header shorthand requires a header name.")
    mode = parts[1] if len(parts) > 1 else "relative-ms"
    if mode not in DEADLINE_HEADER_MODES:
        raise ConfigurationError(f'Invalid deadline_header mode "{mode}".')
    return DeadlineHeaderConfig(name=parts[0], mode=mode)


def get_deadline_ms(ctx: Any, policy: TimeoutPolicy) -> Union[float, None]:
    """Resolve an absolute deadline (epoch ms) from ctx; None when absent."""
    if policy.get_deadline is not None:
        try:
            by_fn = policy.get_deadline(ctx)
        except Exception as e:
            with contextlib.suppress(Exception):
                _logger.debug(f"get_deadline failed ({e!r}); treating as no deadline")
            return None
        if _finite_number(by_fn):
            return by_fn
    if isinstance(ctx, Mapping):
        deadline = ctx.get("deadline")
    else:
        deadline = getattr(ctx, "deadline", None)
    return deadline if _finite_number(deadline) else None


def compute_timeout(
    ctx: Any,
    options: Union[RequestOptions, None],
    policy: TimeoutPolicy,
    config_timeout: Union[float, None] = None,
) -> DeadlineComputation:
    base_timeout = (options or {}).get("timeout")
    if base_timeout is None:
        base_timeout = config_timeout if config_timeout is not None else policy.default_timeout
    if not policy.propagate_deadline:
        return DeadlineComputation(timeout=base_timeout)

    deadline_ms = get_deadline_ms(ctx, policy)
    if deadline_ms is None:
        return DeadlineComputation(timeout=base_timeout)

    remaining_ms = deadline_ms - _now_ms()
    if remaining_ms <= 0:
        return DeadlineComputation(timeout=0, remaining_ms=remaining_ms, deadline_ms=deadline_ms)

    remaining_ms = clamp_min(remaining_ms, policy.min_timeout)
    timeout = remaining_ms if base_timeout is None else min(base_timeout, remaining_ms)
    return DeadlineComputation(timeout=timeout, remaining_ms=remaining_ms, deadline_ms=deadline_ms)


def _format_ms(value: float) -> str:
    return str(int(round(value)))


def with_deadline_header(
    options: RequestOptions,
    deadline_ms: float,
    remaining_ms: float,
    config: DeadlineHeaderConfig,
) -> RequestOptions:
    name = config.name.lower()
    if config.respect_existing and has_header(options.get("headers"), name):
        return options
    value = deadline_ms if config.mode == "absolute-ms" else remaining_ms
    return merge_request_options(options, {"headers": {name: _format_ms(value)}})


def _wrap_request(request_fn, ctx, policy: TimeoutPolicy, config_timeout):
    header = parse_deadline_header(policy.deadline_header) if policy.deadline_header else None

    async def timed(route, options: Union[RequestOptions, None] = None):
        computed = compute_timeout(ctx, options, policy, config_timeout)
        if computed.deadline_ms is not None and computed.remaining_ms <= 0:
            raise DeadlineExceededError("Deadline exceeded")

        override = {} if computed.timeout is None else {"timeout": computed.timeout}
        next_options = merge_request_options(options or {}, override)
        if header is not None and computed.deadline_ms is not None:
            remaining = clamp_min(computed.deadline_ms - _now_ms(), policy.min_timeout)
            next_options = with_deadline_header(
                next_options, computed.deadline_ms, remaining, header
            )
        return await request_fn(route, next_options)

    return timed


def _wrap_bound(this: HttpClient, bound: BoundHttpClient, ctx, policy: TimeoutPolicy):
    config_timeout = bound.config.timeout if bound.config is not None else None
    return bound.with_request(_wrap_request(bound.request_fn, ctx, policy, config_timeout))


def with_timeout(arg: Union[float, TimeoutPolicy, None] = None, **kwargs) -> HttpWrapper:
    """Add a default timeout and deadline propagation to a client.

    ``arg`` is a default timeout in milliseconds or a ``TimeoutPolicy``; keywords
    (default_timeout, propagate_deadline, min_timeout, get_deadline,
    deadline_header) override its fields. ``deadline_header`` is a
    ``DeadlineHeaderConfig`` or the shorthand "x-timeout-ms,relative-ms".

    Example:
        client = compose(http, with_timeout(5000, deadline_header="x-timeout-ms"))(
            "https://api.example.com"
        )
        await client.bind({"deadline": time.time() * 1000 + 1000}).request("GET /lists")
    """
    if isinstance(arg, TimeoutPolicy):
        policy = replace(arg, **kwargs)
    else:
        if arg is not None:
            kwargs.setdefault("default_timeout", arg)
        policy = TimeoutPolicy(**kwargs)
    if policy.deadline_header:
        parse_deadline_header(policy.deadline_header)
    if policy.min_timeout < 0:
        raise ConfigurationError("min_timeout must be >= 0")
    return install_policy(TIMEOUT_POLICY, policy, _wrap_bound)
