import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Union

from .client import BoundHttpClient, HttpClient
from .compose import HttpWrapper, install_policy
from .merge import has_header, merge_request_options
from .types import RequestOptions

DEFAULT_HEADER_NAME = "x-request-id"
TRACING_POLICY = "tracing"

_logger = logging.getLogger("layercake")


@dataclass(frozen=True)
class TracingOptions:
    header_name: str = DEFAULT_HEADER_NAME
    # fn(ctx) -> id | None, may be async
    get_id: Union[Callable[[Any], Any], None] = None


async def safe_get_id(ctx: Any, opts: TracingOptions) -> Union[str, None]:
    """Resolve the correlation id; failures and blank values mean no header."""
    if opts.get_id is None:
        return None
    try:
        value = opts.get_id(ctx)
        if inspect.isawaitable(value):
            value = await value
    except Exception as e:
        with contextlib.suppress(Exception):
            _logger.debug(f"tracing get_id failed ({e!r}); skipping header")
        return None
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def with_correlation_id_header(
    options: RequestOptions, header_name: str, request_id: Union[str, None]
) -> RequestOptions:
    if not request_id or has_header(options.get("headers"), header_name):
        return options
    return merge_request_options(options, {"headers": {header_name: request_id}})


def _wrap_bound(this: HttpClient, bound: BoundHttpClient, ctx, opts: TracingOptions):
    request_fn = bound.request_fn
    header_name = opts.header_name.lower()

    async def traced(route, options=None):
        request_id = await safe_get_id(ctx, opts)
        next_options = with_correlation_id_header(
            merge_request_options(options or {}), header_name, request_id
        )
        return await request_fn(route, next_options)

    return bound.with_request(traced)


def with_tracing(header_name: str = DEFAULT_HEADER_NAME, get_id=None) -> HttpWrapper:
    """Propagate a correlation id resolved from ctx. An existing header is never overwritten."""
    return install_policy(TRACING_POLICY, TracingOptions(header_name, get_id), _wrap_bound)
