import inspect
from dataclasses import replace
from typing import Any, Awaitable, Callable, Union

from .client import BoundHttpClient, HttpClient
from .compose import HttpWrapper, install_policy
from .merge import merge_request_options
from .types import AuthConfig, RequestOptions

AuthStrategy = Callable[[Any], Union[RequestOptions, Awaitable[Union[RequestOptions, None]], None]]

AUTH_POLICY = "auth"


def _wrap_bound(this: HttpClient, bound: BoundHttpClient, ctx, strategy: AuthStrategy):
    request_fn = bound.request_fn

    async def authed(route, options=None):
        auth = strategy(ctx)
        if inspect.isawaitable(auth):
            auth = await auth
        return await request_fn(route, merge_request_options(options or {}, auth or {}))

    return bound.with_request(authed)


def with_auth(strategy: AuthStrategy) -> HttpWrapper:
    """Run ``strategy(ctx)`` on every request and merge its options on top (auth wins).

    The strategy may be async. Applying ``with_auth`` again replaces the strategy.
    """
    if not callable(strategy):
        raise TypeError("with_auth strategy must be callable")
    return install_policy(AUTH_POLICY, strategy, _wrap_bound)


def bearer_auth(
    token: Union[str, Callable[[Any], Any]], auth_config: Union[AuthConfig, None] = None, **kwargs
) -> AuthStrategy:
    """Build an auth strategy injecting a token as a header or a query parameter.

    Args:
        token: the token, or fn(ctx) returning it (may be async)
        auth_config: AuthConfig object; keywords (header, scheme, in_, query_param) override it
    """
    config = replace(auth_config or AuthConfig(), **kwargs)

    async def strategy(ctx):
        value = token(ctx) if callable(token) else token
        if inspect.isawaitable(value):
            value = await value
        if not value:
            return None
        if config.in_ == "query":
            return {"query": {config.query_param: value}}
        return {"headers": {config.header: f"{config.scheme} {value}".strip()}}

    return strategy
