from typing import Any, Callable, Union

from .client import BoundHttpClient, HttpClient
from .types import HttpConfig

HttpWrapper = Callable[[HttpClient], HttpClient]
HttpFactory = Callable[..., HttpClient]
WrapBound = Callable[[HttpClient, BoundHttpClient, Any, Any], BoundHttpClient]


def compose(base: HttpFactory, *wrappers: HttpWrapper) -> HttpFactory:
    """Compose a base client factory with policy wrappers applied in order.

    Later wrappers are outer layers: they see options first on the way in and
    outcomes last on the way out.
    """

    def factory(*args, **kwargs) -> HttpClient:
        client = base(*args, **kwargs)
        for wrapper in wrappers:
            client = wrapper(client)
        return client

    return factory


def install_policy(
    kind: str,
    options: Any,
    wrap_bound: WrapBound,
    check: Union[Callable[[Any, Any], None], None] = None,
) -> HttpWrapper:
    """Build a wrapper that installs one ``kind`` of policy at most once per client.

    If the client already carries ``kind`` only its options are replaced (last
    wins) and the existing layer picks them up on the next bind. ``check`` may
    raise ``ConfigurationError`` to refuse a conflicting reinstallation.
    """

    def wrapper(client: HttpClient) -> HttpClient:
        if client.has_policy(kind):
            if check is not None:
                check(client.policy(kind), options)
            return client.derive(kind, options)

        inner = client.bind_fn

        def bind_fn(this: HttpClient, ctx: Any, config: Union[HttpConfig, None] = None):
            bound = inner(this, ctx, config)
            return wrap_bound(this, bound, ctx, this.policy(kind))

        return client.derive(kind, options, bind_fn=bind_fn)

    return wrapper
