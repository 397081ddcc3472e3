import threading
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Union

from .endpoint import endpoint as resolve_endpoint
from .merge import apply_config_to_options, merge_config, normalize_request_options
from .request import Fetch, request
from .types import EndpointResult, HttpConfig, RequestOptions, RequestRoute, Response

RequestFn = Callable[[RequestRoute, Union[RequestOptions, None]], Awaitable[Response]]
EndpointFn = Callable[[RequestRoute, Union[RequestOptions, None]], EndpointResult]
BindFn = Callable[["HttpClient", Any, Union[HttpConfig, None]], "BoundHttpClient"]


@dataclass(frozen=True)
class BoundHttpClient:
    """A client bound to one ctx value. Policies replace ``request_fn`` layer by layer."""

    ctx: Any
    config: Union[HttpConfig, None]
    request_fn: RequestFn
    endpoint_fn: EndpointFn

    async def request(
        self, route: RequestRoute, options: Union[RequestOptions, None] = None
    ) -> Response:
        return await self.request_fn(route, options)

    def endpoint(
        self, route: RequestRoute, options: Union[RequestOptions, None] = None
    ) -> EndpointResult:
        return self.endpoint_fn(route, options)

    def with_request(self, request_fn: RequestFn) -> "BoundHttpClient":
        return replace(self, request_fn=request_fn)

    async def get(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("GET", url), options)

    async def head(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("HEAD", url), options)

    async def post(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("POST", url), options)

    async def put(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("PUT", url), options)

    async def patch(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("PATCH", url), options)

    async def delete(self, url: str, options: Union[RequestOptions, None] = None) -> Response:
        return await self.request(("DELETE", url), options)


class HttpClient:
    """Unbound client: a bind chain plus the policies installed on it.

    Wrapping never mutates a client; it derives a new one. The only mutable part
    is the resource table (e.g. the retry budget), owned by this instance alone.
    """

    def __init__(self, bind_fn: BindFn, policies: Union[dict[str, Any], None] = None):
        self._bind_fn = bind_fn
        self._policies: dict[str, Any] = dict(policies or {})
        self._resources: dict[str, Any] = {}
        self._lock = threading.Lock()

    def bind(self, ctx: Any, config: Union[HttpConfig, None] = None) -> BoundHttpClient:
        return self._bind_fn(self, ctx, config)

    @property
    def bind_fn(self) -> BindFn:
        return self._bind_fn

    def has_policy(self, kind: str) -> bool:
        return kind in self._policies

    def policy(self, kind: str, default: Any = None) -> Any:
        return self._policies.get(kind, default)

    def derive(
        self, kind: str, options: Any, bind_fn: Union[BindFn, None] = None
    ) -> "HttpClient":
        return HttpClient(bind_fn or self._bind_fn, {**self._policies, kind: options})

    def resource(self, key: str, factory: Callable[[], Any]) -> Any:
        """Return the resource stored under ``key``, creating it on first use."""
        with self._lock:
            if key not in self._resources:
                self._resources[key] = factory()
            return self._resources[key]


def http(
    endpoint: str, fetch: Union[Fetch, None] = None, config: Union[HttpConfig, None] = None
) -> HttpClient:
    """Create a base client.

    Args:
        endpoint: base url joined with relative routes
        fetch: transport callable; an ``HttpxTransport`` when omitted
        config: construction-time defaults, lowest precedence
    """
    base_url = endpoint
    if fetch is None:
        from .adapters import HttpxTransport  # noqa: PLC0415

        fetch = HttpxTransport()

    def _bind(client: HttpClient, ctx: Any, bind_config: Union[HttpConfig, None] = None):
        if ctx is None:
            raise ValueError("http.bind(ctx) requires a non-None ctx value.")
        effective = merge_config(config, bind_config)

        def _build(options):
            built = apply_config_to_options(normalize_request_options(options), effective)
            built.setdefault("base_url", base_url)
            built.setdefault("ctx", ctx)
            return built

        async def _request(route, options=None):
            return await request(route, _build(options), fetch=fetch)

        def _endpoint(route, options=None):
            return resolve_endpoint(route, _build(options))

        return BoundHttpClient(ctx=ctx, config=effective, request_fn=_request, endpoint_fn=_endpoint)

    return HttpClient(_bind)
