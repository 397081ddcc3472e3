"""Request executor.

Owns the transport call, its cancellation and the mapping of responses to
``RequestError``. Retry and timeout policies sit above this layer and only
influence it through the ``timeout`` and ``signal`` options.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Union

from .endpoint import endpoint
from .errors import AbortError, RequestError, RequestTimeoutError
from .merge import normalize_headers, normalize_request_options
from .signals import AbortSignal
from .types import (
    EndpointResult,
    HeadersMap,
    RequestDescriptor,
    RequestInit,
    RequestOptions,
    RequestRoute,
    Response,
    TransportResponse,
)

Fetch = Callable[[str, RequestInit], Awaitable[TransportResponse]]

_NO_CONTENT = (204, 205)


def build_request_init(result: EndpointResult) -> RequestInit:
    pairs: list[tuple[str, str]] = []
    for key, value in result.headers.items():
        if isinstance(value, list):
            pairs.extend((key, v) for v in value)
        else:
            pairs.append((key, value))
    return RequestInit(method=result.method, headers=pairs, body=result.body)


def _should_parse_json(content_type: Any) -> bool:
    if isinstance(content_type, list):
        content_type = content_type[0] if content_type else None
    if not content_type:
        return False
    lowered = content_type.lower()
    return "application/json" in lowered or "+json" in lowered


def parse_response_data(status: int, headers: HeadersMap, content: bytes, parse_body: bool):
    if not parse_body or status in _NO_CONTENT:
        return None
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    if _should_parse_json(headers.get("content-type")):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def _describe(result: EndpointResult) -> RequestDescriptor:
    return RequestDescriptor(
        method=result.method,
        url=result.url,
        headers=normalize_headers(result.headers),
        body=result.body,
    )


async def _send(
    fetch: Fetch,
    url: str,
    init: RequestInit,
    signal: Union[AbortSignal, None],
    timeout_ms: Union[float, None],
) -> TransportResponse:
    """Race the transport against the signal and timeout; losers are always cancelled."""
    if signal is not None:
        signal.raise_if_aborted()
    send = asyncio.ensure_future(fetch(url, init))
    aborted = asyncio.ensure_future(signal.wait()) if signal is not None else None
    waiters = {send} if aborted is None else {send, aborted}
    timeout_s = timeout_ms / 1000.0 if timeout_ms and timeout_ms > 0 else None
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if aborted is not None:
            aborted.cancel()
        if not send.done():
            send.cancel()
    if aborted is not None and aborted in done:
        raise signal.error()
    if send in done:
        return send.result()
    raise RequestTimeoutError(f"Request timed out after {timeout_ms}ms")


async def request(
    route: RequestRoute,
    options: Union[RequestOptions, None] = None,
    *,
    fetch: Fetch,
    base_url: Union[str, None] = None,
) -> Response:
    """Execute a request for the given route.

    Args:
        route: "METHOD /path", {"method", "url"} or (method, url)
        options: request options (headers, query, params, body/data, timeout, signal, ...)
        fetch: transport callable ``(url, RequestInit) -> TransportResponse``
        base_url: used when options carry no ``base_url``

    Raises:
        AbortError: the signal fired or the timeout elapsed
        RequestError: network failure or a response with status >= 400
    """
    normalized = normalize_request_options(options)
    if normalized.get("base_url") is None and base_url is not None:
        normalized["base_url"] = base_url
    result = endpoint(route, normalized)
    init = build_request_init(result)

    try:
        raw = await _send(
            fetch, result.url, init, normalized.get("signal"), normalized.get("timeout")
        )
        headers = normalize_headers(raw.headers)
        data = parse_response_data(
            raw.status, headers, raw.content, normalized.get("parse_body", True) is not False
        )
    except (AbortError, RequestError):
        raise
    except Exception as error:
        raise RequestError("Request failed", request=_describe(result)) from error

    response = Response(status=raw.status, url=raw.url or result.url, headers=headers, data=data)
    if response.status >= 400:  # noqa: PLR2004
        raise RequestError(
            f"Request failed with status {response.status}",
            request=_describe(result),
            status=response.status,
            response=response,
        )
    return response
