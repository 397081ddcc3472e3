import json
import re
from collections.abc import Mapping
from typing import Any, Union
from urllib.parse import parse_qsl, quote, urlencode

from .merge import normalize_headers
from .types import EndpointResult, HeadersMap, RequestOptions, RequestRoute

_METHOD_PATTERN = re.compile(r"^[A-Z]+$")
_PARAM_PATTERN = re.compile(r"\{([^}]+)\}")
_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)
JSON_CONTENT_TYPE = "application/json"


def parse_route(route: RequestRoute) -> tuple[str, str]:
    """Return (METHOD, url) for "METHOD /path", {"method", "url"} or (method, url)."""
    if isinstance(route, Mapping):
        return str(route["method"]).upper(), route["url"]
    if isinstance(route, tuple):
        method, url = route
        return str(method).upper(), url
    parts = route.strip().split()
    if len(parts) < 2:  # noqa: PLR2004
        raise ValueError(f'Invalid route "{route}". Expected "METHOD /path".')
    method, url = parts[0].upper(), " ".join(parts[1:])
    if not _METHOD_PATTERN.match(method):
        raise ValueError(f'Invalid HTTP method "{parts[0]}".')
    return method, url


def parse_route_method(route: RequestRoute) -> str:
    """Upper-cased method of a route without validating the rest of it."""
    if isinstance(route, Mapping):
        return str(route.get("method", "")).upper()
    if isinstance(route, tuple):
        return str(route[0]).upper()
    parts = route.strip().split(None, 1)
    return parts[0].upper() if parts else ""


def join_url(base_url: str, path: str) -> str:
    if _ABSOLUTE_URL.match(path):
        return path
    return base_url.rstrip("/") + (path if path.startswith("/") else f"/{path}")


def apply_params(url: str, params: Union[Mapping[str, Any], None]) -> str:
    if not params:
        return url

    def _sub(match):
        key = match.group(1)
        if key not in params:
            raise ValueError(f'Missing param "{key}" for url "{url}".')
        return quote(str(params[key]), safe="-_.!~*'()")

    return _PARAM_PATTERN.sub(_sub, url)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def append_query(url: str, query: Union[Mapping[str, Any], None]) -> str:
    if not query:
        return url
    path, _, existing = url.partition("?")
    pairs = [(k, v) for k, v in parse_qsl(existing, keep_blank_values=True) if k not in query]
    for key, value in query.items():
        if isinstance(value, (list, tuple)):
            pairs.extend((key, _query_value(v)) for v in value)
        else:
            pairs.append((key, _query_value(value)))
    query_string = urlencode(pairs)
    return f"{path}?{query_string}" if query_string else path


def build_body(options: RequestOptions, headers: HeadersMap) -> tuple[Any, HeadersMap]:
    if options.get("data") is not None:
        return options["data"], headers
    if options.get("body") is None:
        return None, headers
    if "content-type" not in headers:
        headers = {**headers, "content-type": JSON_CONTENT_TYPE}
    return json.dumps(options["body"], separators=(",", ":")), headers


def endpoint(route: RequestRoute, options: Union[RequestOptions, None] = None) -> EndpointResult:
    """Resolve a route plus options into method, url, normalized headers and encoded body."""
    options = options or {}
    method, raw_url = parse_route(route)
    base_url = options.get("base_url")
    url = join_url(base_url, raw_url) if base_url else raw_url
    url = apply_params(url, options.get("params"))
    url = append_query(url, options.get("query"))
    body, headers = build_body(options, normalize_headers(options.get("headers")))
    return EndpointResult(method=method, url=url, headers=headers, body=body)
