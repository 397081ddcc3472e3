"""Options model and merge engine.

Every policy and the base client funnel request options through these
functions. They are pure: inputs are never mutated and nothing here raises.
Malformed header input normalizes to an empty header set.
"""

from collections.abc import Mapping
from typing import Any, Union

from .types import HeadersMap, HeaderValue, HttpConfig, RequestOptions

MULTI_VALUE_HEADERS = frozenset({"set-cookie"})


def _is_plain(value: Any) -> bool:
    return isinstance(value, dict)


def _as_values(value: HeaderValue) -> list[str]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _append_header(acc: HeadersMap, key: str, value: HeaderValue) -> None:
    if isinstance(value, tuple):
        value = list(value)
    existing = acc.get(key)
    if existing is None:
        acc[key] = value
        return
    acc[key] = [*_as_values(existing), *_as_values(value)]


def normalize_headers(headers: Any) -> HeadersMap:
    """Lowercase header names; repeated names accumulate into a list, first seen first."""
    normalized: HeadersMap = {}
    if not headers:
        return normalized
    if isinstance(headers, Mapping):
        items = headers.items()
    elif isinstance(headers, (list, tuple)):
        items = [p for p in headers if isinstance(p, (list, tuple)) and len(p) == 2]  # noqa: PLR2004
    else:
        return normalized
    for key, value in items:
        if value is None or not isinstance(key, str):
            continue
        _append_header(normalized, key.lower(), value)
    return normalized


def has_header(headers: Any, name: str) -> bool:
    return name.lower() in normalize_headers(headers)


def remove_none(value: Any) -> Any:
    if isinstance(value, list):
        return [remove_none(v) for v in value]
    if not _is_plain(value):
        return value
    return {k: remove_none(v) for k, v in value.items() if v is not None}


def merge_deep(base: Any, next_: Any) -> Any:
    """Merge plain dicts key by key; anything else in ``next_`` replaces ``base`` wholesale."""
    if not (_is_plain(base) and _is_plain(next_)):
        return next_
    result = dict(base)
    for key, value in next_.items():
        if value is None:
            continue
        existing = result.get(key)
        if _is_plain(existing) and _is_plain(value):
            result[key] = merge_deep(existing, value)
        else:
            result[key] = value
    return result


def merge_headers(base: Union[HeadersMap, None], next_: Union[HeadersMap, None]) -> HeadersMap:
    merged: HeadersMap = dict(base) if base else {}
    if not next_:
        return merged
    for key, value in next_.items():
        existing = merged.get(key)
        if (
            key in MULTI_VALUE_HEADERS
            or isinstance(existing, list)
            or isinstance(value, (list, tuple))
        ):
            _append_header(merged, key, value)
        else:
            merged[key] = value
    return merged


def normalize_request_options(options: Union[RequestOptions, None]) -> RequestOptions:
    if not options:
        return {}
    return remove_none(dict(options))


def merge_request_options(
    base: Union[RequestOptions, None], next_: Union[RequestOptions, None] = None
) -> RequestOptions:
    base = base or {}
    normalized_next = normalize_request_options(next_)
    merged = merge_deep(dict(base), normalized_next)
    merged["headers"] = merge_headers(
        normalize_headers(base.get("headers")),
        normalize_headers(normalized_next.get("headers")),
    )
    return merged


def apply_config_to_options(
    options: RequestOptions, config: Union[HttpConfig, None]
) -> RequestOptions:
    """Layer bind config under options: options win for scalars, headers merge config-first."""
    if config is None:
        return options
    result = {
        **options,
        "headers": merge_headers(
            normalize_headers(config.headers), normalize_headers(options.get("headers"))
        ),
    }
    timeout = options.get("timeout", config.timeout)
    if timeout is not None:
        result["timeout"] = timeout
    retries = options.get("retries", config.retries)
    if retries is not None:
        result["retries"] = retries
    return result


def merge_config(
    base: Union[HttpConfig, None], next_: Union[HttpConfig, None]
) -> Union[HttpConfig, None]:
    if base is None and next_ is None:
        return None
    base = base or HttpConfig()
    next_ = next_ or HttpConfig()
    return HttpConfig(
        headers=merge_headers(normalize_headers(base.headers), normalize_headers(next_.headers)),
        timeout=next_.timeout if next_.timeout is not None else base.timeout,
        retries=next_.retries if next_.retries is not None else base.retries,
    )
