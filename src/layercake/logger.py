"""Structured request logging.

``with_logger`` emits ``http.request`` (opt-in), ``http.response`` and
``http.error`` events through a standard ``logging.Logger``. The event dict is
attached as ``extra={"http": event}`` so handlers and formatters can render it.
Headers are redacted and long strings truncated before anything is emitted.
Logging is opt-in (no logger, no events) and a failing logger never breaks a
request.
"""

import asyncio
import contextlib
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from .client import BoundHttpClient, HttpClient
from .compose import HttpWrapper, install_policy
from .endpoint import parse_route_method
from .errors import ConfigurationError, RequestError, is_abort_error
from .merge import normalize_headers, remove_none
from .types import EndpointResult, HeadersMap, LogInclude, RedactConfig, RequestRoute

LOGGER_POLICY = "logger"
DEFAULT_MAX_STRING_LENGTH = 8_192
TRUNCATION_SUFFIX_ROOM = 16
CLIENT_ERROR = 400
SERVER_ERROR = 500

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


@dataclass(frozen=True)
class LoggerOptions:
    # Logger, LoggerAdapter, or fn(ctx) -> logger | None
    logger: Union[LoggerLike, Callable[[Any], Any], None] = None
    level: Union[str, int] = "info"
    # default: enabled when a logger is configured
    enabled: Union[bool, Callable[[dict], bool], None] = None
    include: LogInclude = field(default_factory=LogInclude)
    redact: Union[RedactConfig, bool] = True
    # fn({"kind", "status", "error"}) -> level
    map_level: Union[Callable[[dict], Union[str, int]], None] = None
    base_fields: Union[dict, None] = None
    get_fields: Union[Callable[[Any], Union[dict, None]], None] = None
    max_string_length: int = DEFAULT_MAX_STRING_LENGTH


def to_levelno(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    try:
        return LEVELS[str(level).lower()]
    except KeyError as e:
        raise ConfigurationError(f"Unknown log level {level!r}") from e


def route_to_string(route: RequestRoute) -> str:
    if isinstance(route, str):
        return route
    if isinstance(route, tuple):
        return f"{str(route[0]).upper()} {route[1]}"
    return f"{str(route.get('method', '')).upper()} {route.get('url', '')}"


def default_map_level(event: dict) -> int:
    if event["kind"] == "response":
        return logging.INFO
    if event.get("error") is not None and is_abort_error(event["error"]):
        return logging.WARNING
    status = event.get("status")
    if status is not None:
        if status >= SERVER_ERROR:
            return logging.ERROR
        if status >= CLIENT_ERROR:
            return logging.WARNING
    return logging.ERROR


def truncate_string(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    keep = max(0, max_length - TRUNCATION_SUFFIX_ROOM)
    return f"{value[:keep]}…(truncated {len(value) - max_length} chars)"


def sanitize_for_log(value: Any, max_length: int, _path: frozenset = frozenset()) -> Any:
    """Make ``value`` safe to log: bounded strings, no cycles, plain containers only."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate_string(value, max_length)
    if isinstance(value, (bytes, bytearray)):
        return truncate_string(bytes(value).decode("utf-8", errors="replace"), max_length)
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": truncate_string(str(value), max_length)}
    if id(value) in _path:
        return "[Circular]"
    path = _path | {id(value)}
    if isinstance(value, dict):
        return {str(k): sanitize_for_log(v, max_length, path) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_for_log(v, max_length, path) for v in value]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: sanitize_for_log(getattr(value, f.name), max_length, path)
            for f in dataclasses.fields(value)
        }
    if callable(value):
        return "[Function]"
    return truncate_string(str(value), max_length)


def normalize_redaction(redact: Union[RedactConfig, bool, None]) -> Union[RedactConfig, None]:
    if redact is False:
        return None
    if redact is None or redact is True:
        return RedactConfig()
    return redact


def redact_headers(headers: HeadersMap, redaction: Union[RedactConfig, None]) -> HeadersMap:
    if redaction is None:
        return headers
    keys = {h.lower() for h in redaction.headers}
    redacted: HeadersMap = {}
    for key, value in headers.items():
        if key.lower() in keys:
            redacted[key] = [redaction.replace for _ in value] if isinstance(value, list) else redaction.replace
        else:
            redacted[key] = value
    return redacted


def set_by_path(root: Any, path: str, replace: str) -> None:
    parts = [p for p in path.split(".") if p]
    if not parts or not isinstance(root, dict):
        return
    cursor = root
    for key in parts[:-1]:
        cursor = cursor.get(key)
        if not isinstance(cursor, dict):
            return
    if parts[-1] in cursor:
        cursor[parts[-1]] = replace


def apply_redaction(payload: dict, redaction: Union[RedactConfig, None], max_length: int) -> dict:
    # path rewrites only ever touch the sanitized copy
    sanitized = sanitize_for_log(remove_none(payload), max_length)
    if redaction is not None:
        for path in redaction.paths:
            set_by_path(sanitized, path, redaction.replace)
    return sanitized


def pick_method_and_url(resolved: Union[EndpointResult, None], route: RequestRoute):
    if resolved is not None:
        return resolved.method, resolved.url
    if isinstance(route, str):
        method, _, url = route.strip().partition(" ")
        return method.upper(), (url.strip() or None)
    if isinstance(route, tuple):
        return str(route[0]).upper(), route[1]
    return parse_route_method(route), route.get("url")


def resolve_logger(opts: LoggerOptions, ctx: Any):
    if opts.logger is None:
        return None
    if isinstance(opts.logger, (logging.Logger, logging.LoggerAdapter)):
        return opts.logger
    if callable(opts.logger):
        return opts.logger(ctx)
    return opts.logger


def _resolve_enabled(opts: LoggerOptions, meta: dict, logger) -> bool:
    if callable(opts.enabled):
        try:
            return bool(opts.enabled(meta))
        except Exception:
            return False
    if opts.enabled is None:
        return logger is not None
    return bool(opts.enabled)


def _resolve_ctx_fields(opts: LoggerOptions, ctx: Any) -> dict:
    if opts.get_fields is None:
        return {}
    try:
        return opts.get_fields(ctx) or {}
    except Exception:
        return {}


class _EventLog:
    """Per-request logging state: what to include, how to redact, where to emit."""

    def __init__(self, opts: LoggerOptions, logger, ctx, route: RequestRoute):
        self.opts = opts
        self.logger = logger
        self.include = opts.include
        self.min_level = to_levelno(opts.level)
        self.redaction = normalize_redaction(opts.redact)
        self.fields = {**(opts.base_fields or {}), **_resolve_ctx_fields(opts, ctx)}
        self.route = route_to_string(route)
        self.method = None
        self.url = None
        self.request_headers = None
        self.request_body = None

    def level_for(self, event: dict) -> int:
        if self.opts.map_level is not None:
            with contextlib.suppress(Exception):
                return to_levelno(self.opts.map_level(event))
        return default_map_level(event)

    def headers_for_log(self, headers) -> Union[HeadersMap, None]:
        normalized = normalize_headers(headers)
        if not normalized:
            return None
        return redact_headers(normalized, self.redaction)

    def emit(self, level: int, message: str, payload: dict) -> None:
        if level < self.min_level:
            return
        # logging must never break requests
        with contextlib.suppress(Exception):
            event = apply_redaction(
                {**self.fields, "event": message, **payload},
                self.redaction,
                self.opts.max_string_length,
            )
            self.logger.log(level, message, extra={"http": event})

    def request_start(self, options) -> None:
        if not self.include.request_start:
            return
        self.emit(
            logging.DEBUG,
            "http.request",
            {
                "route": self.route,
                "method": self.method,
                "url": self.url,
                "timeout_ms": (options or {}).get("timeout"),
                "retries": (options or {}).get("retries"),
                "request": {"headers": self.request_headers, "body": self.request_body},
            },
        )

    def response(self, response, duration_ms: float) -> None:
        if not self.include.response_success:
            return
        self.emit(
            self.level_for({"kind": "response", "status": response.status}),
            "http.response",
            {
                "route": self.route,
                "method": self.method,
                "url": response.url,
                "status": response.status,
                "duration_ms": duration_ms,
                "request": {"headers": self.request_headers, "body": self.request_body},
                "response": {
                    "headers": self.headers_for_log(response.headers) if self.include.headers else None,
                    "data": response.data if self.include.response_body else None,
                },
            },
        )

    def error(self, error: BaseException, duration_ms: float) -> None:
        if not self.include.response_error:
            return
        status = url = response_headers = response_data = None
        if isinstance(error, RequestError):
            status = error.status
            url = error.response.url if error.response is not None else error.request.url
            if error.response is not None:
                if self.include.headers:
                    response_headers = self.headers_for_log(error.response.headers)
                if self.include.response_body:
                    response_data = error.response.data
        self.emit(
            self.level_for({"kind": "error", "status": status, "error": error}),
            "http.error",
            {
                "route": self.route,
                "method": self.method,
                "url": url or (self.url if self.include.resolved_url else None),
                "status": status,
                "duration_ms": duration_ms,
                "error": {"name": type(error).__name__, "message": str(error)},
                "request": {"headers": self.request_headers, "body": self.request_body},
                "response": {"headers": response_headers, "data": response_data},
            },
        )


def _wrap_bound(this: HttpClient, bound: BoundHttpClient, ctx, opts: LoggerOptions):
    request_fn = bound.request_fn

    async def logged(route, options=None):
        logger = resolve_logger(opts, ctx)
        meta = {"ctx": ctx, "route": route, "options": options}
        if logger is None or not _resolve_enabled(opts, meta, logger):
            return await request_fn(route, options)

        log = _EventLog(opts, logger, ctx, route)
        resolved = None
        if log.include.resolved_url or log.include.headers:
            # an unresolvable route fails in the request itself, not here
            with contextlib.suppress(Exception):
                resolved = bound.endpoint(route, options)
        log.method, log.url = pick_method_and_url(resolved, route)
        if log.include.headers:
            log.request_headers = log.headers_for_log(
                resolved.headers if resolved is not None else (options or {}).get("headers")
            )
        if log.include.request_body:
            log.request_body = (options or {}).get("data", (options or {}).get("body"))

        log.request_start(options)
        started = time.monotonic()
        try:
            response = await request_fn(route, options)
        except (Exception, asyncio.CancelledError) as error:
            log.error(error, (time.monotonic() - started) * 1000.0)
            raise
        log.response(response, (time.monotonic() - started) * 1000.0)
        return response

    return bound.with_request(logged)


def with_logger(
    logger: Union[LoggerLike, Callable[[Any], Any], None] = None,
    log_options: Union[LoggerOptions, None] = None,
    **kwargs,
) -> HttpWrapper:
    """Add structured request/response/error logging to a client.

    Accepts a ``LoggerOptions`` object and/or its fields as keywords (keywords win).
    Without a logger nothing is logged. Request options are never modified.
    """
    if logger is not None:
        kwargs["logger"] = logger
    if isinstance(kwargs.get("include"), dict):
        kwargs["include"] = LogInclude(**kwargs["include"])
    opts = dataclasses.replace(log_options, **kwargs) if log_options else LoggerOptions(**kwargs)
    to_levelno(opts.level)
    return install_policy(LOGGER_POLICY, opts, _wrap_bound)
