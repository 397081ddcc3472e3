from .adapters import AiohttpTransport, HttpxTransport, RequestsTransport
from .auth import bearer_auth, with_auth
from .client import BoundHttpClient, HttpClient, http
from .compose import compose, install_policy
from .endpoint import endpoint
from .env import load_http_config_from_env, load_retry_policy_from_env
from .errors import (
    AbortError,
    ConfigurationError,
    DeadlineExceededError,
    LayercakeError,
    RequestError,
    RequestTimeoutError,
    is_abort_error,
)
from .logger import LoggerOptions, with_logger
from .merge import merge_config, merge_headers, merge_request_options, normalize_headers
from .request import request
from .retry import with_retry
from .signals import AbortController, AbortSignal
from .state import BudgetState
from .timeout import with_timeout
from .tracing import with_tracing
from .types import (
    AuthConfig,
    BackoffConfig,
    DeadlineHeaderConfig,
    HttpConfig,
    LogInclude,
    RedactConfig,
    RequestInit,
    Response,
    RetryBudgetConfig,
    RetryPolicy,
    TimeoutPolicy,
    TransportResponse,
)

__all__ = [
    "http",
    "compose",
    "install_policy",
    "endpoint",
    "request",
    "HttpClient",
    "BoundHttpClient",
    "with_auth",
    "bearer_auth",
    "with_retry",
    "with_timeout",
    "with_tracing",
    "with_logger",
    "LoggerOptions",
    "merge_request_options",
    "merge_headers",
    "merge_config",
    "normalize_headers",
    "AbortController",
    "AbortSignal",
    "BudgetState",
    "HttpConfig",
    "RetryPolicy",
    "BackoffConfig",
    "RetryBudgetConfig",
    "TimeoutPolicy",
    "DeadlineHeaderConfig",
    "AuthConfig",
    "LogInclude",
    "RedactConfig",
    "RequestInit",
    "Response",
    "TransportResponse",
    "LayercakeError",
    "RequestError",
    "AbortError",
    "RequestTimeoutError",
    "DeadlineExceededError",
    "ConfigurationError",
    "is_abort_error",
    "HttpxTransport",
    "AiohttpTransport",
    "RequestsTransport",
    "load_http_config_from_env",
    "load_retry_policy_from_env",
]
