from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Union

HeaderValue = Union[str, list[str]]
HeadersMap = dict[str, HeaderValue]
HeadersInput = Union[dict[str, HeaderValue], list[tuple[str, str]]]
RequestRoute = Union[str, dict[str, str], tuple[str, str]]
RequestOptions = dict[str, Any]
RetriesSpec = Union[int, list[float], str]

BackoffStrategy = Literal["exp", "linear"]
DeadlineHeaderMode = Literal["absolute-ms", "relative-ms"]


@dataclass(frozen=True)
class HttpConfig:
    """Bind-scoped defaults; lower precedence than per-call options."""

    headers: Union[HeadersInput, None] = None
    timeout: Union[float, None] = None  # milliseconds
    retries: Union[RetriesSpec, None] = None


@dataclass(frozen=True)
class EndpointResult:
    method: str
    url: str
    headers: HeadersMap
    body: Any = None


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    headers: HeadersMap
    body: Any = None


@dataclass(frozen=True)
class Response:
    status: int
    url: str
    headers: HeadersMap
    data: Any = None


@dataclass(frozen=True)
class RequestInit:
    """What a transport receives. Multi-value headers are expanded into repeated pairs."""

    method: str
    headers: list[tuple[str, str]]
    body: Any = None


@dataclass(frozen=True)
class TransportResponse:
    status: int
    url: str
    headers: Union[list[tuple[str, str]], dict[str, str]]
    content: bytes = b""


@dataclass(frozen=True)
class BackoffConfig:
    strategy: BackoffStrategy = "exp"
    base_delay: float = 1.0  # seconds, attempt #1
    max_delay: float = 30.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.strategy not in ("exp", "linear"):
            raise ValueError(f"Unknown backoff strategy {self.strategy!r}. Use 'exp' or 'linear'.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must be >= 0")


@dataclass(frozen=True)
class RetryBudgetConfig:
    max_tokens: float = 10.0
    refill_on_success: float = 0.1
    cost_per_retry: float = 1.0

    def __post_init__(self) -> None:
        if self.max_tokens < 0 or self.refill_on_success < 0 or self.cost_per_retry < 0:
            raise ValueError("retry budget values must be >= 0")


@dataclass(frozen=True)
class RetryPolicy:
    # retries: count (backoff), explicit delays in seconds, or shorthand "exp,1,3"
    retries: Union[RetriesSpec, None] = None
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    # ratio in [0, 1] or fn(delay_seconds, attempt) -> seconds
    jitter: Union[float, Callable[..., float], None] = 0.2
    # "off" | "conservative" | "balanced" | "aggressive" | "budget,max,refill,cost" | config
    budget: Union[str, RetryBudgetConfig, None] = None
    should_retry: Union[Callable[..., bool], None] = None
    allow_non_idempotent: bool = False


@dataclass(frozen=True)
class DeadlineHeaderConfig:
    name: str
    mode: DeadlineHeaderMode = "relative-ms"
    respect_existing: bool = True


@dataclass(frozen=True)
class TimeoutPolicy:
    default_timeout: Union[float, None] = None  # milliseconds
    propagate_deadline: bool = True
    min_timeout: float = 1.0
    get_deadline: Union[Callable[[Any], Union[float, None]], None] = None
    deadline_header: Union[str, DeadlineHeaderConfig, None] = None


@dataclass(frozen=True)
class DeadlineComputation:
    timeout: Union[float, None] = None
    remaining_ms: Union[float, None] = None
    deadline_ms: Union[float, None] = None


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    in_: Literal["header", "query"] = "header"
    query_param: str = "api_key"


@dataclass(frozen=True)
class LogInclude:
    request_start: bool = False
    response_success: bool = True
    response_error: bool = True
    headers: bool = False
    request_body: bool = False
    response_body: bool = False
    # resolve the final url through the bound endpoint()
    resolved_url: bool = True


DEFAULT_REDACT_HEADERS = ("authorization", "cookie", "set-cookie", "x-api-key")


@dataclass(frozen=True)
class RedactConfig:
    headers: tuple[str, ...] = DEFAULT_REDACT_HEADERS
    # dot paths into the event, e.g. "request.body.password"
    paths: tuple[str, ...] = ()
    replace: str = "[REDACTED]"
