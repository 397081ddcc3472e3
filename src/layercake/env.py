import os
from typing import Union

from .errors import ConfigurationError
from .types import HttpConfig, RetryPolicy

DEFAULT_PREFIX = "LAYERCAKE_"
_TRUTHY = {"1", "true", "yes", "on"}


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, val = line.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key:
                    values[key] = val
    except FileNotFoundError:
        # Silently ignore missing file to make the helper easy to use
        pass
    return values


def _env_map(env_path: Union[str, None]) -> dict[str, str]:
    # actual environment takes precedence over the .env file
    file_env = _parse_env_file(env_path) if env_path else {}
    return {**file_env, **os.environ}


def parse_retries_value(raw: str) -> Union[int, list[float], str]:
    """Parse RETRIES: "3" -> 3, "0.5,1,2" -> [0.5, 1.0, 2.0], "exp,1,3" stays a shorthand."""
    value = raw.strip()
    if value.isdigit():
        return int(value)
    parts = [p.strip() for p in value.split(",") if p.strip()]
    try:
        return [float(p) for p in parts]
    except ValueError:
        return value


def parse_headers_value(raw: str) -> list[tuple[str, str]]:
    """Parse HEADERS: "x-a=1; x-b=2". Repeated names are kept as separate values."""
    headers = []
    for item in raw.split(";"):
        if "=" not in item:
            continue
        name, value = item.split("=", 1)
        if name.strip():
            headers.append((name.strip(), value.strip()))
    return headers


def _float(env: dict[str, str], name: str) -> Union[float, None]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def load_http_config_from_env(
    prefix: str = DEFAULT_PREFIX, env_path: Union[str, None] = None
) -> HttpConfig:
    """Build an HttpConfig from <PREFIX>TIMEOUT_MS, <PREFIX>RETRIES and <PREFIX>HEADERS.

    - If 'env_path' is provided, variables from the .env file are used to augment
        lookups (without mutating the process environment). Values in the actual
        environment take precedence over the file.
    """
    env = _env_map(env_path)
    retries = env.get(f"{prefix}RETRIES")
    headers = env.get(f"{prefix}HEADERS")
    return HttpConfig(
        headers=parse_headers_value(headers) if headers else None,
        timeout=_float(env, f"{prefix}TIMEOUT_MS"),
        retries=parse_retries_value(retries) if retries else None,
    )


def load_retry_policy_from_env(
    prefix: str = DEFAULT_PREFIX, env_path: Union[str, None] = None, **kwargs
) -> RetryPolicy:
    """Build a RetryPolicy from <PREFIX>RETRIES, <PREFIX>BUDGET, <PREFIX>JITTER and
    <PREFIX>ALLOW_NON_IDEMPOTENT. Keyword arguments fill in fields the environment leaves unset.
    """
    env = _env_map(env_path)
    values = dict(kwargs)
    retries = env.get(f"{prefix}RETRIES")
    if retries:
        values["retries"] = parse_retries_value(retries)
    budget = env.get(f"{prefix}BUDGET")
    if budget:
        values["budget"] = budget.strip()
    jitter = _float(env, f"{prefix}JITTER")
    if jitter is not None:
        values["jitter"] = jitter
    allow = env.get(f"{prefix}ALLOW_NON_IDEMPOTENT")
    if allow:
        values["allow_non_idempotent"] = allow.strip().lower() in _TRUTHY
    return RetryPolicy(**values)
