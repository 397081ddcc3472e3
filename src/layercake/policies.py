import inspect
import math
from typing import Any, Callable, Union

from .errors import ConfigurationError
from .types import RetryBudgetConfig

# Defaults used when inspect.signature cannot determine argument counts
DEFAULT_PREDICATE_ARGC = 2  # should_retry(error, meta)
DEFAULT_JITTER_ARGC = 2  # jitter(delay_seconds, attempt)

BUDGET_PRESETS: dict[str, RetryBudgetConfig] = {
    "conservative": RetryBudgetConfig(max_tokens=5, refill_on_success=0.05, cost_per_retry=1),
    "balanced": RetryBudgetConfig(max_tokens=10, refill_on_success=0.1, cost_per_retry=1),
    "aggressive": RetryBudgetConfig(max_tokens=20, refill_on_success=0.2, cost_per_retry=1),
}
BUDGET_SHORTHAND_PARTS = 4  # "budget,max,refill,cost"


def _count_positional_args(fn, default: int) -> int:
    """Return count of positional params for fn; fall back to default on failure."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return default
    params = list(sig.parameters.values())
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return default
    return len([p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)])


def call_flexible(fn: Callable, *args: Any, default_argc: int) -> Any:
    """Call fn with as many leading positional args as it accepts.

    Lets users pass ``lambda err: ...`` where ``fn(err, meta)`` is the full form.
    """
    argc = _count_positional_args(fn, default_argc)
    return fn(*args[: max(1, argc)])


def coerce_budget(budget: Union[str, RetryBudgetConfig, None]) -> Union[RetryBudgetConfig, None]:
    """Turn None | "off" | preset | "budget,max,refill,cost" | RetryBudgetConfig into a config.

    Accepted inputs:
      - None / "off"            -> no budget
      - "conservative"          -> 5 tokens, +0.05 per success
      - "balanced"              -> 10 tokens, +0.1 per success
      - "aggressive"            -> 20 tokens, +0.2 per success
      - "budget,10,0.1,1"       -> explicit shorthand
      - RetryBudgetConfig       -> returned as-is
    """
    if budget is None:
        return None
    if isinstance(budget, RetryBudgetConfig):
        return budget
    if isinstance(budget, dict):
        return RetryBudgetConfig(**budget)
    if not isinstance(budget, str):
        raise ConfigurationError(
            "budget must be None, 'off', a preset name, a 'budget,...' shorthand or RetryBudgetConfig"
        )
    name = budget.strip().lower()
    if name == "off":
        return None
    if name in BUDGET_PRESETS:
        return BUDGET_PRESETS[name]
    if name.startswith("budget,"):
        parts = [p.strip() for p in name.split(",") if p.strip()]
        if len(parts) != BUDGET_SHORTHAND_PARTS:
            raise ConfigurationError(f'Invalid budget shorthand "{budget}".')
        try:
            values = [float(p) for p in parts[1:]]
            if not all(math.isfinite(v) for v in values):
                raise ValueError("non-finite budget value")
            return RetryBudgetConfig(*values)
        except ValueError as e:
            raise ConfigurationError(f'Invalid budget shorthand "{budget}".') from e
    raise ConfigurationError(
        f'Invalid budget preset "{budget}". Use off, conservative, balanced or aggressive.'
    )
