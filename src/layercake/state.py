import threading
from dataclasses import dataclass, field

from .types import RetryBudgetConfig


@dataclass
class BudgetState:
    """Token bucket shared by every request made through one composed client.

    Updates never suspend between reading and writing ``tokens``; the lock
    covers clients shared across threads.
    """

    config: RetryBudgetConfig
    tokens: float = -1.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self):
        if self.tokens < 0:
            self.tokens = self.config.max_tokens

    def refill(self) -> None:
        with self._lock:
            self.tokens = min(self.config.max_tokens, self.tokens + self.config.refill_on_success)

    def try_consume(self) -> bool:
        with self._lock:
            if self.tokens < self.config.cost_per_retry:
                return False
            self.tokens -= self.config.cost_per_retry
            return True
