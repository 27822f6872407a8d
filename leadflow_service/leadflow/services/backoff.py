from __future__ import annotations

import random
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryPolicy:
    """Geometric backoff with a symmetric jitter band.

    ``delay(attempt)`` is ``base * factor ** attempt``, capped at ``max_delay``
    when one is set, then scaled by a random factor in ``[jitter_low, jitter_high]``.
    Attempts are zero based: ``delay(0)`` is the wait after the first failure.
    """

    base: float
    factor: float = 2.0
    max_attempts: int = 5
    max_delay: float | None = None
    jitter_low: float = 0.85
    jitter_high: float = 1.15
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def raw_delay(self, attempt: int) -> float:
        value = self.base * (self.factor ** attempt)
        if self.max_delay is not None:
            value = min(value, self.max_delay)
        return value

    def delay(self, attempt: int) -> float:
        return self.raw_delay(attempt) * self.rng.uniform(self.jitter_low, self.jitter_high)

    def max_jittered_delay(self, attempt: int) -> float:
        return self.raw_delay(attempt) * self.jitter_high

    def total_max_delay(self) -> float:
        # No sleep follows the final attempt.
        return sum(self.max_jittered_delay(attempt) for attempt in range(self.max_attempts - 1))

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts - 1
