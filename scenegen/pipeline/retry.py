"""Retry/Backoff Policy for failed stage attempts, plus the idle poll backoff."""

from dataclasses import dataclass

from scenegen.config.settings import PipelineConfig


@dataclass(frozen=True)
class RetryDecision:
    """What to do with a document after its ``failure_count``-th failure."""

    failure_count: int
    give_up: bool
    delay: float = 0.0


class RetryPolicy:
    """Exponential, capped retry delays and a give-up threshold.

    The failure count lives on the document in the store, so the policy
    itself is stateless and shared by all workers.
    """

    def __init__(self, max_attempts: int = 5, base_delay: float = 2.0, max_delay: float = 300.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def delay_for(self, failure_count: int) -> float:
        """Delay before the next attempt: base * 2^(count-1), capped."""
        if failure_count < 1:
            return 0.0
        # Exponent is capped too so huge counts don't overflow the float
        exponent = min(failure_count - 1, 62)
        return min(self.max_delay, self.base_delay * (2 ** exponent))

    def on_failure(self, failure_count: int) -> RetryDecision:
        if failure_count >= self.max_attempts:
            return RetryDecision(failure_count=failure_count, give_up=True)
        return RetryDecision(
            failure_count=failure_count,
            give_up=False,
            delay=self.delay_for(failure_count),
        )


class PollBackoff:
    """Idle wait between polls that find no work: doubles up to a cap."""

    def __init__(self, interval: float, max_interval: float):
        self.interval = interval
        self.max_interval = max_interval
        self._current = interval

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self.max_interval, self._current * 2)
        return delay

    def reset(self) -> None:
        self._current = self.interval
