from __future__ import annotations

from dataclasses import dataclass

DEFAULT_BACKOFF = (5.0, 10.0, 30.0, 60.0)


@dataclass
class RestartPolicy:
    """How long to wait before restarting a crashed server, and how often.

    The Nth consecutive crash waits ``backoff_schedule[N - 1]``; crashes past
    the end of the schedule reuse its last entry.  A run that stayed up for
    ``stability_window`` seconds resets the count, so occasional crashes over
    weeks of uptime never exhaust ``max_attempts``.
    """

    backoff_schedule: tuple[float, ...] = DEFAULT_BACKOFF
    max_attempts: int | None = None     # None = retry forever
    stability_window: float = 600.0
    attempt_count: int = 0

    def __post_init__(self) -> None:
        if not self.backoff_schedule:
            raise ValueError("backoff_schedule must have at least one entry")
        if any(d < 0 for d in self.backoff_schedule):
            raise ValueError("backoff delays must not be negative")
        self.backoff_schedule = tuple(float(d) for d in self.backoff_schedule)

    @property
    def exhausted(self) -> bool:
        return self.max_attempts is not None and self.attempt_count >= self.max_attempts

    def record_run(self, runtime: float) -> None:
        """Report how long the last run stayed up before it crashed."""
        if runtime >= self.stability_window:
            self.reset()

    def next_delay(self) -> float | None:
        """Consume one attempt and return its delay, or None if out of attempts."""
        if self.exhausted:
            return None
        idx = min(self.attempt_count, len(self.backoff_schedule) - 1)
        self.attempt_count += 1
        return self.backoff_schedule[idx]

    def reset(self) -> None:
        self.attempt_count = 0
