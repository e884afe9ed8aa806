# retry_state.py
"""
Retry-with-backoff as an explicit state machine.
The caller owns the waiting: it reads next_delay and sleeps however it likes,
which keeps the policy testable without real network delay.
"""

from enum import Enum


class RetryPhase(Enum):
    READY = "ready"
    WAITING = "waiting"
    EXHAUSTED = "exhausted"
    SUCCEEDED = "succeeded"


class RetryState:
    """
    Tracks attempts for one logical request.
    Delays double per failure starting at base_delay and are capped at max_delay.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 8.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.attempt = 0
        self.next_delay = 0.0
        self.phase = RetryPhase.READY

    @property
    def terminal(self) -> bool:
        return self.phase in (RetryPhase.EXHAUSTED, RetryPhase.SUCCEEDED)

    def record_failure(self) -> RetryPhase:
        """Register a failed attempt and decide whether another one is allowed"""
        if self.terminal:
            raise RuntimeError(f"Retry state already {self.phase.value}")
        self.attempt += 1
        if self.attempt >= self.max_attempts:
            self.phase = RetryPhase.EXHAUSTED
            self.next_delay = 0.0
        else:
            self.phase = RetryPhase.WAITING
            self.next_delay = min(self.base_delay * (2 ** (self.attempt - 1)), self.max_delay)
        return self.phase

    def record_success(self) -> RetryPhase:
        if self.terminal:
            raise RuntimeError(f"Retry state already {self.phase.value}")
        self.attempt += 1
        self.phase = RetryPhase.SUCCEEDED
        self.next_delay = 0.0
        return self.phase

    def __repr__(self) -> str:
        return (f"RetryState(phase={self.phase.value}, attempt={self.attempt}/"
                f"{self.max_attempts}, next_delay={self.next_delay})")
