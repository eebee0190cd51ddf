"""
Attempt-level retry policy
"""

from typing import Optional

from schemas.pipeline_config import PipelineSection


class RetryPolicy:
    """
    Backoff schedule for whole-pipeline attempts.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        retry_delay: Base delay in seconds
        max_retry_delay: Upper bound for the delay in seconds (optional)
        exponential_backoff: Double the delay after every failed retry
        timeout: Overall execution budget in seconds (optional)
    """

    def __init__(
        self,
        max_retries: int = 0,
        retry_delay: float = 0.0,
        max_retry_delay: Optional[float] = None,
        exponential_backoff: bool = False,
        timeout: Optional[float] = None
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.exponential_backoff = exponential_backoff
        self.timeout = timeout

    @classmethod
    def from_config(cls, section: PipelineSection) -> "RetryPolicy":
        return cls(
            max_retries=section.retries,
            retry_delay=section.retry_delay.total_seconds(),
            max_retry_delay=(
                section.max_retry_delay.total_seconds() if section.max_retry_delay else None
            ),
            exponential_backoff=section.exponential_backoff,
            timeout=section.timeout.total_seconds() if section.timeout else None,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay before the given retry (1-based)."""
        delay = self.retry_delay
        if self.exponential_backoff and retry > 1:
            delay = self.retry_delay * (2 ** (retry - 1))
        if self.max_retry_delay is not None:
            delay = min(delay, self.max_retry_delay)
        return delay

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_retries={self.max_retries}, retry_delay={self.retry_delay}, "
            f"max_retry_delay={self.max_retry_delay}, exponential={self.exponential_backoff})"
        )
