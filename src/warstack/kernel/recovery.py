"""
Recovery policy for recoverable kernel errors

Each kernel owns exactly one policy. The policy absorbs a bounded number of
recoverable errors, logging each one, and escalates once the budget is spent.
The counter only goes back to zero on an explicit kernel reset.
"""

from warstack.kernel.errors import RecoverableKernelError, RecoveryLimitExceeded
from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import kernel_recoveries_total

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3


class RecoveryPolicy:
    """Bounded absorber of recoverable errors"""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.retry_count = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    def recover(self, error: RecoverableKernelError) -> None:
        """
        Absorb one recoverable error

        Args:
            error: The error the kernel just hit

        Raises:
            RecoveryLimitExceeded: Budget already spent (chained to error)
        """
        if self.retry_count >= self.max_retries:
            logger.error(
                "Recovery limit exceeded",
                max_retries=self.max_retries,
                code=error.code.value,
                error=str(error),
            )
            raise RecoveryLimitExceeded(self.max_retries, cause=error) from error

        self.retry_count += 1
        kernel_recoveries_total.labels(code=error.code.value).inc()
        logger.warning(
            "Recovering from kernel error",
            attempt=self.retry_count,
            max_retries=self.max_retries,
            code=error.code.value,
            error=str(error),
        )

    def reset(self) -> None:
        self.retry_count = 0
