"""
Custom exceptions for WarStack

Two families live here. Kernel errors carry an ErrorCode and are split into
recoverable (absorbed by the recovery policy) and terminal (always surface to
the caller). Remote-call errors carry an AIErrorCategory that drives the
resilience wrapper's retry decision.
"""

from enum import Enum
from typing import Any


class WarStackError(Exception):
    """Base exception for all WarStack errors"""

    pass


# ============================================================================
# Kernel Errors
# ============================================================================


class ErrorCode(str, Enum):
    """Typed error taxonomy for the kernel"""

    # Recoverable
    VALIDATION_FAILED = "VALIDATION_FAILED"
    RECOVERY_LIMIT_EXCEEDED = "RECOVERY_LIMIT_EXCEEDED"
    # Terminal
    LEDGER_INTEGRITY_BREACH = "LEDGER_INTEGRITY_BREACH"
    INVALID_STATE = "INVALID_STATE"


class KernelError(WarStackError):
    """Base class for kernel errors - always carries a code"""

    def __init__(self, code: ErrorCode, message: str, cause: BaseException | None = None) -> None:
        self.code = code
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {super().__str__()}"


class RecoverableKernelError(KernelError):
    """Kernel can keep running in its last-known-good state"""

    pass


class TerminalKernelError(KernelError):
    """Kernel must not continue; the caller decides (usually a manual reset)"""

    pass


class ValidationFailed(RecoverableKernelError):
    """Raised when an incoming event is malformed or names an unknown mode"""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.VALIDATION_FAILED, message, cause)


class RecoveryLimitExceeded(RecoverableKernelError):
    """
    Raised when the recovery policy has absorbed its maximum number of errors

    Escalation of an otherwise recoverable condition - it propagates to the
    caller instead of being absorbed yet again.
    """

    def __init__(self, max_retries: int, cause: BaseException | None = None) -> None:
        self.max_retries = max_retries
        super().__init__(
            ErrorCode.RECOVERY_LIMIT_EXCEEDED,
            f"Recovery limit of {max_retries} exceeded",
            cause,
        )


class InvalidEventStructure(TerminalKernelError):
    """
    Raised by the ledger itself when handed a structurally invalid event

    The kernel validates before appending, so reaching this means a caller
    bypassed validation - a programming error, not a retryable fault.
    """

    def __init__(self, message: str = "Invalid event structure", cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.VALIDATION_FAILED, message, cause)


class LedgerIntegrityBreach(TerminalKernelError):
    """Raised when the hash chain fails verification"""

    def __init__(self, message: str, breach_index: int | None = None) -> None:
        self.breach_index = breach_index
        super().__init__(ErrorCode.LEDGER_INTEGRITY_BREACH, message)


class InvalidState(TerminalKernelError):
    """Raised when the kernel's own state snapshot fails validation"""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.INVALID_STATE, message, cause)


# ============================================================================
# Remote Call Errors
# ============================================================================


class AIErrorCategory(str, Enum):
    """Failure classes for unreliable remote calls"""

    NETWORK_JITTER = "NETWORK_JITTER"  # 5xx / transient
    API_THRESHOLD = "API_THRESHOLD"  # rate limited (429)
    LOGIC_BREACH = "LOGIC_BREACH"  # other 4xx - never retried
    UNKNOWN = "UNKNOWN"


class AIError(WarStackError):
    """
    A classified remote-call failure

    Produced by the resilience wrapper's classifier; the original exception
    is preserved as __cause__.
    """

    def __init__(
        self,
        message: str,
        *,
        category: AIErrorCategory = AIErrorCategory.UNKNOWN,
        status_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        self.category = category
        self.status_code = status_code
        self.retriable = retriable
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"AIError({str(self)!r}, category={self.category.value}, "
            f"status_code={self.status_code}, retriable={self.retriable})"
        )


class RemoteCallError(WarStackError):
    """
    Convenience exception for wrapped operations

    Anything exposing status_code / category / retriable attributes is
    classified the same way; this class just saves callers from defining one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        category: AIErrorCategory | str | None = None,
        retriable: bool | None = None,
    ) -> None:
        self.status_code = status_code
        self.category = category
        self.retriable = retriable
        super().__init__(message)


# ============================================================================
# Snapshot Errors
# ============================================================================


class SnapshotError(WarStackError):
    """Raised when a persisted snapshot cannot be parsed"""

    def __init__(self, key: str, reason: Any) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Snapshot under '{key}' is unreadable: {reason}")
