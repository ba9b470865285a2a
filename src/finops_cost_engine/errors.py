"""Exception hierarchy for the FinOps cost analytics engine.

Data sparsity is never an error in this engine: empty windows, short series and
zero denominators all have defined degraded outputs. The exceptions below cover
the remaining cases: missing entities, invalid user input and infrastructure
failures that callers must roll back and retry.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_BUDGET = "INVALID_BUDGET"
    INVALID_NOTIFICATION = "INVALID_NOTIFICATION"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


class FinOpsEngineError(Exception):
    """Base class for all engine errors.

    Args:
        message: Human-readable description.
        error_code: Machine-readable classification.
    """

    def __init__(self, message: str, error_code: ErrorCode) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class NotFoundError(FinOpsEngineError):
    """Raised when a referenced entity does not exist for the tenant."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NOT_FOUND) -> None:
        super().__init__(message, error_code)


class InvalidBudgetError(FinOpsEngineError):
    """Raised when budget input violates the period, amount or threshold rules."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_BUDGET) -> None:
        super().__init__(message, error_code)


class InvalidNotificationError(FinOpsEngineError):
    """Raised when a notification is emitted with an unknown type."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_NOTIFICATION) -> None:
        super().__init__(message, error_code)


class PersistenceError(FinOpsEngineError):
    """Raised when an upsert, query or transaction fails at the database layer.

    The orchestrator rolls back the enclosing tenant unit and retries it later.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PERSISTENCE_FAILURE,
    ) -> None:
        super().__init__(message, error_code)
