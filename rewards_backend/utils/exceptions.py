"""Custom exceptions for the settlement engine."""


class SettlementError(Exception):
    """Base exception for settlement operations."""


class QuestionValidationError(SettlementError):
    """Question configuration rejected before any state change."""


class QuestionNotFoundError(SettlementError):
    """Reward question does not exist."""


class QuestionLifecycleError(SettlementError):
    """Question is in a state that no longer accepts answers."""


class QuestionInactiveError(QuestionLifecycleError):
    """Question was deactivated by its owner."""


class QuestionExpiredError(QuestionLifecycleError):
    """Question expiry time has passed."""


class QuestionCompletedError(QuestionLifecycleError):
    """All winner slots have been claimed."""


class AlreadyAttemptedError(SettlementError):
    """User already answered this question."""

    def __init__(self, user_id, question_id):
        super().__init__(f"User {user_id} already attempted question {question_id}")
        self.user_id = user_id
        self.question_id = question_id


class SlotContentionError(SettlementError):
    """Another allocator claimed the slot this transaction read; the transaction must be retried."""


class ConcurrentConflictError(SettlementError):
    """Retry budget exhausted under contention. Safe for the caller to retry the whole submission."""


class UserNotFoundError(SettlementError):
    """User account does not exist."""


class WinnerNotFoundError(SettlementError):
    """Winner record does not exist."""


class PaymentProviderError(SettlementError):
    """Payment provider rejected the request or could not be reached.

    ``status_code`` is the provider's HTTP status when it answered at all.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentTimeoutError(PaymentProviderError):
    """Payment provider did not answer in time; the outcome is unknown."""
