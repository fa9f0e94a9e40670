from rewards_backend.services.auth_service import AuthService, AuthError
from rewards_backend.services.points_ledger import PointsLedgerService
from rewards_backend.services.attempt_store import AttemptStore
from rewards_backend.services.question_registry import QuestionRegistry, question_state
from rewards_backend.services.winner_allocator import (
    AllocationResult,
    WinnerAllocator,
    run_with_contention_retry,
)
from rewards_backend.services.notification_publisher import NotificationPublisher
from rewards_backend.services.payment_providers import (
    AirtelDisbursementClient,
    MTNDisbursementClient,
    PaymentProviderClient,
    PaymentResult,
    close_payment_providers,
    get_payment_providers,
)
from rewards_backend.services.payout_dispatcher import PayoutDispatcher, PayoutResult, payout_reference
from rewards_backend.services.settlement_service import (
    SettlementService,
    SubmissionOutcome,
    run_post_settlement,
)

__all__ = [
    "AuthService",
    "AuthError",
    "PointsLedgerService",
    "AttemptStore",
    "QuestionRegistry",
    "question_state",
    "AllocationResult",
    "WinnerAllocator",
    "run_with_contention_retry",
    "NotificationPublisher",
    "AirtelDisbursementClient",
    "MTNDisbursementClient",
    "PaymentProviderClient",
    "PaymentResult",
    "close_payment_providers",
    "get_payment_providers",
    "PayoutDispatcher",
    "PayoutResult",
    "payout_reference",
    "SettlementService",
    "SubmissionOutcome",
    "run_post_settlement",
]
