from .user import User
from .credit_transaction import CreditTransaction, CreditTransactionType
from .credit_pricing import CreditPricing
from .subscription import SubscriptionPlan, UserSubscription
from .generation import Generation, GenerationKind, GenerationResult, GenerationStatus
from .generation_feedback import GenerationFeedback
from .daily_limit import UserDailyLimit
from .user_download import UserDownload
from .billing_event import ProcessedBillingEvent

__all__ = [
    "User",
    "CreditTransaction",
    "CreditTransactionType",
    "CreditPricing",
    "SubscriptionPlan",
    "UserSubscription",
    "Generation",
    "GenerationKind",
    "GenerationResult",
    "GenerationStatus",
    "GenerationFeedback",
    "UserDailyLimit",
    "UserDownload",
    "ProcessedBillingEvent",
]
