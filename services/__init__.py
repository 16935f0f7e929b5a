from .user_service import UserService
from .plans import PlanService
from .subscription_service import SubscriptionService
from .payment_service import PaymentService
from .vpn_service import VPNService

__all__ = [
    "UserService",
    "PlanService",
    "SubscriptionService",
    "PaymentService",
    "VPNService",
]
