from .user import User
from .pricing_plan import PricingPlan
from .order import Order
from .subscription import Subscription
from .usage import UsageBalance
from .credit_log import CreditLogEntry
from .billing_event import BillingEventLog
from .email_log import EmailLog

__all__ = [
    "User",
    "PricingPlan",
    "Order",
    "Subscription",
    "UsageBalance",
    "CreditLogEntry",
    "BillingEventLog",
    "EmailLog",
]
