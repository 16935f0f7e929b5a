from .connection import get_session, init_db, async_session
from .models import User, Plan, Subscription, Payment, Server, VpnClient

__all__ = [
    "get_session",
    "init_db",
    "async_session",
    "User",
    "Plan",
    "Subscription",
    "Payment",
    "Server",
    "VpnClient",
]
