from app.models.user import User
from app.models.subscription import Subscription
from app.models.web_session import WebSession

__all__ = [
    "User",
    "Subscription",
    "WebSession",
]
