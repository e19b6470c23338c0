# API Routes Module
from reflets.api.routes import (
    signup,
    subscriptions,
    webhooks,
)

__all__ = [
    "signup",
    "subscriptions",
    "webhooks",
]
