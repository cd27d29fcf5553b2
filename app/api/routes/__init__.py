# API Routes Module
from app.api.routes import (
    account,
    checkout,
    subscriptions,
    webhooks,
)

__all__ = [
    "account",
    "checkout",
    "subscriptions",
    "webhooks",
]
