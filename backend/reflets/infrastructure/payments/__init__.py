"""
Payments Infrastructure Module

Stripe payment processing.
"""

from reflets.infrastructure.payments.stripe_service import StripeService

__all__ = ["StripeService"]
