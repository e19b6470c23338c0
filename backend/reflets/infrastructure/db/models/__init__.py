"""
SQLModel ORM Models for Reflets

Import models here to register them with SQLModel.metadata.
"""

from reflets.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from reflets.infrastructure.db.models.pending_signup import PendingSignupModel
from reflets.infrastructure.db.models.profile import ProfileModel
from reflets.infrastructure.db.models.stripe_event import StripeEventModel
from reflets.infrastructure.db.models.support_ticket import SupportTicketModel
from reflets.infrastructure.db.models.wedding import WeddingModel


__all__ = [
    "TimestampMixin",
    "UUIDMixin",
    "PendingSignupModel",
    "ProfileModel",
    "StripeEventModel",
    "SupportTicketModel",
    "WeddingModel",
]
