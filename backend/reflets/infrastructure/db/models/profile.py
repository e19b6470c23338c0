"""
Profile Database Model

One row per customer, keyed by the Supabase Auth user id.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field

from reflets.infrastructure.db.models.base import TimestampMixin


class ProfileModel(TimestampMixin, table=True):
    """Maps to the 'profiles' table."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('trial', 'active', 'expired', 'cancelled')",
            name="profiles_subscription_status_check",
        ),
    )

    id: UUID = Field(primary_key=True, nullable=False)
    email: str = Field(nullable=False, index=True)
    full_name: Optional[str] = Field(default=None)
    subscription_status: str = Field(default="trial", nullable=False)
    subscription_end_date: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    stripe_customer_id: Optional[str] = Field(default=None, unique=True, index=True)
