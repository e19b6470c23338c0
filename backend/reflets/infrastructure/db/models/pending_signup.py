"""
PendingSignup Database Model

One row per checkout attempt. The partial unique index allows a single
uncompleted reservation per slug; expired reservations are released by the
repository before a new one is inserted.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, text
from sqlmodel import Field

from reflets.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class PendingSignupModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'pending_signups' table."""

    __tablename__ = "pending_signups"
    __table_args__ = (
        Index(
            "idx_pending_signups_active_slug",
            "slug",
            unique=True,
            postgresql_where=text("completed_at IS NULL"),
        ),
        Index("idx_pending_signups_expires_at", "expires_at"),
        CheckConstraint(
            "checkout_status IN ('pending', 'completed')",
            name="pending_signups_checkout_status_check",
        ),
    )

    stripe_session_id: str = Field(unique=True, index=True, nullable=False)
    email: str = Field(nullable=False)
    partner1_name: str = Field(max_length=100, nullable=False)
    partner2_name: str = Field(max_length=100, nullable=False)
    wedding_date: Optional[date] = Field(default=None)
    slug: str = Field(max_length=50, nullable=False)
    theme_id: str = Field(default="classic", nullable=False)
    checkout_status: str = Field(default="pending", nullable=False)
    expires_at: datetime = Field(nullable=False, sa_type=DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
