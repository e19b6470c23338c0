"""
Stripe Event Ledger Model

Idempotency marker for inbound webhook events. The primary key on
``event_id`` is what makes a claim exclusive.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

from reflets.infrastructure.db.models.base import utcnow


class StripeEventModel(SQLModel, table=True):
    """Maps to the 'stripe_events' table."""

    __tablename__ = "stripe_events"
    __table_args__ = (
        CheckConstraint(
            "status IN ('processing', 'completed', 'failed')",
            name="stripe_events_status_check",
        ),
    )

    event_id: str = Field(primary_key=True)
    type: str = Field(nullable=False, index=True)
    status: str = Field(default="processing", nullable=False)
    error_message: Optional[str] = Field(default=None)
    processed_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
