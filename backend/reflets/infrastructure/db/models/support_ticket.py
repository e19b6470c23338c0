"""
Support Ticket Database Model

Operator work items raised when provisioning cannot finish on its own:
a slug taken after payment, or an identity account left behind by a
failed compensation.
"""

from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from reflets.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SupportTicketModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'support_tickets' table."""

    __tablename__ = "support_tickets"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('slug_conflict_post_payment', 'orphaned_identity')",
            name="support_tickets_kind_check",
        ),
    )

    kind: str = Field(nullable=False, index=True)
    status: str = Field(default="open", nullable=False)
    stripe_session_id: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None)
    slug: Optional[str] = Field(default=None)
    user_id: Optional[str] = Field(default=None)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
