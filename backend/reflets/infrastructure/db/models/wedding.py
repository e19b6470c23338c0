"""
Wedding Database Model

The provisioned tenant. ``slug`` is globally unique and permanent, and each
owner has exactly one wedding.
"""

from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import Column, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlmodel import Field

from reflets.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class WeddingModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'weddings' table."""

    __tablename__ = "weddings"

    owner_id: UUID = Field(
        sa_column=Column(
            PGUUID(as_uuid=True),
            ForeignKey("profiles.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        )
    )
    slug: str = Field(max_length=50, unique=True, index=True, nullable=False)
    pin_code: str = Field(max_length=6, nullable=False)
    magic_token: str = Field(nullable=False)
    name: str = Field(nullable=False)
    bride_name: str = Field(nullable=False)
    groom_name: str = Field(nullable=False)
    wedding_date: Optional[date] = Field(default=None)
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
    is_published: bool = Field(default=True)
