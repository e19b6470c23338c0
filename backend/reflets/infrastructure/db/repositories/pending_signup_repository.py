"""
Pending Signup Repository

Slug reservations made at checkout time and consumed by provisioning.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlmodel import select
from sqlalchemy import delete, update

from reflets.domain.signup import CheckoutStatus, PendingSignup
from reflets.domain.subscription import utcnow
from reflets.infrastructure.db.database import get_session_context
from reflets.infrastructure.db.models.pending_signup import PendingSignupModel
from reflets.infrastructure.db.repositories.base_repository import database_errors


logger = logging.getLogger(__name__)

TABLE = "pending_signups"
UNIQUE_FIELDS = {
    "slug": "slug",
    "stripe_session_id": "stripe_session_id",
}


class PendingSignupRepository:
    """
    Repository for pending signups.

    A slug can hold one uncompleted reservation at a time. Expired,
    uncompleted reservations are released before inserting so the unique
    index only ever blocks live attempts.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_session_id(self, stripe_session_id: str) -> Optional[PendingSignup]:
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                statement = select(PendingSignupModel).where(
                    PendingSignupModel.stripe_session_id == stripe_session_id
                )
                result = await session.execute(statement)
                model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def is_slug_reserved(self, slug: str, now: Optional[datetime] = None) -> bool:
        """True when an unexpired, uncompleted reservation holds this slug."""
        now = now or utcnow()
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                statement = select(PendingSignupModel.id).where(
                    PendingSignupModel.slug == slug,
                    PendingSignupModel.completed_at.is_(None),
                    PendingSignupModel.expires_at > now,
                )
                result = await session.execute(statement)
                return result.first() is not None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(
        self,
        stripe_session_id: str,
        email: str,
        partner1_name: str,
        partner2_name: str,
        slug: str,
        theme_id: str,
        wedding_date: Optional[date] = None,
        ttl_hours: int = 24,
    ) -> PendingSignup:
        """
        Reserve ``slug`` for a checkout session.

        Raises:
            DuplicateError: field ``slug`` when another live reservation holds it.
        """
        now = utcnow()
        with database_errors("insert", TABLE, UNIQUE_FIELDS, default_field="slug"):
            async with get_session_context() as session:
                await session.execute(
                    delete(PendingSignupModel).where(
                        PendingSignupModel.slug == slug,
                        PendingSignupModel.completed_at.is_(None),
                        PendingSignupModel.expires_at <= now,
                    )
                )
                model = PendingSignupModel(
                    stripe_session_id=stripe_session_id,
                    email=email,
                    partner1_name=partner1_name.strip(),
                    partner2_name=partner2_name.strip(),
                    wedding_date=wedding_date,
                    slug=slug,
                    theme_id=theme_id,
                    checkout_status=CheckoutStatus.PENDING.value,
                    expires_at=now + timedelta(hours=ttl_hours),
                )
                session.add(model)
                await session.flush()

        logger.info(f"Reserved slug '{slug}' for checkout session {stripe_session_id}")
        return self._to_domain(model)

    async def mark_checkout_completed(self, stripe_session_id: str) -> bool:
        """Record that payment was confirmed. ``completed_at`` is left for provisioning."""
        with database_errors("update", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    update(PendingSignupModel)
                    .where(PendingSignupModel.stripe_session_id == stripe_session_id)
                    .values(
                        checkout_status=CheckoutStatus.COMPLETED.value,
                        updated_at=utcnow(),
                    )
                )
                return result.rowcount > 0

    async def mark_completed(self, signup_id: str) -> None:
        """Set ``completed_at`` once; later calls leave the first value in place."""
        now = utcnow()
        with database_errors("update", TABLE):
            async with get_session_context() as session:
                await session.execute(
                    update(PendingSignupModel)
                    .where(
                        PendingSignupModel.id == UUID(signup_id),
                        PendingSignupModel.completed_at.is_(None),
                    )
                    .values(
                        completed_at=now,
                        checkout_status=CheckoutStatus.COMPLETED.value,
                        updated_at=now,
                    )
                )

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Remove expired reservations that never completed. Completed rows are kept."""
        now = now or utcnow()
        with database_errors("delete", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    delete(PendingSignupModel).where(
                        PendingSignupModel.completed_at.is_(None),
                        PendingSignupModel.expires_at < now,
                    )
                )
                count = result.rowcount or 0
        logger.info(f"Deleted {count} expired pending signups")
        return count

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: PendingSignupModel) -> PendingSignup:
        return PendingSignup(
            id=str(model.id),
            stripe_session_id=model.stripe_session_id,
            email=model.email,
            partner1_name=model.partner1_name,
            partner2_name=model.partner2_name,
            wedding_date=model.wedding_date,
            slug=model.slug,
            theme_id=model.theme_id,
            checkout_status=CheckoutStatus(model.checkout_status),
            expires_at=model.expires_at,
            completed_at=model.completed_at,
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_pending_signup_repo_instance: Optional[PendingSignupRepository] = None


def get_pending_signup_repository() -> PendingSignupRepository:
    global _pending_signup_repo_instance

    if _pending_signup_repo_instance is None:
        _pending_signup_repo_instance = PendingSignupRepository()

    return _pending_signup_repo_instance
