"""
Profile Repository

Data access for customer profiles. Subscription status is written only
through ``upsert`` (initial grant) and ``apply_transition``.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlmodel import select
from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from reflets.domain.subscription import (
    Profile,
    SubscriptionStatus,
    SubscriptionTransition,
    utcnow,
)
from reflets.infrastructure.db.database import get_session_context
from reflets.infrastructure.db.models.profile import ProfileModel
from reflets.infrastructure.db.repositories.base_repository import database_errors


logger = logging.getLogger(__name__)

TABLE = "profiles"


class ProfileRepository:
    """Repository for profile data access with domain model mapping."""

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_id(self, profile_id: str) -> Optional[Profile]:
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                model = await session.get(ProfileModel, UUID(profile_id))
        return self._to_domain(model) if model else None

    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[Profile]:
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                statement = select(ProfileModel).where(
                    ProfileModel.stripe_customer_id == stripe_customer_id
                )
                result = await session.execute(statement)
                model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def upsert(
        self,
        profile_id: str,
        email: str,
        full_name: Optional[str],
        grant: SubscriptionTransition,
    ) -> Profile:
        """
        Create or overwrite the profile for a freshly created identity.

        Uses PostgreSQL upsert on the primary key so a retried provisioning
        converges on the same row.
        """
        now = utcnow()
        values = {
            "id": UUID(profile_id),
            "email": email,
            "full_name": full_name,
            "subscription_status": grant.status.value,
            "subscription_end_date": grant.end_date,
            "stripe_customer_id": grant.stripe_customer_id,
            "created_at": now,
            "updated_at": now,
        }

        with database_errors("upsert", TABLE, default_field="id"):
            async with get_session_context() as session:
                stmt = pg_insert(ProfileModel).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        "email": stmt.excluded.email,
                        "full_name": stmt.excluded.full_name,
                        "subscription_status": stmt.excluded.subscription_status,
                        "subscription_end_date": stmt.excluded.subscription_end_date,
                        "stripe_customer_id": stmt.excluded.stripe_customer_id,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)

        logger.info(f"Upserted profile {profile_id} ({grant.status.value})")
        return Profile(
            id=profile_id,
            email=email,
            full_name=full_name,
            subscription_status=grant.status,
            subscription_end_date=grant.end_date,
            stripe_customer_id=grant.stripe_customer_id,
            created_at=now,
            updated_at=now,
        )

    async def apply_transition(self, profile_id: str, transition: SubscriptionTransition) -> None:
        """Persist a subscription transition; a None end date keeps the stored one."""
        values = {
            "subscription_status": transition.status.value,
            "updated_at": utcnow(),
        }
        if transition.end_date is not None:
            values["subscription_end_date"] = transition.end_date
        if transition.stripe_customer_id is not None:
            values["stripe_customer_id"] = transition.stripe_customer_id

        with database_errors("update", TABLE, default_field="stripe_customer_id"):
            async with get_session_context() as session:
                await session.execute(
                    update(ProfileModel)
                    .where(ProfileModel.id == UUID(profile_id))
                    .values(**values)
                )

        logger.info(f"Profile {profile_id} -> {transition.status.value}")

    async def set_stripe_customer_id(self, profile_id: str, stripe_customer_id: str) -> None:
        with database_errors("update", TABLE, default_field="stripe_customer_id"):
            async with get_session_context() as session:
                await session.execute(
                    update(ProfileModel)
                    .where(ProfileModel.id == UUID(profile_id))
                    .values(stripe_customer_id=stripe_customer_id, updated_at=utcnow())
                )

    async def delete(self, profile_id: str) -> bool:
        """Delete a profile. Deleting a missing row is not an error."""
        with database_errors("delete", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    delete(ProfileModel).where(ProfileModel.id == UUID(profile_id))
                )
                return result.rowcount > 0

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: ProfileModel) -> Profile:
        return Profile(
            id=str(model.id),
            email=model.email,
            full_name=model.full_name,
            subscription_status=SubscriptionStatus(model.subscription_status),
            subscription_end_date=model.subscription_end_date,
            stripe_customer_id=model.stripe_customer_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


_profile_repo_instance: Optional[ProfileRepository] = None


def get_profile_repository() -> ProfileRepository:
    """Get or create profile repository singleton."""
    global _profile_repo_instance

    if _profile_repo_instance is None:
        _profile_repo_instance = ProfileRepository()

    return _profile_repo_instance
