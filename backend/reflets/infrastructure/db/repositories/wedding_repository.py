"""
Wedding Repository

Data access for provisioned weddings. The table's own slug uniqueness is
the final authority on who owns a slug.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from sqlmodel import select

from reflets.domain.signup import Wedding
from reflets.infrastructure.db.database import get_session_context
from reflets.infrastructure.db.models.wedding import WeddingModel
from reflets.infrastructure.db.repositories.base_repository import database_errors


logger = logging.getLogger(__name__)

TABLE = "weddings"
UNIQUE_FIELDS = {
    "slug": "slug",
    "owner_id": "owner_id",
}


class WeddingRepository:

    async def slug_exists(self, slug: str) -> bool:
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    select(WeddingModel.id).where(WeddingModel.slug == slug)
                )
                return result.first() is not None

    async def get_by_slug(self, slug: str) -> Optional[Wedding]:
        with database_errors("select", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    select(WeddingModel).where(WeddingModel.slug == slug)
                )
                model = result.scalar_one_or_none()
        if model is None:
            return None
        return Wedding(
            id=str(model.id),
            owner_id=str(model.owner_id),
            slug=model.slug,
            guest_code=model.pin_code,
            name=model.name,
        )

    async def create(
        self,
        owner_id: str,
        slug: str,
        guest_code: str,
        admin_token: str,
        name: str,
        partner1_name: str,
        partner2_name: str,
        config: Dict[str, Any],
        wedding_date: Optional[date] = None,
    ) -> Wedding:
        """
        Insert the wedding row.

        Raises:
            DuplicateError: field ``slug`` when the slug is already taken.
        """
        model = WeddingModel(
            owner_id=UUID(owner_id),
            slug=slug,
            pin_code=guest_code,
            magic_token=admin_token,
            name=name,
            bride_name=partner1_name,
            groom_name=partner2_name,
            wedding_date=wedding_date,
            config=config,
            is_published=True,
        )
        with database_errors("insert", TABLE, UNIQUE_FIELDS, default_field="slug"):
            async with get_session_context() as session:
                session.add(model)
                await session.flush()

        logger.info(f"Created wedding '{slug}' for owner {owner_id}")
        return Wedding(
            id=str(model.id),
            owner_id=owner_id,
            slug=slug,
            guest_code=guest_code,
            name=name,
        )


_wedding_repo_instance: Optional[WeddingRepository] = None


def get_wedding_repository() -> WeddingRepository:
    global _wedding_repo_instance

    if _wedding_repo_instance is None:
        _wedding_repo_instance = WeddingRepository()

    return _wedding_repo_instance
