"""
Support Ticket Repository

Opening a ticket is best effort: a failure is logged and swallowed so it
never changes the response the customer receives.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from reflets.infrastructure.db.database import get_session_context
from reflets.infrastructure.db.models.support_ticket import SupportTicketModel
from reflets.infrastructure.db.repositories.base_repository import database_errors
from reflets.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

TABLE = "support_tickets"


class SupportTicketKind(str, Enum):
    SLUG_CONFLICT_POST_PAYMENT = "slug_conflict_post_payment"
    ORPHANED_IDENTITY = "orphaned_identity"


class SupportTicketRepository:

    async def open_ticket(
        self,
        kind: SupportTicketKind,
        stripe_session_id: Optional[str] = None,
        email: Optional[str] = None,
        slug: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Record a ticket and return its id, or None if it could not be stored."""
        model = SupportTicketModel(
            kind=kind.value,
            stripe_session_id=stripe_session_id,
            email=email,
            slug=slug,
            user_id=user_id,
            details=details or {},
        )
        try:
            with database_errors("insert", TABLE):
                async with get_session_context() as session:
                    session.add(model)
        except DatabaseError as e:
            logger.error(
                f"Failed to open {kind.value} support ticket "
                f"(session={stripe_session_id}, user={user_id}): {e}"
            )
            return None

        logger.warning(f"Opened {kind.value} support ticket {model.id} for session {stripe_session_id}")
        return str(model.id)


_support_ticket_repo_instance: Optional[SupportTicketRepository] = None


def get_support_ticket_repository() -> SupportTicketRepository:
    global _support_ticket_repo_instance

    if _support_ticket_repo_instance is None:
        _support_ticket_repo_instance = SupportTicketRepository()

    return _support_ticket_repo_instance
