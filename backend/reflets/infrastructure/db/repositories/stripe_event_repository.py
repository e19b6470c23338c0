"""
Stripe Event Ledger Repository

Exactly-once claims for inbound webhook events. The insert itself is the
lock: only the caller whose INSERT succeeds dispatches the event.
"""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy import update

from reflets.domain.subscription import utcnow
from reflets.infrastructure.db.database import get_session_context
from reflets.infrastructure.db.models.stripe_event import StripeEventModel
from reflets.infrastructure.db.repositories.base_repository import database_errors
from reflets.infrastructure.exceptions import DuplicateError


logger = logging.getLogger(__name__)

TABLE = "stripe_events"


class EventStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    RECLAIMED = "reclaimed"
    DUPLICATE = "duplicate"


class StripeEventRepository:
    """Repository for the ``stripe_events`` idempotency ledger."""

    async def claim(self, event_id: str, event_type: str) -> ClaimOutcome:
        """
        Claim an event for processing.

        Returns CLAIMED when this call inserted the row, RECLAIMED when it
        took over a row a previous delivery left ``failed``, and DUPLICATE
        when the row is already ``processing`` or ``completed``.

        Raises:
            DatabaseError: For any failure other than a uniqueness violation.
        """
        try:
            with database_errors("insert", TABLE, default_field="event_id"):
                async with get_session_context() as session:
                    session.add(StripeEventModel(
                        event_id=event_id,
                        type=event_type,
                        status=EventStatus.PROCESSING.value,
                    ))
            return ClaimOutcome.CLAIMED
        except DuplicateError:
            pass

        if await self._reclaim_failed(event_id):
            logger.info(f"Re-claimed previously failed event {event_id}")
            return ClaimOutcome.RECLAIMED
        return ClaimOutcome.DUPLICATE

    async def _reclaim_failed(self, event_id: str) -> bool:
        # Conditional update so two redeliveries cannot both take over.
        with database_errors("update", TABLE):
            async with get_session_context() as session:
                result = await session.execute(
                    update(StripeEventModel)
                    .where(
                        StripeEventModel.event_id == event_id,
                        StripeEventModel.status == EventStatus.FAILED.value,
                    )
                    .values(status=EventStatus.PROCESSING.value, error_message=None)
                )
                return result.rowcount == 1

    async def mark_completed(self, event_id: str) -> None:
        with database_errors("update", TABLE):
            async with get_session_context() as session:
                await session.execute(
                    update(StripeEventModel)
                    .where(StripeEventModel.event_id == event_id)
                    .values(
                        status=EventStatus.COMPLETED.value,
                        processed_at=utcnow(),
                        error_message=None,
                    )
                )

    async def mark_failed(self, event_id: str, error_message: str) -> None:
        with database_errors("update", TABLE):
            async with get_session_context() as session:
                await session.execute(
                    update(StripeEventModel)
                    .where(StripeEventModel.event_id == event_id)
                    .values(
                        status=EventStatus.FAILED.value,
                        error_message=error_message[:1000],
                    )
                )


_stripe_event_repo_instance: Optional[StripeEventRepository] = None


def get_stripe_event_repository() -> StripeEventRepository:
    global _stripe_event_repo_instance

    if _stripe_event_repo_instance is None:
        _stripe_event_repo_instance = StripeEventRepository()

    return _stripe_event_repo_instance
