"""
Unit tests for the ledger and reservation repositories.

``get_session_context`` is replaced with a scripted session so the
insert / conditional-update logic runs without a database. Unique
violations are raised at commit time, the way asyncpg reports them.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from reflets.domain.signup import CheckoutStatus
from reflets.infrastructure.db.repositories import (
    pending_signup_repository,
    stripe_event_repository,
)
from reflets.infrastructure.db.repositories.pending_signup_repository import PendingSignupRepository
from reflets.infrastructure.db.repositories.stripe_event_repository import (
    ClaimOutcome,
    EventStatus,
    StripeEventRepository,
)
from reflets.infrastructure.exceptions import DatabaseError, DuplicateError


class DriverError(Exception):
    def __init__(self, sqlstate: str, constraint_name: str = None):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def unique_violation(constraint_name: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, DriverError("23505", constraint_name))


class ScriptedSession:
    """Records what a repository does; fails at commit when told to."""

    def __init__(self, rowcount: int = 1, commit_error: Exception = None):
        self.rowcount = rowcount
        self.commit_error = commit_error
        self.added = []
        self.statements = []
        self.committed = False
        self.rolled_back = False

    def add(self, model):
        self.added.append(model)

    async def flush(self):
        pass

    async def execute(self, statement):
        self.statements.append(statement)
        return MagicMock(rowcount=self.rowcount)

    async def commit(self):
        if self.commit_error is not None:
            raise self.commit_error
        self.committed = True

    async def rollback(self):
        self.rolled_back = True


def sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def sessions(monkeypatch):
    """Queue of sessions handed out one per ``get_session_context`` call."""
    queue = []

    @asynccontextmanager
    async def session_context():
        session = queue.pop(0)
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    monkeypatch.setattr(stripe_event_repository, "get_session_context", session_context)
    monkeypatch.setattr(pending_signup_repository, "get_session_context", session_context)
    return queue


# =============================================================================
# Stripe event ledger
# =============================================================================

class TestClaim:

    @pytest.mark.asyncio
    async def test_first_delivery_inserts_processing_row(self, sessions):
        insert = ScriptedSession()
        sessions.append(insert)

        outcome = await StripeEventRepository().claim("evt_1", "invoice.payment_failed")

        assert outcome == ClaimOutcome.CLAIMED
        assert insert.committed
        [row] = insert.added
        assert row.event_id == "evt_1"
        assert row.status == EventStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_failed_row_is_taken_over(self, sessions):
        reclaim = ScriptedSession(rowcount=1)
        sessions.extend([
            ScriptedSession(commit_error=unique_violation("stripe_events_pkey")),
            reclaim,
        ])

        outcome = await StripeEventRepository().claim("evt_1", "invoice.payment_failed")

        assert outcome == ClaimOutcome.RECLAIMED
        statement = sql(reclaim.statements[0])
        assert statement.startswith("UPDATE stripe_events")
        assert "stripe_events.status = " in statement

    @pytest.mark.asyncio
    async def test_processing_or_completed_row_is_duplicate(self, sessions):
        insert = ScriptedSession(commit_error=unique_violation("stripe_events_pkey"))
        sessions.extend([insert, ScriptedSession(rowcount=0)])

        outcome = await StripeEventRepository().claim("evt_1", "invoice.payment_failed")

        assert outcome == ClaimOutcome.DUPLICATE
        assert insert.rolled_back

    @pytest.mark.asyncio
    async def test_other_integrity_error_is_not_a_duplicate(self, sessions):
        error = IntegrityError("INSERT ...", {}, DriverError("23502"))
        sessions.append(ScriptedSession(commit_error=error))

        with pytest.raises(DatabaseError) as exc_info:
            await StripeEventRepository().claim("evt_1", "invoice.payment_failed")

        assert not isinstance(exc_info.value, DuplicateError)
        assert sessions == []

    @pytest.mark.asyncio
    async def test_unreachable_database(self, sessions):
        sessions.append(ScriptedSession(commit_error=OperationalError("INSERT", {}, ConnectionRefusedError())))

        with pytest.raises(DatabaseError):
            await StripeEventRepository().claim("evt_1", "invoice.payment_failed")


class TestLedgerStatus:

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_message(self, sessions):
        session = ScriptedSession()
        sessions.append(session)

        await StripeEventRepository().mark_failed("evt_1", "x" * 5000)

        params = session.statements[0].compile().params
        assert params["status"] == EventStatus.FAILED.value
        assert len(params["error_message"]) == 1000


# =============================================================================
# Pending signups
# =============================================================================

def _reserve(repo: PendingSignupRepository, slug: str = "alice-bob", session_id: str = "cs_1"):
    return repo.create(
        stripe_session_id=session_id,
        email="alice@example.com",
        partner1_name=" Alice ",
        partner2_name="Bob",
        slug=slug,
        theme_id="classic",
    )


class TestReserveSlug:

    @pytest.mark.asyncio
    async def test_expired_reservation_released_before_insert(self, sessions):
        session = ScriptedSession()
        sessions.append(session)

        signup = await _reserve(PendingSignupRepository())

        release = sql(session.statements[0])
        assert release.startswith("DELETE FROM pending_signups")
        assert "pending_signups.completed_at IS NULL" in release
        assert "pending_signups.expires_at <=" in release

        assert signup.slug == "alice-bob"
        assert signup.partner1_name == "Alice"
        assert signup.checkout_status == CheckoutStatus.PENDING
        assert signup.completed_at is None
        remaining = signup.expires_at - datetime.now(timezone.utc)
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_live_reservation_blocks_slug(self, sessions):
        sessions.append(ScriptedSession(commit_error=unique_violation("idx_pending_signups_active_slug")))

        with pytest.raises(DuplicateError) as exc_info:
            await _reserve(PendingSignupRepository())

        assert exc_info.value.field == "slug"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_reused_session_id_names_session_field(self, sessions):
        sessions.append(ScriptedSession(
            commit_error=unique_violation("ix_pending_signups_stripe_session_id")
        ))

        with pytest.raises(DuplicateError) as exc_info:
            await _reserve(PendingSignupRepository())

        assert exc_info.value.field == "stripe_session_id"


class TestDeleteExpired:

    @pytest.mark.asyncio
    async def test_only_uncompleted_rows_are_deleted(self, sessions):
        session = ScriptedSession(rowcount=2)
        sessions.append(session)

        deleted = await PendingSignupRepository().delete_expired(
            now=datetime(2026, 3, 1, tzinfo=timezone.utc)
        )

        assert deleted == 2
        statement = sql(session.statements[0])
        assert statement.startswith("DELETE FROM pending_signups")
        assert "pending_signups.completed_at IS NULL" in statement
        assert "pending_signups.expires_at <" in statement

    @pytest.mark.asyncio
    async def test_unknown_rowcount_counts_as_zero(self, sessions):
        sessions.append(ScriptedSession(rowcount=None))

        assert await PendingSignupRepository().delete_expired() == 0
