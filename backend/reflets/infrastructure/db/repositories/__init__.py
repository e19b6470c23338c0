"""
Repository Layer for Reflets

Exports all repository classes for dependency injection.
"""

from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
    get_pending_signup_repository,
)
from reflets.infrastructure.db.repositories.profile_repository import (
    ProfileRepository,
    get_profile_repository,
)
from reflets.infrastructure.db.repositories.stripe_event_repository import (
    ClaimOutcome,
    StripeEventRepository,
    get_stripe_event_repository,
)
from reflets.infrastructure.db.repositories.support_ticket_repository import (
    SupportTicketKind,
    SupportTicketRepository,
    get_support_ticket_repository,
)
from reflets.infrastructure.db.repositories.wedding_repository import (
    WeddingRepository,
    get_wedding_repository,
)


__all__ = [
    "PendingSignupRepository",
    "ProfileRepository",
    "StripeEventRepository",
    "SupportTicketRepository",
    "WeddingRepository",
    "ClaimOutcome",
    "SupportTicketKind",
    "get_pending_signup_repository",
    "get_profile_repository",
    "get_stripe_event_repository",
    "get_support_ticket_repository",
    "get_wedding_repository",
]
