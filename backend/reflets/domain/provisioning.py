"""
Account Provisioning

Turns a confirmed payment (or a trial signup) into an identity, a profile
and a wedding. The three records live in two systems that cannot share a
transaction, so each step that follows identity creation carries its own
compensation:

    1. confirm the Stripe session is paid
    2. load the pending signup; a completed one is replayed, not re-run
    3. re-check the slug against the weddings table
    4. create the identity                  (nothing to undo)
    5. upsert the profile                   -> delete identity
    6. insert the wedding                   -> delete profile, delete identity
    7. mark the pending signup completed    (retried; logged on failure, never undone)
    8. sign the user in                     (failure -> needsLogin)

Compensations are retried a bounded number of times with linear backoff.
When they still fail the orphan is logged at CRITICAL and a support ticket
is opened; the caller always receives a failure for an incomplete account.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from reflets.config.settings import Settings
from reflets.domain.interfaces import IdentityGateway, IdentityUser, PaymentGateway
from reflets.domain.signup import (
    PASSWORD_REQUIREMENTS_MESSAGE,
    AuthSession,
    PendingSignup,
    ProvisionedUser,
    ProvisioningResult,
    TrialSignupRequest,
    VerifyPaymentRequest,
    Wedding,
    admin_redirect,
    build_wedding_config,
    build_wedding_name,
    generate_admin_token,
    generate_guest_code,
    validate_password,
    validate_signup,
)
from reflets.domain.subscription import (
    SubscriptionTransition,
    on_checkout_completed,
    trial_grant,
    utcnow,
)
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
)
from reflets.infrastructure.db.repositories.profile_repository import ProfileRepository
from reflets.infrastructure.db.repositories.support_ticket_repository import (
    SupportTicketKind,
    SupportTicketRepository,
)
from reflets.infrastructure.db.repositories.wedding_repository import WeddingRepository
from reflets.infrastructure.exceptions import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    PaymentRequiredError,
    ProvisioningError,
    ValidationError,
)


logger = logging.getLogger(__name__)

SLUG_CONFLICT_POST_PAYMENT = "SLUG_CONFLICT_POST_PAYMENT"
SLUG_CONFLICT_MESSAGE = (
    "This URL was just taken by someone else. "
    "Please contact support to choose a different URL."
)
ACCOUNT_FAILED_MESSAGE = "Account creation failed. Please try again or contact support."

Compensation = Tuple[str, Callable[[], Awaitable[None]]]


@dataclass(frozen=True)
class AccountRequest:
    """Everything needed to build one account, independent of how it was paid for."""
    email: str
    password: str
    partner1_name: str
    partner2_name: str
    slug: str
    theme_id: str
    wedding_date: Optional[date] = None
    stripe_session_id: Optional[str] = None

    @property
    def couple_names(self) -> str:
        return f"{self.partner1_name} & {self.partner2_name}"

    @property
    def is_paid(self) -> bool:
        return self.stripe_session_id is not None


class AccountProvisioner:
    """
    Provisioning saga for paid and trial signups.

    ``sleep`` and ``clock`` are injectable so tests can run the backoff
    schedule instantly and pin "now".
    """

    def __init__(
        self,
        payments: PaymentGateway,
        identity: IdentityGateway,
        pending_signups: PendingSignupRepository,
        profiles: ProfileRepository,
        weddings: WeddingRepository,
        tickets: SupportTicketRepository,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._payments = payments
        self._identity = identity
        self._pending_signups = pending_signups
        self._profiles = profiles
        self._weddings = weddings
        self._tickets = tickets
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # Entry points
    # =========================================================================

    async def verify_payment(self, request: VerifyPaymentRequest) -> ProvisioningResult:
        """
        Provision the account behind a paid checkout session.

        Replays for an already-completed signup return the original redirect
        without writing anything.
        """
        session = await self._payments.retrieve_session(request.session_id)
        if not session.is_paid:
            raise PaymentRequiredError("Payment has not been completed yet.")

        signup = await self._pending_signups.get_by_session_id(request.session_id)
        if signup is None:
            raise NotFoundError(
                "Unable to find your signup information. Please contact support.",
                error="Signup data not found",
            )

        if signup.is_completed:
            logger.info(f"Replaying completed signup for session {request.session_id}")
            return self._replay(signup)

        password = request.password or ""
        if not password:
            raise ValidationError(
                "Password is required to finish creating your account.",
                field="password",
                error="Missing password",
            )
        if validate_password(password):
            raise ValidationError(
                PASSWORD_REQUIREMENTS_MESSAGE,
                field="password",
                error="Weak password",
            )

        grant = on_checkout_completed(
            self._clock(),
            self._settings.initial_period_years,
            stripe_customer_id=session.customer_id,
        )
        return await self.provision(self._from_signup(signup, password), grant, signup)

    async def start_trial(self, request: TrialSignupRequest) -> ProvisioningResult:
        """Provision an unpaid account on the default trial grant."""
        slug = validate_signup(request)
        account = AccountRequest(
            email=request.email,
            password=request.password,
            partner1_name=request.partner1_name.strip(),
            partner2_name=request.partner2_name.strip(),
            slug=slug,
            theme_id=request.theme_id.value,
            wedding_date=request.wedding_date,
        )
        if await self._pending_signups.is_slug_reserved(slug):
            raise ConflictError(
                "This URL is currently being reserved by another signup.",
                field="slug",
                error="Slug reserved",
            )
        return await self.provision(account, trial_grant(self._clock(), self._settings.trial_days))

    # =========================================================================
    # Saga
    # =========================================================================

    async def provision(
        self,
        account: AccountRequest,
        grant: Optional[SubscriptionTransition] = None,
        signup: Optional[PendingSignup] = None,
    ) -> ProvisioningResult:
        """Run steps 3-8. ``grant`` defaults to a trial."""
        grant = grant or trial_grant(self._clock(), self._settings.trial_days)

        # Step 3: the weddings table is the final authority on the slug
        if await self._weddings.slug_exists(account.slug):
            if signup is not None and await self._owns_wedding(signup):
                # A previous run built this account but never recorded completion
                await self._mark_signup_completed(signup)
                return self._replay(signup)
            raise await self._slug_conflict(account)

        # Step 4: identity (AccountExistsError / IdentityGatewayError propagate)
        user = await self._identity.create_user(
            email=account.email,
            password=account.password,
            metadata={"full_name": account.couple_names},
        )

        # Step 5: profile
        try:
            await self._profiles.upsert(
                profile_id=user.id,
                email=account.email,
                full_name=account.couple_names,
                grant=grant,
            )
        except Exception as e:
            logger.error(f"Profile creation failed for user {user.id}: {e}")
            await self._compensate(user, account, [
                ("delete identity", lambda: self._identity.delete_user(user.id)),
            ])
            raise ProvisioningError(
                ACCOUNT_FAILED_MESSAGE,
                error="Profile creation failed",
                original_error=e,
            ) from e

        # Step 6: wedding
        try:
            wedding = await self._create_wedding(user, account)
        except Exception as e:
            logger.error(f"Wedding creation failed for user {user.id}: {e}")
            await self._compensate(user, account, [
                ("delete profile", lambda: self._delete_profile(user.id)),
                ("delete identity", lambda: self._identity.delete_user(user.id)),
            ])
            if isinstance(e, DuplicateError) and e.field == "slug":
                raise await self._slug_conflict(account) from e
            raise ProvisioningError(
                ACCOUNT_FAILED_MESSAGE,
                error="Wedding creation failed",
                original_error=e,
            ) from e

        # Step 7: idempotency boundary for replays
        if signup is not None:
            await self._mark_signup_completed(signup)

        logger.info(f"Provisioned account {user.id} with wedding '{wedding.slug}'")

        # Step 8: convenience sign-in
        provisioned = ProvisionedUser(id=user.id, email=account.email, wedding_id=wedding.id)
        try:
            tokens = await self._identity.sign_in(account.email, account.password)
        except Exception as e:
            logger.error(f"Auto-login failed for user {user.id}: {e}")
            return ProvisioningResult(
                slug=wedding.slug,
                redirect=admin_redirect(wedding.slug),
                needsLogin=True,
                message="Account created! Please sign in to continue.",
                user=provisioned,
            )

        return ProvisioningResult(
            slug=wedding.slug,
            redirect=admin_redirect(wedding.slug),
            session=AuthSession(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=tokens.expires_at,
            ),
            user=provisioned,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _from_signup(self, signup: PendingSignup, password: str) -> AccountRequest:
        return AccountRequest(
            email=signup.email,
            password=password,
            partner1_name=signup.partner1_name,
            partner2_name=signup.partner2_name,
            slug=signup.slug,
            theme_id=signup.theme_id,
            wedding_date=signup.wedding_date,
            stripe_session_id=signup.stripe_session_id,
        )

    async def _create_wedding(self, user: IdentityUser, account: AccountRequest) -> Wedding:
        return await self._weddings.create(
            owner_id=user.id,
            slug=account.slug,
            guest_code=generate_guest_code(),
            admin_token=generate_admin_token(),
            name=build_wedding_name(account.partner1_name, account.partner2_name),
            partner1_name=account.partner1_name,
            partner2_name=account.partner2_name,
            config=build_wedding_config(account.theme_id),
            wedding_date=account.wedding_date,
        )

    async def _delete_profile(self, profile_id: str) -> None:
        await self._profiles.delete(profile_id)

    def _replay(self, signup: PendingSignup) -> ProvisioningResult:
        return ProvisioningResult(
            slug=signup.slug,
            redirect=admin_redirect(signup.slug),
            alreadyCompleted=True,
            message="Your account has already been created. Please sign in.",
        )

    async def _owns_wedding(self, signup: PendingSignup) -> bool:
        """True when the wedding on this slug belongs to the signup's own email."""
        wedding = await self._weddings.get_by_slug(signup.slug)
        if wedding is None:
            return False
        owner = await self._profiles.get_by_id(wedding.owner_id)
        return owner is not None and owner.email.lower() == signup.email.lower()

    async def _mark_signup_completed(self, signup: PendingSignup) -> bool:
        max_attempts = self._settings.compensation_max_attempts
        backoff = self._settings.compensation_backoff_seconds

        for attempt in range(max_attempts):
            try:
                await self._pending_signups.mark_completed(signup.id)
                return True
            except Exception as e:
                logger.error(
                    f"Marking signup {signup.id} completed failed "
                    f"({attempt + 1}/{max_attempts}): {e}"
                )
                if attempt < max_attempts - 1:
                    await self._sleep(backoff * (attempt + 1))

        logger.critical(
            f"Pending signup {signup.id} could not be marked completed; "
            f"account for {signup.email} exists"
        )
        return False

    async def _slug_conflict(self, account: AccountRequest) -> ConflictError:
        """Build the 409 for a taken slug; after payment it also opens a ticket."""
        if not account.is_paid:
            return ConflictError(
                "This URL is already in use. Please choose another.",
                field="slug",
                error="Slug taken",
            )

        logger.warning(
            f"Slug '{account.slug}' taken after payment for session {account.stripe_session_id}"
        )
        await self._tickets.open_ticket(
            SupportTicketKind.SLUG_CONFLICT_POST_PAYMENT,
            stripe_session_id=account.stripe_session_id,
            email=account.email,
            slug=account.slug,
        )
        return ConflictError(
            SLUG_CONFLICT_MESSAGE,
            field="slug",
            code=SLUG_CONFLICT_POST_PAYMENT,
            error="Slug taken after payment",
        )

    async def _compensate(
        self,
        user: IdentityUser,
        account: AccountRequest,
        actions: List[Compensation],
    ) -> bool:
        """
        Run ``actions`` in order, retrying the whole sequence on failure.

        Every action is an idempotent delete, so a retry after a partial
        success is safe. Returns False when the orphan was left for support.
        """
        max_attempts = self._settings.compensation_max_attempts
        backoff = self._settings.compensation_backoff_seconds
        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            try:
                for _, action in actions:
                    await action()
                logger.info(f"Compensation succeeded for user {user.id}")
                return True
            except Exception as e:
                last_error = e
                logger.error(
                    f"Cleanup attempt {attempt + 1}/{max_attempts} failed for user {user.id}: {e}"
                )
                if attempt < max_attempts - 1:
                    await self._sleep(backoff * (attempt + 1))

        logger.critical(
            f"Manual cleanup required, user id={user.id} "
            f"(steps: {', '.join(name for name, _ in actions)}; last error: {last_error})"
        )
        await self._tickets.open_ticket(
            SupportTicketKind.ORPHANED_IDENTITY,
            stripe_session_id=account.stripe_session_id,
            email=account.email,
            slug=account.slug,
            user_id=user.id,
            details={
                "steps": [name for name, _ in actions],
                "error": str(last_error),
            },
        )
        return False
