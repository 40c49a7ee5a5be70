"""Action executor contract consumed by the workflow core.

The core never touches a page.  It asks an :class:`ActionExecutor` to
perform one named action and gets back a value, or one of two typed
failures from :mod:`core.outcome`:

* :class:`~core.outcome.LogicalFailure` -- the site answered, and the
  answer was "no" (bad credentials, nothing to claim, deposit mismatch).
* :class:`~core.outcome.TechnicalFailure` (or any other exception) --
  something broke.

Site-specific executors (see ``tronpick.py``) subclass this and implement
every action.
"""

import logging
from decimal import Decimal
from enum import Enum

from core.config import BotSettings
from core.progression import Side

logger = logging.getLogger(__name__)


class SessionState(Enum):
    ACTIVE = "active"
    LOGGED_OUT = "logged_out"


class VerificationStatus(Enum):
    """Classified email-verification state of the account.

    ``AMBIGUOUS`` is treated as ``UNVERIFIED`` by the workflow.
    """
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    AMBIGUOUS = "ambiguous"


class ActionExecutor:
    """Abstract base class for action executors.

    Subclasses **must** implement every coroutine below.  Each one either
    returns its documented value or raises.

    Attributes:
        settings: Global :class:`BotSettings` configuration.
        name: Short identifier used as a log prefix.
    """

    name = "executor"

    def __init__(self, settings: BotSettings):
        self.settings = settings

    # -- environment -----------------------------------------------------

    async def launch(self) -> None:
        """Start the automation environment (browser, page)."""
        raise NotImplementedError

    async def release(self) -> None:
        """Release every resource held by the executor."""
        raise NotImplementedError

    async def force_release(self) -> None:
        """Tear down without waiting for a graceful close."""
        raise NotImplementedError

    # -- account ---------------------------------------------------------

    async def check_session(self) -> SessionState:
        """Report whether the account is currently logged in."""
        raise NotImplementedError

    async def authenticate(self) -> SessionState:
        """Log in with the configured credentials.

        Raises:
            LogicalFailure: Credentials rejected by the site.
        """
        raise NotImplementedError

    async def register(self) -> None:
        """Create the account.

        Raises:
            LogicalFailure: Site refused the registration.
        """
        raise NotImplementedError

    async def check_verification(self) -> VerificationStatus:
        """Classify the email-verification state of the account."""
        raise NotImplementedError

    async def request_verification(self) -> None:
        """Ask the site to send a verification email."""
        raise NotImplementedError

    async def poll_for_verification_proof(self) -> bool:
        """Look for the verification email and follow its link.

        Returns:
            ``True`` when the account was confirmed, ``False`` when no
            email arrived in time.
        """
        raise NotImplementedError

    # -- claims ----------------------------------------------------------

    async def claim_recurring(self) -> bool:
        """Claim the hourly faucet.

        Returns:
            ``True`` when the claim was accepted.
        """
        raise NotImplementedError

    async def claim_bonus(self) -> int:
        """Claim the one-time bonus spins.

        Returns:
            Number of bonus claims performed (0 when none were offered).
        """
        raise NotImplementedError

    # -- ladder ----------------------------------------------------------

    async def place_stake(self, amount: Decimal, side: Side) -> None:
        """Deposit *amount* and select *side* for the next spin.

        Raises:
            LogicalFailure: Deposited amount could not be made to match
                *amount*.
        """
        raise NotImplementedError

    async def spin(self) -> None:
        raise NotImplementedError

    async def read_last_outcome(self) -> int:
        """Return the number the wheel landed on in the last spin."""
        raise NotImplementedError

    async def rotate_seed(self) -> bool:
        """Replace the provably-fair client seed.

        Returns:
            ``True`` when the site accepted the new seed.
        """
        raise NotImplementedError

    async def hard_refresh(self) -> None:
        """Reload the interaction surface from scratch."""
        raise NotImplementedError

    async def read_monitored_balance(self) -> Decimal:
        raise NotImplementedError
