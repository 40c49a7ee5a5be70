"""Shared fixtures: fast settings, a scripted executor and a recording notifier."""

from decimal import Decimal

import pytest

from core.config import BotSettings
from core.notifier import Notifier
from faucets.base import ActionExecutor, SessionState, VerificationStatus


def make_settings(**overrides) -> BotSettings:
    """BotSettings with credentials filled in and every delay at zero."""
    values = dict(
        tronpick_email="bot@example.com",
        tronpick_username="tronbot",
        tronpick_password="secret",
        imap_host="imap.example.com",
        imap_user="bot@example.com",
        imap_password="secret",
        telegram_bot_token=None,
        telegram_system_chat_id=None,
        telegram_money_chat_id=None,
        tick_delay_seconds=0,
        step_timeout_seconds=5,
        action_timeout_seconds=2,
        shutdown_grace_seconds=1,
        walk_delay_seconds=0,
        level_delay_seconds=0,
        recurring_claim_retry_delay_seconds=0,
        verification_retry_delay_seconds=0,
        verification_poll_timeout_seconds=0,
        verification_poll_interval_seconds=0,
        refresh_settle_seconds=0,
        rotation_delay_seconds=0,
        spin_settle_seconds=0,
        cool_down_seconds=0,
        manual_action_poll_seconds=0,
        notify_retry_delay_seconds=0,
    )
    values.update(overrides)
    return BotSettings(_env_file=None, **values)


class FixedSide:
    """Stand-in for the engine's RNG that always picks the first side."""

    def choice(self, options):
        return options[0]


class FakeExecutor(ActionExecutor):
    """Executor driven by per-action scripts.

    Each script is a list consumed front to back; its last entry repeats
    once the list runs out.  Exception instances are raised.
    """

    name = "fake"

    DEFAULTS = {
        "launch": None,
        "release": None,
        "force_release": None,
        "check_session": SessionState.ACTIVE,
        "authenticate": SessionState.ACTIVE,
        "register": None,
        "check_verification": VerificationStatus.VERIFIED,
        "request_verification": None,
        "poll_for_verification_proof": True,
        "claim_recurring": True,
        "claim_bonus": 1,
        "place_stake": None,
        "spin": None,
        "read_last_outcome": 1,
        "rotate_seed": True,
        "hard_refresh": None,
        "read_monitored_balance": Decimal("5"),
    }

    def __init__(self, settings, **scripts):
        super().__init__(settings)
        self.scripts = {name: list(items) for name, items in scripts.items()}
        self.calls = []
        self.stakes = []

    def count(self, name):
        return self.calls.count(name)

    async def _next(self, name):
        self.calls.append(name)
        script = self.scripts.get(name)
        if script:
            item = script.pop(0) if len(script) > 1 else script[0]
        else:
            item = self.DEFAULTS[name]
        if isinstance(item, BaseException):
            raise item
        return item

    async def launch(self):
        return await self._next("launch")

    async def release(self):
        return await self._next("release")

    async def force_release(self):
        return await self._next("force_release")

    async def check_session(self):
        return await self._next("check_session")

    async def authenticate(self):
        return await self._next("authenticate")

    async def register(self):
        return await self._next("register")

    async def check_verification(self):
        return await self._next("check_verification")

    async def request_verification(self):
        return await self._next("request_verification")

    async def poll_for_verification_proof(self):
        return await self._next("poll_for_verification_proof")

    async def claim_recurring(self):
        return await self._next("claim_recurring")

    async def claim_bonus(self):
        return await self._next("claim_bonus")

    async def place_stake(self, amount, side):
        self.stakes.append((amount, side))
        return await self._next("place_stake")

    async def spin(self):
        return await self._next("spin")

    async def read_last_outcome(self):
        return await self._next("read_last_outcome")

    async def rotate_seed(self):
        return await self._next("rotate_seed")

    async def hard_refresh(self):
        return await self._next("hard_refresh")

    async def read_monitored_balance(self):
        return await self._next("read_monitored_balance")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def notify(self, channel, event, details=None):
        self.sent.append((channel, event, details or {}))

    def events(self):
        return [event for _, event, _ in self.sent]


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fixed_side():
    return FixedSide()
