"""Withdrawal threshold controller.

Once the monitored balance reaches the trigger the bot stops staking and
waits for the operator to withdraw by hand, leaving roughly the retain
level on the account.  The withdrawal is recognised by an absolute drop
of at least ``resume_delta`` below the balance recorded at arming time;
smaller moves (price noise, hourly claims landing) keep it paused.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ThresholdMode(Enum):
    """Result of one :meth:`ThresholdController.check`.

    Members:
        NORMAL: Not armed, below the trigger.
        TRIGGERED: Armed on this check.
        ARMED: Already armed, no qualifying drop yet.
        RESUMED: Qualifying drop seen; disarmed on this check.
    """
    NORMAL = "normal"
    TRIGGERED = "triggered"
    ARMED = "armed"
    RESUMED = "resumed"


class ThresholdController:
    """Arms at ``trigger_level`` and disarms after a drop of ``resume_delta``.

    ``retain_level`` is what the operator is expected to leave behind
    after withdrawing.  It is reported, never enforced.
    """

    def __init__(
        self,
        trigger_level: Decimal = Decimal("16.6383"),
        retain_level: Decimal = Decimal("1.6383"),
        resume_delta: Decimal = Decimal("10.0"),
        reset_pnl_on_resume: bool = True,
    ):
        self.trigger_level = Decimal(trigger_level)
        self.retain_level = Decimal(retain_level)
        self.resume_delta = Decimal(resume_delta)
        self.reset_pnl_on_resume = reset_pnl_on_resume
        self.armed = False
        self.armed_value: Optional[Decimal] = None
        self.monitored_value: Optional[Decimal] = None

    def restore(self, armed: bool, armed_value: Optional[Decimal]) -> None:
        """Rebuild the armed state from checkpoint fields."""
        if armed and armed_value is None:
            logger.warning(
                "[threshold] Paused flag restored without an arming "
                "value; it will be recorded on the next check"
            )
        self.armed = armed
        self.armed_value = armed_value if armed else None

    @property
    def withdrawable(self) -> Optional[Decimal]:
        """Amount above the retain level at arming time."""
        if self.armed_value is None:
            return None
        return self.armed_value - self.retain_level

    def check(self, monitored_value: Decimal) -> ThresholdMode:
        """Feed the latest balance and return the resulting mode."""
        value = Decimal(monitored_value)
        self.monitored_value = value

        if not self.armed:
            if value >= self.trigger_level:
                self.armed = True
                self.armed_value = value
                logger.warning(
                    f"[threshold] Balance {value} reached trigger "
                    f"{self.trigger_level}, pausing for withdrawal "
                    f"(keep {self.retain_level})"
                )
                return ThresholdMode.TRIGGERED
            return ThresholdMode.NORMAL

        if self.armed_value is None:
            self.armed_value = value
            return ThresholdMode.ARMED

        drop = self.armed_value - value
        if drop >= self.resume_delta:
            logger.info(
                f"[threshold] Balance dropped {drop} from {self.armed_value} "
                f"to {value}, withdrawal detected"
            )
            self.armed = False
            self.armed_value = None
            return ThresholdMode.RESUMED

        logger.debug(
            f"[threshold] Still paused, balance {value} "
            f"(armed at {self.armed_value}, drop {drop})"
        )
        return ThresholdMode.ARMED
