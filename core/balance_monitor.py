"""Periodic balance change / inactivity notices."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from core.notifier import Notifier, NotifyChannel, NotifyEvent

logger = logging.getLogger(__name__)


class BalanceWatch:
    """Compares the balance with a reference once per interval.

    A relative move of at least ``change_threshold`` is reported to the
    money chat and becomes the new reference.  A full interval without
    such a move is reported to the system chat as inactivity, which
    usually means the ladder is stuck.
    """

    def __init__(
        self,
        notifier: Notifier,
        interval_minutes: int = 15,
        change_threshold: float = 0.002,
    ):
        self.notifier = notifier
        self.interval = timedelta(minutes=interval_minutes)
        self.change_threshold = Decimal(str(change_threshold))
        self.reference: Optional[Decimal] = None
        self.last_check_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        if self.last_check_at is None:
            return True
        return now - self.last_check_at >= self.interval

    def observe(self, balance: Decimal, now: datetime) -> Optional[NotifyEvent]:
        """Feed a balance reading taken at *now*.

        Returns:
            The event that was sent, or ``None``.
        """
        if self.reference is None:
            self.reference = balance
            self.last_check_at = now
            self.notifier.notify(
                NotifyChannel.MONEY,
                NotifyEvent.BALANCE_INITIAL,
                {"balance": balance},
            )
            return NotifyEvent.BALANCE_INITIAL

        if not self.is_due(now):
            return None
        self.last_check_at = now

        if self.reference == 0:
            changed = balance != 0
            ratio = Decimal("0")
        else:
            ratio = (balance - self.reference) / self.reference
            changed = abs(ratio) >= self.change_threshold

        if changed:
            details = {
                "previous": self.reference,
                "current": balance,
                "change": balance - self.reference,
                "percent": f"{ratio * 100:.2f}%",
            }
            self.reference = balance
            self.notifier.notify(
                NotifyChannel.MONEY, NotifyEvent.BALANCE_CHANGE, details,
            )
            return NotifyEvent.BALANCE_CHANGE

        logger.info(
            f"[balance] No significant change in "
            f"{int(self.interval.total_seconds() // 60)} min "
            f"(balance {balance})"
        )
        self.notifier.notify(
            NotifyChannel.SYSTEM,
            NotifyEvent.BALANCE_INACTIVITY,
            {"balance": balance, "since": self.reference},
        )
        return NotifyEvent.BALANCE_INACTIVITY
