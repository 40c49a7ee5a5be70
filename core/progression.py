"""Martingale stake ladder, profit accounting and seed-rotation policy.

One *walk* starts at level 0 with a freshly drawn side and doubles the
stake after every lost round until either a round is won or the last
level is lost.  A win at any level recovers every earlier stake of the
walk plus one base unit; losing the last level forfeits the whole walk.

The engine only does arithmetic and bookkeeping.  Placing stakes and
reading results is the ladder walker's job (``core/ladder.py``).
"""

import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

RED_NUMBERS = frozenset({
    1, 3, 5, 7, 9, 12, 14, 16, 18,
    19, 21, 23, 25, 27, 30, 32, 34, 36,
})
BLACK_NUMBERS = frozenset(range(1, 37)) - RED_NUMBERS


class Side(Enum):
    RED = "red"
    BLACK = "black"


def is_win(number: Optional[int], side: Side) -> bool:
    """Whether roulette *number* pays out for *side*.

    Zero (and an unreadable result) loses for both colours.
    """
    if number is None:
        return False
    if side is Side.RED:
        return number in RED_NUMBERS
    return number in BLACK_NUMBERS


class RoundResult(Enum):
    WIN = "win"
    CONTINUE = "continue"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RoundVerdict:
    """Outcome of one evaluated round.

    Attributes:
        result: ``WIN`` ends the walk with a profit, ``CONTINUE``
            moves to the next level, ``EXHAUSTED`` ends the walk at
            the last level with a loss.
        level: Level the round was played at.
        pnl_delta: Profit (or loss) booked for a finished walk, zero
            for ``CONTINUE``.
    """
    result: RoundResult
    level: int
    pnl_delta: Decimal = Decimal("0")

    @property
    def finished(self) -> bool:
        return self.result is not RoundResult.CONTINUE


class ProgressionEngine:
    """Ladder state for the running process.

    Owned by the workflow runner and handed to the ladder walker.  None
    of this is persisted: a restart begins with a fresh walk and no
    streak memory, only the PnL is restored from the checkpoint.
    """

    def __init__(
        self,
        base: int = 100,
        max_level: int = 13,
        rotation_level: int = 3,
        pnl: Decimal = Decimal("0"),
    ):
        if base <= 0:
            raise ValueError("base stake must be positive")
        if max_level < 0:
            raise ValueError("max_level must be >= 0")
        self.base = Decimal(base)
        self.max_level = max_level
        self.rotation_level = rotation_level
        self.pnl = Decimal(pnl)
        self.level = 0
        self.cumulative_stake = Decimal("0")
        self.previous_win_level: Optional[int] = None
        self.side: Optional[Side] = None
        self._rng = secrets.SystemRandom()

    def stake_for_level(self, level: int) -> Decimal:
        """Stake at *level*: ``base * 2**level``."""
        if not 0 <= level <= self.max_level:
            raise ValueError(
                f"level {level} outside ladder 0..{self.max_level}"
            )
        return self.base * (2 ** level)

    def begin_walk(self) -> Side:
        """Start a walk at level 0 with an independently drawn side."""
        self.level = 0
        self.cumulative_stake = Decimal("0")
        self.side = self._rng.choice((Side.RED, Side.BLACK))
        return self.side

    def place_level(self, level: Optional[int] = None) -> Decimal:
        """Book the stake for *level* (default: current level).

        Returns:
            The stake amount that must be deposited for the round.
        """
        if level is None:
            level = self.level
        stake = self.stake_for_level(level)
        self.level = level
        self.cumulative_stake += stake
        return stake

    def evaluate_round(self, won: bool) -> RoundVerdict:
        """Apply a round result to the ladder.

        A win books ``2 * stake(level) - cumulative_stake``; a loss at
        the last level books ``-cumulative_stake``.  Both return the
        ladder to level 0.  A loss below the last level advances the
        ladder by one.

        Args:
            won: Whether the round at the current level paid out.

        Returns:
            The verdict for the round.
        """
        level = self.level
        if won:
            delta = 2 * self.stake_for_level(level) - self.cumulative_stake
            self.pnl += delta
            self._reset_ladder()
            return RoundVerdict(RoundResult.WIN, level, delta)

        if level >= self.max_level:
            delta = -self.cumulative_stake
            self.pnl += delta
            self._reset_ladder()
            return RoundVerdict(RoundResult.EXHAUSTED, level, delta)

        self.level = level + 1
        return RoundVerdict(RoundResult.CONTINUE, level)

    def should_rotate_seed(self, verdict: RoundVerdict) -> bool:
        """Whether a finished walk calls for a seed rotation.

        True for a win at or above the rotation level when the previous
        recorded win level is absent or below it.  Must be called
        before :meth:`commit_walk`.
        """
        if verdict.result is not RoundResult.WIN:
            return False
        if verdict.level < self.rotation_level:
            return False
        previous = self.previous_win_level
        return previous is None or previous < self.rotation_level

    def commit_walk(self, verdict: RoundVerdict) -> None:
        """Record the finished walk in the streak memory."""
        if verdict.result is RoundResult.WIN:
            self.previous_win_level = verdict.level
        elif verdict.result is RoundResult.EXHAUSTED:
            self.previous_win_level = None

    def reset_streak(self) -> None:
        self.previous_win_level = None

    def reset_pnl(self) -> None:
        logger.info(f"PnL counter reset (was {self.pnl})")
        self.pnl = Decimal("0")

    def abort_walk(self) -> None:
        """Drop an unfinished walk without booking any PnL."""
        self._reset_ladder()

    def _reset_ladder(self) -> None:
        self.level = 0
        self.cumulative_stake = Decimal("0")
