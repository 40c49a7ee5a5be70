"""Per-category failure counters that turn into corrective directives.

The breaker is level-triggered: a success in a category clears its
counter, so only an unbroken run of failures trips it.  Tripping hands
back a :class:`CorrectiveDirective` and clears the counter; carrying out
the directive is the caller's job.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class BudgetCategory(Enum):
    """Failure categories tracked during ladder play.

    Members:
        DEPOSIT_VERIFICATION: Stake deposit did not match the intended
            amount after corrections.
        SPIN: Spin could not be triggered or its result not read.
        WALK: A whole walk aborted on an unexpected error.
    """
    DEPOSIT_VERIFICATION = "deposit_verification"
    SPIN = "spin"
    WALK = "walk"


DEFAULT_THRESHOLDS: Dict[BudgetCategory, int] = {
    BudgetCategory.DEPOSIT_VERIFICATION: 5,
    BudgetCategory.SPIN: 3,
    BudgetCategory.WALK: 5,
}


@dataclass(frozen=True)
class CorrectiveDirective:
    """Actions the owner must perform after a trip.

    Attributes:
        category: Category that tripped.
        rotate_seed: Change the client seed.
        hard_refresh: Reload the interaction surface.
        reset_streak: Forget the previous win level.
        reset_all_counters: Clear every category, not just the one
            that tripped.
        cool_down_seconds: Pause before playing again (0 for none).
    """
    category: BudgetCategory
    rotate_seed: bool = False
    hard_refresh: bool = False
    reset_streak: bool = True
    reset_all_counters: bool = False
    cool_down_seconds: float = 0.0


class ErrorBudget:
    """Failure counters with thresholds, one per :class:`BudgetCategory`."""

    def __init__(
        self,
        thresholds: Optional[Dict[BudgetCategory, int]] = None,
        cool_down_seconds: float = 300.0,
    ):
        self.thresholds: Dict[BudgetCategory, int] = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)
        for category, limit in self.thresholds.items():
            if limit < 1:
                raise ValueError(
                    f"threshold for {category.value} must be >= 1"
                )
        self.cool_down_seconds = cool_down_seconds
        self.counts: Dict[BudgetCategory, int] = {
            category: 0 for category in BudgetCategory
        }

    def record(self, category: BudgetCategory, success: bool) -> int:
        """Record one attempt in *category*.

        Returns:
            The counter after the update.
        """
        if success:
            self.counts[category] = 0
        else:
            self.counts[category] += 1
            logger.warning(
                f"[budget] {category.value} failure "
                f"{self.counts[category]}/{self.thresholds[category]}"
            )
        return self.counts[category]

    def count(self, category: BudgetCategory) -> int:
        return self.counts[category]

    def should_trip(self, category: BudgetCategory) -> bool:
        return self.counts[category] >= self.thresholds[category]

    def trip(self, category: BudgetCategory) -> CorrectiveDirective:
        """Clear *category* and return the corrective directive for it.

        ``DEPOSIT_VERIFICATION`` and ``SPIN`` ask for a seed rotation
        and a hard refresh.  ``WALK`` asks for a cool-down pause and a
        reset of every counter.
        """
        logger.warning(
            f"[budget] {category.value} budget exhausted "
            f"({self.counts[category]} consecutive failures), "
            "issuing corrective action"
        )
        if category is BudgetCategory.WALK:
            directive = CorrectiveDirective(
                category=category,
                reset_streak=True,
                reset_all_counters=True,
                cool_down_seconds=self.cool_down_seconds,
            )
            self.reset_all()
        else:
            directive = CorrectiveDirective(
                category=category,
                rotate_seed=True,
                hard_refresh=True,
                reset_streak=True,
            )
            self.counts[category] = 0
        return directive

    def reset(self, category: BudgetCategory) -> None:
        self.counts[category] = 0

    def reset_all(self) -> None:
        for category in self.counts:
            self.counts[category] = 0
