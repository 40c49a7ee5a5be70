"""Plays one ladder walk against the action executor.

The walker glues the pure engines to the executor: it asks the
:class:`~core.progression.ProgressionEngine` for stakes, has the executor
deposit and spin, feeds every attempt into the
:class:`~core.error_budget.ErrorBudget`, and carries out corrective
directives when a budget trips.

Error categories:
    * a failed (or raising) ``place_stake`` counts against
      ``DEPOSIT_VERIFICATION``;
    * a failed ``spin`` or ``read_last_outcome`` counts against ``SPIN``;
    * every aborted walk counts against ``WALK``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from core.config import BotSettings
from core.error_budget import BudgetCategory, CorrectiveDirective, ErrorBudget
from core.notifier import NullNotifier, Notifier, NotifyChannel, NotifyEvent
from core.outcome import StepOutcome, invoke
from core.progression import ProgressionEngine, RoundResult, RoundVerdict, is_win
from faucets.base import ActionExecutor

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[object]]


@dataclass
class WalkResult:
    """Summary of one walk.

    Attributes:
        verdict: Final round verdict, ``None`` when the walk aborted.
        rounds: Rounds actually spun.
        rotated: Seed was rotated after a qualifying win.
        failed_category: Budget category that aborted the walk.
        reason: Failure detail for aborted walks.
        directive: Corrective directive carried out, if any.
    """
    verdict: Optional[RoundVerdict] = None
    rounds: int = 0
    rotated: bool = False
    failed_category: Optional[BudgetCategory] = None
    reason: str = ""
    directive: Optional[CorrectiveDirective] = None

    @property
    def completed(self) -> bool:
        return self.verdict is not None

    @property
    def aborted(self) -> bool:
        return self.verdict is None


class LadderWalker:
    """Runs walks with the engines owned by the workflow runner."""

    def __init__(
        self,
        executor: ActionExecutor,
        engine: ProgressionEngine,
        budget: ErrorBudget,
        settings: BotSettings,
        notifier: Optional[Notifier] = None,
        sleep: Optional[Sleeper] = None,
    ):
        self.executor = executor
        self.engine = engine
        self.budget = budget
        self.settings = settings
        self.notifier = notifier or NullNotifier()
        self._sleep = sleep or asyncio.sleep
        self.level_delay_seconds = settings.level_delay_seconds

    async def _call(self, coro) -> StepOutcome:
        return await invoke(coro, timeout=self.settings.action_timeout_seconds)

    async def play_walk(self) -> WalkResult:
        """Play levels from 0 until a win, exhaustion or an error."""
        side = self.engine.begin_walk()
        logger.info(
            f"[ladder] New walk on {side.value.upper()} | PnL {self.engine.pnl}"
        )
        rounds = 0
        verdict: Optional[RoundVerdict] = None

        for level in range(self.engine.max_level + 1):
            stake = self.engine.place_level(level)
            logger.debug(f"[ladder] Level {level}: staking {stake}")

            placed = await self._call(self.executor.place_stake(stake, side))
            self.budget.record(BudgetCategory.DEPOSIT_VERIFICATION, placed.ok)
            if not placed.ok:
                return await self._abort(
                    BudgetCategory.DEPOSIT_VERIFICATION,
                    f"deposit at level {level}: {placed.reason}",
                    rounds,
                )

            spun = await self._call(self.executor.spin())
            if spun.ok:
                result = await self._call(self.executor.read_last_outcome())
            else:
                result = spun
            self.budget.record(BudgetCategory.SPIN, result.ok)
            if not result.ok:
                return await self._abort(
                    BudgetCategory.SPIN,
                    f"spin at level {level}: {result.reason}",
                    rounds,
                )
            rounds += 1

            number = result.value
            verdict = self.engine.evaluate_round(is_win(number, side))
            if verdict.result is RoundResult.WIN:
                logger.info(
                    f"[ladder] 🎉 Win at level {level} (result {number}), "
                    f"profit {verdict.pnl_delta}, PnL {self.engine.pnl}"
                )
                break
            if verdict.result is RoundResult.EXHAUSTED:
                logger.warning(
                    f"[ladder] ❌ Lost level {level} (result {number}), "
                    f"walk exhausted: {verdict.pnl_delta}, PnL {self.engine.pnl}"
                )
                self.notifier.notify(
                    NotifyChannel.SYSTEM,
                    NotifyEvent.LEVEL_LIMIT_LOSS,
                    {"loss": verdict.pnl_delta, "pnl": self.engine.pnl},
                )
                break
            logger.info(
                f"[ladder] Loss at level {level} (result {number}), "
                f"moving to level {level + 1}"
            )
            await self._sleep(self.level_delay_seconds)

        return await self._finish(verdict, rounds)

    async def _finish(self, verdict: RoundVerdict, rounds: int) -> WalkResult:
        # A finished walk clears the step counters as well as the walk one.
        self.budget.reset(BudgetCategory.DEPOSIT_VERIFICATION)
        self.budget.reset(BudgetCategory.SPIN)
        self.budget.record(BudgetCategory.WALK, True)

        rotate = self.engine.should_rotate_seed(verdict)
        if rotate:
            logger.info(
                f"[ladder] Win at level {verdict.level} after a low streak "
                f"(previous {self.engine.previous_win_level}), rotating seed"
            )
            await self._sleep(self.settings.rotation_delay_seconds)
            await self._rotate_and_refresh()
        self.engine.commit_walk(verdict)
        return WalkResult(verdict=verdict, rounds=rounds, rotated=rotate)

    async def _abort(
        self, category: BudgetCategory, reason: str, rounds: int,
    ) -> WalkResult:
        logger.error(f"[ladder] Walk aborted, {reason}")
        self.engine.abort_walk()
        self.budget.record(BudgetCategory.WALK, False)
        result = WalkResult(
            rounds=rounds, failed_category=category, reason=reason,
        )

        for tripped in (
            BudgetCategory.DEPOSIT_VERIFICATION,
            BudgetCategory.SPIN,
            BudgetCategory.WALK,
        ):
            if self.budget.should_trip(tripped):
                result.directive = self.budget.trip(tripped)
                await self.apply_directive(result.directive)
                break
        return result

    async def apply_directive(self, directive: CorrectiveDirective) -> None:
        """Carry out a corrective directive.

        A failure while correcting is logged and left to the normal
        budget accounting of the next walk.
        """
        self.notifier.notify(
            NotifyChannel.SYSTEM,
            NotifyEvent.CORRECTIVE_ACTION,
            {
                "category": directive.category.value,
                "rotate_seed": directive.rotate_seed,
                "cool_down_s": directive.cool_down_seconds,
            },
        )
        if directive.rotate_seed or directive.hard_refresh:
            await self._rotate_and_refresh(
                rotate=directive.rotate_seed, refresh=directive.hard_refresh,
            )
            # A refresh clears the run of aborted walks.
            self.budget.reset(BudgetCategory.WALK)
        if directive.reset_all_counters:
            self.budget.reset_all()
        if directive.reset_streak:
            self.engine.reset_streak()
        if directive.cool_down_seconds > 0:
            logger.warning(
                f"[ladder] Pausing play for {directive.cool_down_seconds:.0f}s "
                "after repeated errors"
            )
            await self._sleep(directive.cool_down_seconds)
            logger.info("[ladder] Resuming play after pause")

    async def _rotate_and_refresh(
        self, rotate: bool = True, refresh: bool = True,
    ) -> None:
        if rotate:
            rotated = await self._call(self.executor.rotate_seed())
            if not rotated.ok or rotated.value is False:
                logger.warning(
                    f"[ladder] Seed rotation failed: "
                    f"{rotated.reason or 'rejected'}"
                )
        if refresh:
            refreshed = await self._call(self.executor.hard_refresh())
            if not refreshed.ok:
                logger.warning(
                    f"[ladder] Hard refresh failed: {refreshed.reason}"
                )
        await self._sleep(self.settings.refresh_settle_seconds)
