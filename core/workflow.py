"""Workflow runner: the single control loop of the bot.

Each tick runs the step handler for the current state, folds its result
into a :class:`~core.outcome.StepOutcome`, asks
:func:`~core.transitions.next_state` where to go, applies the returned
side effects and persists the checkpoint.  Nothing else mutates the
checkpoint, the progression engine, the error budget or the threshold
controller, and no two steps ever overlap.

Every step is bounded by ``step_timeout_seconds``.  An exception that
escapes a step is logged with the state it happened in and becomes a
technical failure.  A stop request cancels the step in flight and moves
the loop to ``STOPPING``, which releases the executor within
``shutdown_grace_seconds`` before forcing it.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from core.balance_monitor import BalanceWatch
from core.checkpoint import Checkpoint, CheckpointStore
from core.config import BotSettings
from core.error_budget import BudgetCategory, ErrorBudget
from core.ladder import LadderWalker
from core.notifier import NullNotifier, Notifier, NotifyChannel, NotifyEvent
from core.outcome import StepOutcome, invoke
from core.progression import ProgressionEngine
from core.threshold import ThresholdController, ThresholdMode
from core.transitions import (
    TERMINAL_STATES,
    ClaimResult,
    PlaySignal,
    SideEffect,
    Transition,
    TransitionContext,
    WorkflowState,
    describe,
    next_state,
    stop_transition,
)
from faucets.base import ActionExecutor

logger = logging.getLogger(__name__)

# States whose step must run to completion even when a stop is pending.
_UNINTERRUPTIBLE = frozenset({WorkflowState.STOPPING, WorkflowState.ERROR})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRunner:
    """Drives the state machine until ``STOPPED``.

    Attributes:
        state: Current :class:`WorkflowState`.
        checkpoint: Durable progress, written after every transition.
        engine: Ladder arithmetic and PnL.
        budget: Per-category error counters.
        threshold: Withdrawal pause controller.
        failed: The loop went through ``ERROR``; drives the exit code.
    """

    def __init__(
        self,
        settings: BotSettings,
        executor: ActionExecutor,
        store: CheckpointStore,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.executor = executor
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.clock = clock or utcnow

        self.state = WorkflowState.INIT
        self.checkpoint = Checkpoint()
        self.engine = ProgressionEngine(
            base=settings.stake_base,
            max_level=settings.max_level,
            rotation_level=settings.seed_rotation_level,
        )
        self.budget = ErrorBudget(
            thresholds={
                BudgetCategory.DEPOSIT_VERIFICATION:
                    settings.deposit_verification_error_threshold,
                BudgetCategory.SPIN: settings.spin_error_threshold,
                BudgetCategory.WALK: settings.walk_error_threshold,
            },
            cool_down_seconds=settings.cool_down_seconds,
        )
        self.threshold = ThresholdController(
            trigger_level=settings.withdrawal_trigger,
            retain_level=settings.balance_to_keep,
            resume_delta=settings.withdrawal_detection_delta,
            reset_pnl_on_resume=settings.reset_pnl_on_resume,
        )
        self.walker = LadderWalker(
            executor, self.engine, self.budget, settings,
            notifier=self.notifier, sleep=self.wait,
        )
        self.balance_watch = BalanceWatch(
            self.notifier,
            interval_minutes=settings.balance_check_interval_minutes,
            change_threshold=settings.balance_change_threshold,
        )

        self.failed = False
        self.last_outcome: Optional[StepOutcome] = None
        self._recurring_deferred_until: Optional[datetime] = None
        self._checkpoint_loaded = False
        self._stop_event = asyncio.Event()

    # -- loop ------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask the loop to shut down at the next opportunity."""
        if not self._stop_event.is_set():
            logger.info("🛑 Stop requested, shutting down workflow...")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*, returning early on a stop request.

        Returns:
            ``True`` when the wait was cut short by a stop request.
        """
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self) -> int:
        """Run until ``STOPPED``.

        Returns:
            Process exit status: 0 for a clean stop, 1 when the loop
            stopped because of an unrecoverable error.
        """
        logger.info("🚀 Workflow starting")
        while self.state not in TERMINAL_STATES:
            if self.stop_requested and self.state not in _UNINTERRUPTIBLE:
                await self._commit(stop_transition(self.state), None)
                continue
            await self.tick()
            if self.state not in TERMINAL_STATES:
                await self.wait(self.settings.tick_delay_seconds)

        await self.notifier.drain()
        exit_code = 1 if self.failed else 0
        logger.info(f"Workflow stopped (exit code {exit_code})")
        return exit_code

    async def tick(self) -> Transition:
        """Run one step and commit its transition."""
        state = self.state
        if state in _UNINTERRUPTIBLE:
            outcome = await self._run_step(state)
        else:
            outcome = await self._run_interruptible(state)
            if outcome is None:
                transition = stop_transition(state)
                await self._commit(transition, None)
                return transition

        self.last_outcome = outcome
        if not outcome.ok:
            log = logger.warning if outcome.is_logical else logger.error
            log(
                f"[workflow] {state.value} failed "
                f"({outcome.status.value}): {outcome.reason}"
            )
        transition = next_state(state, outcome, self._context())
        await self._commit(transition, outcome)
        return transition

    async def _run_interruptible(self, state: WorkflowState) -> Optional[StepOutcome]:
        step = asyncio.ensure_future(self._run_step(state))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait(
                {step, stopper}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            step.cancel()
            raise
        finally:
            stopper.cancel()
        if step.done():
            return step.result()

        logger.info(f"[workflow] Cancelling {state.value} step for shutdown")
        step.cancel()
        try:
            await step
        except asyncio.CancelledError:
            pass
        return None

    async def _run_step(self, state: WorkflowState) -> StepOutcome:
        handler = getattr(self, f"_step_{state.value}")
        try:
            return await asyncio.wait_for(
                handler(), timeout=self.settings.step_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            return StepOutcome.technical(
                e,
                reason=f"step timed out after "
                f"{self.settings.step_timeout_seconds}s",
            )
        except Exception as e:
            logger.exception(f"Unhandled error in state {state.value}: {e}")
            self.notifier.notify(
                NotifyChannel.SYSTEM,
                NotifyEvent.UNHANDLED_ERROR,
                {"state": state.value, "error": f"{type(e).__name__}: {e}"},
            )
            return StepOutcome.technical(e)

    def _context(self) -> TransitionContext:
        return TransitionContext(
            setup_complete=self.checkpoint.setup_complete,
            verification_attempts=self.checkpoint.verification_attempts,
            max_verification_attempts=self.settings.max_verification_attempts,
            reset_pnl_on_resume=self.threshold.reset_pnl_on_resume,
        )

    async def _commit(
        self, transition: Transition, outcome: Optional[StepOutcome],
    ) -> None:
        previous = self.state
        for effect in transition.effects:
            await self._apply_effect(effect, previous, outcome)

        self.state = transition.state
        if outcome is not None and outcome.ok:
            self.checkpoint.last_completed_state = previous.value
        self.checkpoint.cumulative_pnl = self.engine.pnl

        if transition.state is previous:
            logger.debug(f"[workflow] {previous.value} (loop)")
        else:
            detail = f" [{describe(outcome.value)}]" if (
                outcome is not None and outcome.ok and outcome.value is not None
            ) else ""
            logger.info(
                f"[workflow] {previous.value} -> "
                f"{transition.state.value}{detail}"
            )
        # Nothing is written before the stored checkpoint has been read.
        if self._checkpoint_loaded:
            self.store.save(self.checkpoint)

    async def _apply_effect(
        self,
        effect: SideEffect,
        previous: WorkflowState,
        outcome: Optional[StepOutcome],
    ) -> None:
        cp = self.checkpoint
        now = self.clock()

        if effect is SideEffect.NOTIFY_STARTED:
            self.notifier.notify(
                NotifyChannel.SYSTEM, NotifyEvent.BOT_STARTED,
                {
                    "setup_complete": cp.setup_complete,
                    "cycles": cp.cycle_count,
                    "pnl": cp.cumulative_pnl,
                },
            )
        elif effect is SideEffect.MARK_REGISTERED:
            cp.account_registered = True
        elif effect is SideEffect.MARK_SETUP_COMPLETE:
            if not cp.setup_complete:
                logger.info("✅ Initial setup complete")
            cp.setup_complete = True
        elif effect is SideEffect.RESET_VERIFICATION_ATTEMPTS:
            cp.verification_attempts = 0
        elif effect is SideEffect.INCREMENT_VERIFICATION_ATTEMPTS:
            cp.verification_attempts += 1
            logger.info(
                f"Verification attempt {cp.verification_attempts}/"
                f"{self.settings.max_verification_attempts}"
            )
        elif effect is SideEffect.VERIFICATION_COOLDOWN:
            delay = self.settings.verification_retry_delay_seconds
            logger.info(f"Verification proof not found, retrying in {delay:.0f}s")
            await self.wait(delay)
        elif effect is SideEffect.RECORD_BONUS_CLAIM:
            cp.last_bonus_claim_at = now
        elif effect is SideEffect.RECORD_RECURRING_CLAIM:
            cp.last_recurring_claim_at = now
            self._recurring_deferred_until = None
        elif effect is SideEffect.DEFER_RECURRING_CLAIM:
            defer = timedelta(minutes=self.settings.recurring_claim_defer_minutes)
            self._recurring_deferred_until = now + defer
            logger.warning(
                f"Recurring claim failed, next try after "
                f"{self._recurring_deferred_until.isoformat()}"
            )
        elif effect is SideEffect.COUNT_CYCLE:
            cp.cycle_count += 1
        elif effect is SideEffect.ARM_THRESHOLD:
            cp.paused_for_withdrawal = True
            cp.withdrawal_threshold_level = self.threshold.armed_value
        elif effect is SideEffect.NOTIFY_THRESHOLD:
            self.notifier.notify(
                NotifyChannel.SYSTEM, NotifyEvent.THRESHOLD_REACHED,
                {
                    "balance": self.threshold.armed_value,
                    "trigger": self.threshold.trigger_level,
                    "keep": self.threshold.retain_level,
                    "withdrawable": self.threshold.withdrawable,
                },
            )
        elif effect is SideEffect.DISARM_THRESHOLD:
            armed_at = cp.withdrawal_threshold_level
            cp.paused_for_withdrawal = False
            cp.withdrawal_threshold_level = None
            self.notifier.notify(
                NotifyChannel.MONEY, NotifyEvent.WITHDRAWAL_DETECTED,
                {
                    "before": armed_at,
                    "after": self.threshold.monitored_value,
                },
            )
        elif effect is SideEffect.NOTIFY_RESUMED:
            self.notifier.notify(
                NotifyChannel.SYSTEM, NotifyEvent.SYSTEM_RESUMED,
                {"balance": self.threshold.monitored_value},
            )
        elif effect is SideEffect.RESET_PNL:
            self.engine.reset_pnl()
        elif effect is SideEffect.NOTIFY_CRITICAL:
            self.failed = True
            reason = outcome.reason if outcome is not None else "unknown"
            logger.error(f"❌ Unrecoverable failure in {previous.value}: {reason}")
            self.notifier.notify(
                NotifyChannel.SYSTEM, NotifyEvent.CRITICAL_ERROR,
                {"state": previous.value, "reason": reason},
            )
        elif effect is SideEffect.NOTIFY_STOPPED:
            self.notifier.notify(
                NotifyChannel.SYSTEM, NotifyEvent.BOT_STOPPED,
                {
                    "exit_code": 1 if self.failed else 0,
                    "cycles": cp.cycle_count,
                    "pnl": self.engine.pnl,
                },
            )

    # -- helpers ---------------------------------------------------------

    async def _call(self, coro) -> StepOutcome:
        return await invoke(coro, timeout=self.settings.action_timeout_seconds)

    def recurring_claim_due(self, now: Optional[datetime] = None) -> bool:
        """Whether the hourly claim gate is open at *now*."""
        now = now or self.clock()
        if (
            self._recurring_deferred_until is not None
            and now < self._recurring_deferred_until
        ):
            return False
        last = self.checkpoint.last_recurring_claim_at
        if last is None:
            return True
        interval = timedelta(minutes=self.settings.recurring_claim_interval_minutes)
        return now - last >= interval

    async def _read_balance(self) -> StepOutcome:
        outcome = await self._call(self.executor.read_monitored_balance())
        if outcome.ok:
            outcome = StepOutcome.success(Decimal(outcome.value))
            self.balance_watch.observe(outcome.value, self.clock())
        return outcome

    # -- step handlers ---------------------------------------------------

    async def _step_init(self) -> StepOutcome:
        return StepOutcome.success()

    async def _step_needs_config(self) -> StepOutcome:
        missing = self.settings.missing_requirements()
        if missing:
            return StepOutcome.logical(
                f"missing configuration: {', '.join(missing)}"
            )
        return StepOutcome.success()

    async def _step_load_checkpoint(self) -> StepOutcome:
        self.checkpoint = self.store.load()
        self._checkpoint_loaded = True
        cp = self.checkpoint
        self.engine.pnl = cp.cumulative_pnl
        self.threshold.restore(
            cp.paused_for_withdrawal, cp.withdrawal_threshold_level,
        )
        logger.info(
            f"Checkpoint loaded: setup_complete={cp.setup_complete} "
            f"cycles={cp.cycle_count} pnl={cp.cumulative_pnl} "
            f"paused={cp.paused_for_withdrawal}"
        )
        return StepOutcome.success()

    async def _step_launch_environment(self) -> StepOutcome:
        return await invoke(
            self.executor.launch(), timeout=self.settings.step_timeout_seconds,
        )

    async def _step_check_session(self) -> StepOutcome:
        return await self._call(self.executor.check_session())

    async def _step_needs_login(self) -> StepOutcome:
        return await self._call(self.executor.authenticate())

    async def _step_needs_signup(self) -> StepOutcome:
        return await self._call(self.executor.register())

    async def _step_save_checkpoint(self) -> StepOutcome:
        if self.store.save(self.checkpoint):
            return StepOutcome.success()
        return StepOutcome.technical(reason="checkpoint write failed")

    async def _step_checking_verification(self) -> StepOutcome:
        return await self._call(self.executor.check_verification())

    async def _step_needs_verification(self) -> StepOutcome:
        limit = self.settings.max_verification_attempts
        if self.checkpoint.verification_attempts >= limit:
            return StepOutcome.exhausted(
                f"verification attempts exhausted ({limit})"
            )
        return await self._call(self.executor.request_verification())

    async def _step_awaiting_verification_proof(self) -> StepOutcome:
        timeout = (
            self.settings.verification_poll_timeout_seconds
            + self.settings.action_timeout_seconds
        )
        outcome = await invoke(
            self.executor.poll_for_verification_proof(), timeout=timeout,
        )
        if outcome.ok and not outcome.value:
            limit = self.settings.max_verification_attempts
            if self.checkpoint.verification_attempts >= limit:
                return StepOutcome.exhausted(
                    f"no verification proof after {limit} attempts"
                )
        return outcome

    async def _step_needs_bonus_claim(self) -> StepOutcome:
        if self.checkpoint.setup_complete:
            logger.debug("Bonus already handled during setup, skipping")
            return StepOutcome.success(0)
        outcome = await self._call(self.executor.claim_bonus())
        if outcome.ok:
            logger.info(f"Bonus claims performed: {outcome.value}")
        return outcome

    async def _step_claiming_recurring(self) -> StepOutcome:
        if not self.recurring_claim_due():
            return StepOutcome.success(ClaimResult.NOT_DUE)

        attempts = self.settings.recurring_claim_attempts
        outcome = StepOutcome.logical("no claim attempted")
        for attempt in range(1, attempts + 1):
            outcome = await self._call(self.executor.claim_recurring())
            if outcome.ok and outcome.value:
                logger.info("✅ Hourly claim successful")
                return StepOutcome.success(ClaimResult.CLAIMED)
            if outcome.is_logical:
                logger.warning(f"Hourly claim refused: {outcome.reason}")
                return outcome
            if outcome.ok:
                outcome = StepOutcome.logical("claim not accepted")
            logger.warning(
                f"Hourly claim attempt {attempt}/{attempts} failed: "
                f"{outcome.reason}"
            )
            if attempt < attempts:
                if await self.wait(self.settings.recurring_claim_retry_delay_seconds):
                    break
        return outcome

    async def _step_playing_core(self) -> StepOutcome:
        if self.threshold.armed:
            return StepOutcome.success(PlaySignal.STILL_PAUSED)
        if self.recurring_claim_due():
            return StepOutcome.success(PlaySignal.RECURRING_DUE)

        balance = await self._read_balance()
        if not balance.ok:
            return balance
        if self.threshold.check(balance.value) is ThresholdMode.TRIGGERED:
            return StepOutcome.success(PlaySignal.THRESHOLD_TRIGGERED)

        result = await self.walker.play_walk()
        await self.wait(self.settings.walk_delay_seconds)
        if result.completed:
            return StepOutcome.success(PlaySignal.WALK_COMPLETED)
        return StepOutcome.success(PlaySignal.WALK_ABORTED)

    async def _step_paused_for_recurring_claim(self) -> StepOutcome:
        logger.info("⏰ Hourly claim due, pausing play")
        return StepOutcome.success()

    async def _step_threshold_reached(self) -> StepOutcome:
        logger.warning(
            f"💰 Withdrawal threshold reached at {self.threshold.armed_value}. "
            f"Withdraw manually and keep {self.threshold.retain_level}; "
            "play resumes once the withdrawal is detected"
        )
        return StepOutcome.success()

    async def _step_paused_for_manual_action(self) -> StepOutcome:
        balance = await self._read_balance()
        if not balance.ok:
            return balance
        if self.threshold.check(balance.value) is ThresholdMode.RESUMED:
            return StepOutcome.success(PlaySignal.RESUMED)
        if self.recurring_claim_due():
            return StepOutcome.success(PlaySignal.RECURRING_DUE)
        await self.wait(self.settings.manual_action_poll_seconds)
        return StepOutcome.success(PlaySignal.STILL_PAUSED)

    async def _step_resuming_after_action(self) -> StepOutcome:
        logger.info("▶️ Withdrawal detected, resuming play")
        self.budget.reset_all()
        self.engine.reset_streak()
        return StepOutcome.success()

    async def _step_error(self) -> StepOutcome:
        return StepOutcome.success()

    async def _step_stopping(self) -> StepOutcome:
        grace = self.settings.shutdown_grace_seconds
        try:
            await asyncio.wait_for(self.executor.release(), timeout=grace)
            return StepOutcome.success()
        except asyncio.TimeoutError:
            logger.warning(
                f"Graceful release did not finish in {grace}s, forcing"
            )
        except Exception as e:
            logger.warning(f"Graceful release failed ({e}), forcing")
        try:
            await asyncio.wait_for(self.executor.force_release(), timeout=grace)
        except Exception as e:
            logger.error(f"Forced release failed: {e}")
        return StepOutcome.success()
