"""Workflow states and the pure transition function.

:func:`next_state` maps ``(state, outcome, context)`` to the next state
and the side effects the runner must apply.  It does no I/O, reads no
clock and keeps no state, so every edge of the graph is testable on its
own.

Routing rules:
    * a technical failure in any state goes to ``ERROR``;
    * an exhausted attempt budget goes to ``ERROR``;
    * only logical failures may take an alternative route (a rejected
      login goes to signup, an unsuccessful claim is deferred).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Tuple

from core.outcome import StepOutcome, StepStatus
from faucets.base import SessionState, VerificationStatus


class WorkflowState(Enum):
    INIT = "init"
    NEEDS_CONFIG = "needs_config"
    LOAD_CHECKPOINT = "load_checkpoint"
    LAUNCH_ENVIRONMENT = "launch_environment"
    CHECK_SESSION = "check_session"
    NEEDS_LOGIN = "needs_login"
    CHECKING_VERIFICATION = "checking_verification"
    NEEDS_SIGNUP = "needs_signup"
    SAVE_CHECKPOINT = "save_checkpoint"
    NEEDS_VERIFICATION = "needs_verification"
    AWAITING_VERIFICATION_PROOF = "awaiting_verification_proof"
    NEEDS_BONUS_CLAIM = "needs_bonus_claim"
    CLAIMING_RECURRING = "claiming_recurring"
    PLAYING_CORE = "playing_core"
    PAUSED_FOR_RECURRING_CLAIM = "paused_for_recurring_claim"
    THRESHOLD_REACHED = "threshold_reached"
    PAUSED_FOR_MANUAL_ACTION = "paused_for_manual_action"
    RESUMING_AFTER_ACTION = "resuming_after_action"
    ERROR = "error"
    STOPPING = "stopping"
    STOPPED = "stopped"


TERMINAL_STATES = frozenset({WorkflowState.STOPPED})


class SideEffect(Enum):
    """Checkpoint and notification effects applied after a transition."""
    NOTIFY_STARTED = "notify_started"
    MARK_REGISTERED = "mark_registered"
    MARK_SETUP_COMPLETE = "mark_setup_complete"
    RESET_VERIFICATION_ATTEMPTS = "reset_verification_attempts"
    INCREMENT_VERIFICATION_ATTEMPTS = "increment_verification_attempts"
    VERIFICATION_COOLDOWN = "verification_cooldown"
    RECORD_BONUS_CLAIM = "record_bonus_claim"
    RECORD_RECURRING_CLAIM = "record_recurring_claim"
    DEFER_RECURRING_CLAIM = "defer_recurring_claim"
    COUNT_CYCLE = "count_cycle"
    ARM_THRESHOLD = "arm_threshold"
    NOTIFY_THRESHOLD = "notify_threshold"
    DISARM_THRESHOLD = "disarm_threshold"
    NOTIFY_RESUMED = "notify_resumed"
    RESET_PNL = "reset_pnl"
    NOTIFY_CRITICAL = "notify_critical"
    NOTIFY_STOPPED = "notify_stopped"


class PlaySignal(Enum):
    """Value reported by the ``PLAYING_CORE`` and pause steps."""
    WALK_COMPLETED = "walk_completed"
    WALK_ABORTED = "walk_aborted"
    RECURRING_DUE = "recurring_due"
    THRESHOLD_TRIGGERED = "threshold_triggered"
    STILL_PAUSED = "still_paused"
    RESUMED = "resumed"


class ClaimResult(Enum):
    """Value reported by the ``CLAIMING_RECURRING`` step."""
    CLAIMED = "claimed"
    NOT_DUE = "not_due"


@dataclass(frozen=True)
class TransitionContext:
    """Read-only snapshot of checkpoint fields the table needs."""
    setup_complete: bool = False
    verification_attempts: int = 0
    max_verification_attempts: int = 3
    reset_pnl_on_resume: bool = True


@dataclass(frozen=True)
class Transition:
    state: WorkflowState
    effects: Tuple[SideEffect, ...] = ()


def _to_error() -> Transition:
    return Transition(WorkflowState.ERROR, (SideEffect.NOTIFY_CRITICAL,))


def _linear(target: WorkflowState, *effects: SideEffect):
    def rule(outcome: StepOutcome, ctx: TransitionContext) -> Transition:
        if outcome.ok:
            return Transition(target, tuple(effects))
        return _to_error()
    return rule


def _check_session(outcome, ctx):
    if not outcome.ok:
        return _to_error()
    if outcome.value is SessionState.ACTIVE:
        return Transition(WorkflowState.CHECKING_VERIFICATION)
    return Transition(WorkflowState.NEEDS_LOGIN)


def _needs_login(outcome, ctx):
    if outcome.ok:
        return Transition(WorkflowState.CHECKING_VERIFICATION)
    if outcome.is_logical:
        return Transition(WorkflowState.NEEDS_SIGNUP)
    return _to_error()


def _checking_verification(outcome, ctx):
    if not outcome.ok:
        return _to_error()
    if outcome.value is VerificationStatus.VERIFIED:
        return Transition(WorkflowState.NEEDS_BONUS_CLAIM)
    # Unverified and ambiguous both re-verify.
    return Transition(
        WorkflowState.NEEDS_VERIFICATION,
        (SideEffect.RESET_VERIFICATION_ATTEMPTS,),
    )


def _awaiting_proof(outcome, ctx):
    if outcome.is_technical or outcome.status is StepStatus.EXHAUSTED:
        return _to_error()
    if outcome.ok and outcome.value:
        return Transition(
            WorkflowState.NEEDS_BONUS_CLAIM,
            (SideEffect.RESET_VERIFICATION_ATTEMPTS,),
        )
    if ctx.verification_attempts < ctx.max_verification_attempts:
        return Transition(
            WorkflowState.NEEDS_VERIFICATION,
            (SideEffect.VERIFICATION_COOLDOWN,),
        )
    return _to_error()


def _needs_bonus_claim(outcome, ctx):
    if outcome.is_technical:
        return _to_error()
    effects = [SideEffect.MARK_SETUP_COMPLETE]
    if outcome.ok and outcome.value:
        effects.append(SideEffect.RECORD_BONUS_CLAIM)
    return Transition(WorkflowState.CLAIMING_RECURRING, tuple(effects))


def _claiming_recurring(outcome, ctx):
    if outcome.ok:
        if outcome.value is ClaimResult.CLAIMED:
            return Transition(
                WorkflowState.PLAYING_CORE,
                (SideEffect.RECORD_RECURRING_CLAIM,),
            )
        return Transition(WorkflowState.PLAYING_CORE)
    if outcome.is_logical:
        return Transition(
            WorkflowState.PLAYING_CORE,
            (SideEffect.DEFER_RECURRING_CLAIM,),
        )
    return _to_error()


def _playing_core(outcome, ctx):
    if not outcome.ok:
        return _to_error()
    signal = outcome.value
    if signal is PlaySignal.RECURRING_DUE:
        return Transition(WorkflowState.PAUSED_FOR_RECURRING_CLAIM)
    if signal is PlaySignal.THRESHOLD_TRIGGERED:
        return Transition(
            WorkflowState.THRESHOLD_REACHED,
            (SideEffect.ARM_THRESHOLD, SideEffect.NOTIFY_THRESHOLD),
        )
    if signal is PlaySignal.STILL_PAUSED:
        return Transition(WorkflowState.PAUSED_FOR_MANUAL_ACTION)
    if signal is PlaySignal.WALK_COMPLETED:
        return Transition(WorkflowState.PLAYING_CORE, (SideEffect.COUNT_CYCLE,))
    return Transition(WorkflowState.PLAYING_CORE)


def _paused_for_manual_action(outcome, ctx):
    if not outcome.ok:
        return _to_error()
    signal = outcome.value
    if signal is PlaySignal.RESUMED:
        return Transition(
            WorkflowState.RESUMING_AFTER_ACTION,
            (SideEffect.DISARM_THRESHOLD, SideEffect.NOTIFY_RESUMED),
        )
    if signal is PlaySignal.RECURRING_DUE:
        return Transition(WorkflowState.PAUSED_FOR_RECURRING_CLAIM)
    return Transition(WorkflowState.PAUSED_FOR_MANUAL_ACTION)


def _resuming_after_action(outcome, ctx):
    if not outcome.ok:
        return _to_error()
    effects = (SideEffect.RESET_PNL,) if ctx.reset_pnl_on_resume else ()
    return Transition(WorkflowState.PLAYING_CORE, effects)


def _stopping(outcome, ctx):
    return Transition(WorkflowState.STOPPED, (SideEffect.NOTIFY_STOPPED,))


_RULES: Dict[
    WorkflowState,
    Callable[[StepOutcome, TransitionContext], Transition],
] = {
    WorkflowState.INIT: _linear(WorkflowState.NEEDS_CONFIG),
    WorkflowState.NEEDS_CONFIG: _linear(WorkflowState.LOAD_CHECKPOINT),
    WorkflowState.LOAD_CHECKPOINT: _linear(WorkflowState.LAUNCH_ENVIRONMENT),
    WorkflowState.LAUNCH_ENVIRONMENT: _linear(
        WorkflowState.CHECK_SESSION, SideEffect.NOTIFY_STARTED,
    ),
    WorkflowState.CHECK_SESSION: _check_session,
    WorkflowState.NEEDS_LOGIN: _needs_login,
    WorkflowState.NEEDS_SIGNUP: _linear(
        WorkflowState.SAVE_CHECKPOINT, SideEffect.MARK_REGISTERED,
    ),
    WorkflowState.SAVE_CHECKPOINT: _linear(
        WorkflowState.NEEDS_VERIFICATION,
        SideEffect.RESET_VERIFICATION_ATTEMPTS,
    ),
    WorkflowState.CHECKING_VERIFICATION: _checking_verification,
    WorkflowState.NEEDS_VERIFICATION: _linear(
        WorkflowState.AWAITING_VERIFICATION_PROOF,
        SideEffect.INCREMENT_VERIFICATION_ATTEMPTS,
    ),
    WorkflowState.AWAITING_VERIFICATION_PROOF: _awaiting_proof,
    WorkflowState.NEEDS_BONUS_CLAIM: _needs_bonus_claim,
    WorkflowState.CLAIMING_RECURRING: _claiming_recurring,
    WorkflowState.PLAYING_CORE: _playing_core,
    WorkflowState.PAUSED_FOR_RECURRING_CLAIM: _linear(
        WorkflowState.CLAIMING_RECURRING,
    ),
    WorkflowState.THRESHOLD_REACHED: _linear(
        WorkflowState.PAUSED_FOR_MANUAL_ACTION,
    ),
    WorkflowState.PAUSED_FOR_MANUAL_ACTION: _paused_for_manual_action,
    WorkflowState.RESUMING_AFTER_ACTION: _resuming_after_action,
    WorkflowState.ERROR: lambda outcome, ctx: Transition(WorkflowState.STOPPING),
    WorkflowState.STOPPING: _stopping,
}


def next_state(
    state: WorkflowState, outcome: StepOutcome, ctx: TransitionContext,
) -> Transition:
    """Return the transition for *outcome* of the step run in *state*.

    Raises:
        ValueError: *state* is terminal.
    """
    if state in TERMINAL_STATES:
        raise ValueError(f"{state.value} is terminal")
    return _RULES[state](outcome, ctx)


def stop_transition(state: WorkflowState) -> Transition:
    """Transition for an operator stop request received in *state*."""
    if state in (WorkflowState.STOPPING, WorkflowState.STOPPED):
        return Transition(state)
    return Transition(WorkflowState.STOPPING)


def describe(value: Any) -> str:
    """Short text for a step value in transition logs."""
    if isinstance(value, Enum):
        return value.value
    return repr(value)
