"""
Core module for the TronPick autopilot.

This package contains the workflow engine, its pure decision components,
configuration, persistence and notification plumbing.

Submodules:
    config: Application settings (``BotSettings``) via Pydantic.
    workflow: ``WorkflowRunner`` control loop.
    transitions: ``WorkflowState`` and the pure ``next_state`` table.
    outcome: ``StepOutcome`` and the logical / technical failure split.
    progression: Martingale ladder arithmetic and seed-rotation policy.
    ladder: ``LadderWalker`` playing one walk through the executor.
    error_budget: Per-category failure counters and corrective directives.
    threshold: Withdrawal pause / resume controller.
    checkpoint: Corruption-safe JSON checkpoint store.
    notifier: Telegram notifications on the system and money chats.
    balance_monitor: Periodic balance change / inactivity notices.
    mailbox: IMAP lookup of the verification email.
    logging_setup: Compressed rotating file + safe console logging.
"""
