"""
Faucets module for the TronPick autopilot.

Every site integration implements :class:`ActionExecutor` (defined in
``base.py``), the set of named actions the workflow core asks for.

Submodules:
    base: ``ActionExecutor`` contract, ``SessionState``, ``VerificationStatus``.
    tronpick: ``TronPickExecutor`` - tronpick.io implementation.
"""

from .base import ActionExecutor, SessionState, VerificationStatus

__all__ = [
    "ActionExecutor",
    "SessionState",
    "VerificationStatus",
]
