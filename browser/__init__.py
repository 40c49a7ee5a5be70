"""
Browser module for the TronPick autopilot.

Provides the Camoufox (hardened Firefox, driven through Playwright)
instance used by the TronPick executor, with session persistence across
restarts.

Submodules:
    instance: ``BrowserManager`` class.
"""

from .instance import BrowserManager

__all__ = ["BrowserManager"]
