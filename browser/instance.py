"""Browser instance management for the TronPick autopilot.

Provides :class:`BrowserManager` which wraps ``Camoufox`` (a Firefox
build driven through Playwright).  It owns exactly one browser, one
context and the pages opened in it, and persists the context's storage
state (cookies, local storage) so a restarted process can resume an
existing login instead of authenticating again.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional

from browserforge.fingerprints import Screen
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page

from core.config import CONFIG_DIR

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_STATE = str(CONFIG_DIR / "browser_state.json")


class BrowserManager:
    """Manages the lifecycle of a Camoufox browser instance.

    Responsibilities:
        * Launching / closing the Camoufox browser process.
        * Creating the single ``BrowserContext`` used by the bot,
          seeded from the saved storage state.
        * Saving storage state so sessions survive restarts.
        * Liveness probes used before reusing a page.
    """

    def __init__(
        self,
        headless: bool = True,
        timeout: int = 60000,
        storage_state_path: Optional[str] = DEFAULT_STORAGE_STATE,
    ) -> None:
        """Initialise the BrowserManager.

        Args:
            headless: Whether to run the browser in headless mode.
            timeout: Default Playwright timeout in milliseconds.
            storage_state_path: File used to persist cookies between
                runs.  ``None`` disables persistence.
        """
        self.headless = headless
        self.timeout = timeout
        self.storage_state_path = storage_state_path
        self.browser: Optional[Any] = None
        self.context: Optional[BrowserContext] = None
        self.camoufox: Optional[AsyncCamoufox] = None

    async def launch(self) -> "BrowserManager":
        """Launch the Camoufox browser process.

        Returns:
            ``self`` for fluent chaining.
        """
        logger.info(
            "Launching Camoufox (Headless: %s)...",
            self.headless,
        )
        kwargs: Dict[str, Any] = {
            "headless": self.headless,
        }

        # Headless auto-detection defaults to 1024x768, which the
        # fingerprint generator handles poorly.
        if self.headless:
            kwargs["screen"] = Screen(
                max_width=1920, max_height=1080,
            )

        self.camoufox = AsyncCamoufox(**kwargs)
        self.browser = await self.camoufox.__aenter__()
        return self

    async def get_context(self) -> BrowserContext:
        """Return the bot's context, creating it on first use."""
        if not self.browser:
            await self.launch()
        if self.context is None:
            options: Dict[str, Any] = {}
            if (
                self.storage_state_path
                and os.path.exists(self.storage_state_path)
            ):
                options["storage_state"] = self.storage_state_path
                logger.info(
                    "Restoring browser session from %s",
                    self.storage_state_path,
                )
            self.context = await self.browser.new_context(**options)
            self.context.set_default_timeout(self.timeout)
        return self.context

    async def new_page(self) -> Page:
        """Create a new page in the bot's context."""
        context = await self.get_context()
        return await context.new_page()

    async def save_storage_state(self) -> None:
        """Persist cookies / local storage of the current context."""
        if not self.context or not self.storage_state_path:
            return
        try:
            os.makedirs(
                os.path.dirname(self.storage_state_path), exist_ok=True,
            )
            await self.context.storage_state(path=self.storage_state_path)
        except Exception as e:
            logger.warning("Could not save browser session: %s", e)

    async def check_page_alive(self, page: Optional[Page]) -> bool:
        """Check if a page is still alive and responsive.

        Evaluates ``1 + 1`` with a 3-second timeout.
        """
        try:
            if not page or page.is_closed():
                return False
            await asyncio.wait_for(
                page.evaluate("1 + 1"), timeout=3.0,
            )
            return True
        except asyncio.TimeoutError:
            logger.debug(
                "Page health check timed out - page likely frozen",
            )
            return False
        except Exception as e:
            logger.debug("Page health check failed: %s", e)
            return False

    async def restart(self) -> None:
        """Restart the browser to clear memory and hung processes."""
        logger.info("Restarting browser instance...")
        await self.close()
        await asyncio.sleep(2)
        await self.launch()
        logger.info("Browser instance restarted.")

    async def close(self) -> None:
        """Save the session and shut the browser down."""
        if self.context is not None:
            await self.save_storage_state()
            try:
                await self.context.close()
            except Exception as e:
                logger.debug("Error closing context: %s", e)
            self.context = None
        if self.browser:
            try:
                await self.camoufox.__aexit__(None, None, None)
            except Exception as e:
                logger.debug("Error during browser exit: %s", e)
            self.browser = None
            logger.info("Browser closed.")

    async def force_close(self) -> None:
        """Drop the browser without saving state."""
        browser, self.browser = self.browser, None
        self.context = None
        if browser is None:
            return
        try:
            await asyncio.wait_for(browser.close(), timeout=5.0)
        except Exception as e:
            logger.warning("Forced browser close failed: %s", e)
        logger.info("Browser force-closed.")
