"""Playwright action executor for tronpick.io.

Implements every action of :class:`~faucets.base.ActionExecutor` on one
page of a :class:`~browser.instance.BrowserManager` browser.  Expected
negative answers from the site (an error alert after login, a deposit
that cannot be corrected) raise :class:`~core.outcome.LogicalFailure`;
anything the page fails to provide raises
:class:`~core.outcome.TechnicalFailure` or lets the Playwright error
propagate.
"""

import asyncio
import logging
import re
import secrets
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from playwright.async_api import Page

from browser.instance import BrowserManager
from core.config import BotSettings
from core.mailbox import VerificationMailbox
from core.outcome import LogicalFailure, TechnicalFailure
from core.progression import Side
from faucets.base import ActionExecutor, SessionState, VerificationStatus

logger = logging.getLogger(__name__)

SELECTORS = {
    "balance": "span.user_balance",
    "alert_error": "div.alert.alert-danger, div.alert.alert-warning",
    "alert_success": "div.alert.alert-success",
    "dismiss": "a.close.dismiss_noti_button",
    # auth
    "email": "#user_email",
    "password": "#password",
    "username": "#username",
    "confirm_password": "#rpassword",
    "referrer": "#referrer",
    "login_button": "#process_login",
    "signup_button": "#process_signup",
    "verify_button": "#process_verify_email",
    # faucet
    "free_spins": "#free_spins",
    "bonus_radio": "#select_bonus_faucet",
    "bonus_claim": "#process_claim_bonus_faucet",
    "hourly_radio": "#select_hourly_faucet",
    "hourly_claim": "#process_claim_hourly_faucet",
    "surveys": "#show_surveys",
    # roulette
    "bet_input": "#bet_amount",
    "clear_bet": "#clear_all_bet_chips",
    "spin": "#bet_btn",
    "chip": "div.chip[data-coin='{value}']",
    "result": ".roulette_number",
    # fairness modal
    "fairness_icon": "div.footer_wrap i.fa-balance-scale",
    "seed_modal": "#modal-window",
    "seed_input": "#modal-window input#client_seed",
    "seed_change": "#modal-window button#process_change_client_seed",
    "seed_close": "#modal-window span.close-modal",
}

TARGETS = {
    Side.RED: "td[data-id-number='40']",
    Side.BLACK: "td[data-id-number='39']",
}

CHIP_DENOMINATIONS = (
    100000000, 10000000, 1000000, 100000, 10000, 1000, 100,
)

VERIFIED_TEXT = "successfully verified"


def plan_chips(amount: int) -> List[Tuple[int, int]]:
    """Greedy split of *amount* into ``(chip, clicks)`` pairs.

    Whatever the smallest chip cannot cover is left to the deposit
    correction pass.
    """
    plan: List[Tuple[int, int]] = []
    remaining = int(amount)
    for chip in CHIP_DENOMINATIONS:
        count = remaining // chip
        if count > 0:
            plan.append((chip, count))
            remaining -= chip * count
    return plan


def parse_bet_amount(value: Optional[str]) -> int:
    """Read the bet input as minor units.

    The input shows either an integer or a ``0.XXXXXXXX`` decimal whose
    fractional digits are the amount in minor units.
    """
    if value is None:
        return 0
    value = value.strip()
    if "." in value:
        digits = value.split(".", 1)[1]
        return int(digits) if digits.isdigit() else 0
    if value.isdigit():
        return int(value)
    return 0


def parse_balance(text: Optional[str]) -> Decimal:
    """Parse the header balance, e.g. ``"12.345678 TRX"``.

    Raises:
        TechnicalFailure: No number in *text*.
    """
    match = re.search(r"\d[\d,]*(?:\.\d+)?", text or "")
    if not match:
        raise TechnicalFailure(f"unreadable balance: {text!r}")
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation as e:
        raise TechnicalFailure(f"unreadable balance: {text!r}") from e


class TronPickExecutor(ActionExecutor):
    """Browser-driven executor for the TronPick site."""

    name = "TronPick"

    def __init__(
        self,
        settings: BotSettings,
        browser: Optional[BrowserManager] = None,
        mailbox: Optional[VerificationMailbox] = None,
    ):
        super().__init__(settings)
        self.browser = browser or BrowserManager(
            headless=settings.headless, timeout=settings.timeout,
        )
        self.mailbox = mailbox or VerificationMailbox(settings)
        self.page: Optional[Page] = None
        base = settings.base_url.rstrip("/")
        self.base_url = base
        self.login_url = f"{base}/login.php"
        self.signup_url = f"{base}/signup.php"
        self.faucet_url = f"{base}/faucet.php"
        self.settings_url = f"{base}/settings.php"
        self.roulette_url = f"{base}/roulette.php"

    # -- environment -----------------------------------------------------

    async def launch(self) -> None:
        await self.browser.launch()
        self.page = await self.browser.new_page()
        self.page.set_default_timeout(self.settings.timeout)
        logger.info(f"[{self.name}] Browser ready")

    async def release(self) -> None:
        await self.browser.close()
        self.page = None

    async def force_release(self) -> None:
        await self.browser.force_close()
        self.page = None

    @property
    def _page(self) -> Page:
        if self.page is None or self.page.is_closed():
            raise TechnicalFailure("page not available")
        return self.page

    async def _goto(self, url: str, max_retries: int = 3) -> None:
        """Navigate with backoff on connection errors.

        Raises:
            TechnicalFailure: Every attempt failed.
        """
        nav_timeout = max(self.settings.timeout, 45000)
        last_error: Optional[Exception] = None
        for attempt in range(max_retries):
            try:
                await self._page.goto(
                    url, timeout=nav_timeout, wait_until="domcontentloaded",
                )
                return
            except TechnicalFailure:
                raise
            except Exception as e:
                last_error = e
                wait_time = (2 ** attempt) * 3
                logger.warning(
                    f"[{self.name}] Navigation to {url} failed on attempt "
                    f"{attempt + 1}/{max_retries}: {str(e)[:100]}. "
                    f"Retrying in {wait_time}s..."
                )
                await asyncio.sleep(wait_time)
        raise TechnicalFailure(
            f"navigation to {url} failed after {max_retries} attempts: "
            f"{last_error}"
        )

    async def _text_of(self, selector: str) -> Optional[str]:
        locator = self._page.locator(selector)
        if await locator.count() == 0:
            return None
        text = await locator.first.text_content()
        return text.strip() if text else None

    async def _wait_for_alert(self, timeout_ms: int = 15000) -> Tuple[str, str]:
        """Wait for a success or error alert.

        Returns:
            ``("success" | "error" | "none", text)``.
        """
        combined = f"{SELECTORS['alert_success']}, {SELECTORS['alert_error']}"
        try:
            await self._page.wait_for_selector(
                combined, state="visible", timeout=timeout_ms,
            )
        except Exception:
            return "none", ""
        error = await self._text_of(SELECTORS["alert_error"])
        if error:
            return "error", error
        return "success", await self._text_of(SELECTORS["alert_success"]) or ""

    async def _dismiss_notifications(self) -> None:
        buttons = self._page.locator(SELECTORS["dismiss"])
        for i in range(await buttons.count()):
            try:
                await buttons.nth(i).click(timeout=2000)
            except Exception as e:
                logger.debug(f"[{self.name}] Could not dismiss notice: {e}")

    async def _hide_surveys(self) -> None:
        await self._page.evaluate(
            """(sel) => { const el = document.querySelector(sel);
                          if (el) el.style.display = 'none'; }""",
            SELECTORS["surveys"],
        )

    # -- account ---------------------------------------------------------

    async def check_session(self) -> SessionState:
        await self._goto(self.faucet_url)
        if "login.php" in self._page.url:
            return SessionState.LOGGED_OUT
        balance = self._page.locator(SELECTORS["balance"])
        if await balance.count() > 0:
            return SessionState.ACTIVE
        return SessionState.LOGGED_OUT

    async def _wait_for_redirect(self, *fragments: str, timeout_ms: int = 30000) -> bool:
        pattern = re.compile("|".join(re.escape(f) for f in fragments))
        try:
            await self._page.wait_for_url(pattern, timeout=timeout_ms)
            return True
        except Exception:
            return False

    async def authenticate(self) -> SessionState:
        s = self.settings
        logger.info(f"[{self.name}] Logging in as {s.tronpick_email}")
        await self._goto(self.login_url)
        await self._page.fill(SELECTORS["email"], s.tronpick_email or "")
        await self._page.fill(SELECTORS["password"], s.tronpick_password or "")
        await self._page.click(SELECTORS["login_button"])

        if await self._wait_for_redirect("/faucet.php", "/settings.php"):
            logger.info(f"[{self.name}] ✅ Login successful")
            await self.browser.save_storage_state()
            return SessionState.ACTIVE

        error = await self._text_of(SELECTORS["alert_error"])
        if error or "login.php" in self._page.url:
            raise LogicalFailure(f"login rejected: {error or 'no redirect'}")
        raise TechnicalFailure(
            f"unexpected page after login: {self._page.url}"
        )

    async def register(self) -> None:
        s = self.settings
        logger.info(f"[{self.name}] Registering {s.tronpick_email}")
        await self._goto(self.signup_url)
        await self._page.fill(
            SELECTORS["username"], s.tronpick_username or "",
        )
        await self._page.fill(SELECTORS["email"], s.tronpick_email or "")
        await self._page.fill(SELECTORS["password"], s.tronpick_password or "")
        await self._page.fill(
            SELECTORS["confirm_password"], s.tronpick_password or "",
        )
        if s.referrer_code:
            await self._page.fill(SELECTORS["referrer"], s.referrer_code)
        await self._page.click(SELECTORS["signup_button"])

        if await self._wait_for_redirect(
            "/faucet.php", "/settings.php", timeout_ms=60000,
        ):
            logger.info(f"[{self.name}] ✅ Registration completed")
            await self.browser.save_storage_state()
            return
        error = await self._text_of(SELECTORS["alert_error"])
        raise LogicalFailure(
            f"registration failed: {error or self._page.url}"
        )

    async def check_verification(self) -> VerificationStatus:
        await self._goto(self.faucet_url)
        await self._hide_surveys()

        alerts = await self._page.locator("div.alert").all_text_contents()
        if any(VERIFIED_TEXT in text for text in alerts):
            logger.info(f"[{self.name}] Email already verified, clearing banner")
            await self._dismiss_notifications()
            return VerificationStatus.VERIFIED

        verify_link = self._page.locator(
            f"{SELECTORS['alert_success']} a[href$='settings.php']"
        )
        if await verify_link.count() > 0:
            return VerificationStatus.UNVERIFIED

        # No banner either way: the settings page only offers the
        # verify button to unverified accounts.
        try:
            await self._goto(self.settings_url)
            button = self._page.locator(SELECTORS["verify_button"])
            if await button.count() > 0:
                return VerificationStatus.UNVERIFIED
            if await self._page.locator(SELECTORS["balance"]).count() > 0:
                return VerificationStatus.VERIFIED
        except TechnicalFailure as e:
            logger.warning(f"[{self.name}] Settings check failed: {e}")
        return VerificationStatus.AMBIGUOUS

    async def request_verification(self) -> None:
        await self._goto(self.settings_url)
        button = self._page.locator(SELECTORS["verify_button"])
        if await button.count() == 0:
            raise LogicalFailure("verify email button not offered")
        await button.first.click()
        kind, text = await self._wait_for_alert()
        if kind == "error":
            raise LogicalFailure(f"verification request refused: {text}")
        logger.info(f"[{self.name}] 📧 Verification email requested")

    async def poll_for_verification_proof(self) -> bool:
        link = await self.mailbox.wait_for_verification_link(
            timeout=self.settings.verification_poll_timeout_seconds,
            interval=self.settings.verification_poll_interval_seconds,
        )
        if not link:
            return False
        await self._goto(link)
        kind, text = await self._wait_for_alert()
        if kind == "error":
            raise LogicalFailure(f"verification link rejected: {text}")
        logger.info(f"[{self.name}] ✅ Email verified")
        return True

    # -- claims ----------------------------------------------------------

    async def _claim(self, radio: str, button: str) -> Tuple[str, str]:
        await self._page.check(radio)
        claim = self._page.locator(button)
        # The site enables the button once its own captcha widget passes.
        await claim.wait_for(state="visible")
        await self._page.wait_for_function(
            "(sel) => { const b = document.querySelector(sel);"
            " return b && !b.disabled; }",
            arg=button,
            timeout=120000,
        )
        await claim.click()
        return await self._wait_for_alert()

    async def claim_bonus(self) -> int:
        await self._goto(self.faucet_url)
        await self._hide_surveys()
        spins_text = await self._text_of(SELECTORS["free_spins"])
        spins = int(spins_text) if spins_text and spins_text.isdigit() else 0
        logger.info(f"[{self.name}] Bonus spins available: {spins}")

        claimed = 0
        for _ in range(spins):
            kind, text = await self._claim(
                SELECTORS["bonus_radio"], SELECTORS["bonus_claim"],
            )
            if kind != "success":
                logger.warning(f"[{self.name}] Bonus claim stopped: {text or kind}")
                break
            claimed += 1
            await self._dismiss_notifications()
        return claimed

    async def claim_recurring(self) -> bool:
        await self._goto(self.faucet_url)
        await self._hide_surveys()
        kind, text = await self._claim(
            SELECTORS["hourly_radio"], SELECTORS["hourly_claim"],
        )
        if kind == "error":
            raise LogicalFailure(f"hourly claim refused: {text}")
        return kind == "success"

    # -- ladder ----------------------------------------------------------

    async def _ensure_roulette(self) -> None:
        if "roulette.php" not in self._page.url:
            await self._goto(self.roulette_url)
            await self._dismiss_notifications()

    async def _bet_amount(self) -> int:
        value = await self._page.input_value(SELECTORS["bet_input"])
        return parse_bet_amount(value)

    async def _deposit(self, chip: int, clicks: int, target: str) -> None:
        await self._page.click(SELECTORS["chip"].format(value=chip))
        for _ in range(clicks):
            await self._page.click(target)
        await asyncio.sleep(0.5 + clicks * 0.1)

    async def place_stake(self, amount: Decimal, side: Side) -> None:
        await self._ensure_roulette()
        desired = int(amount)
        target = TARGETS[side]

        await self._page.click(SELECTORS["clear_bet"])
        for chip, clicks in plan_chips(desired):
            await self._deposit(chip, clicks, target)
        await asyncio.sleep(1.5)

        attempts = self.settings.deposit_max_corrections
        for attempt in range(1, attempts + 1):
            current = await self._bet_amount()
            if current == desired:
                return
            if current > desired:
                logger.warning(
                    f"[{self.name}] Deposit {current} above target "
                    f"{desired}, accepting"
                )
                return
            missing = desired - current
            logger.warning(
                f"[{self.name}] Deposit check {attempt}/{attempts}: "
                f"{current} of {desired}, adding {missing}"
            )
            if attempt < attempts:
                await self._deposit(100, -(-missing // 100), target)
                await asyncio.sleep(1.0)

        await self._page.click(SELECTORS["clear_bet"])
        raise LogicalFailure(
            f"deposit could not be corrected to {desired}"
        )

    async def spin(self) -> None:
        await self._page.wait_for_selector(
            SELECTORS["spin"], state="visible", timeout=10000,
        )
        await self._page.click(SELECTORS["spin"])

    async def read_last_outcome(self) -> int:
        await asyncio.sleep(self.settings.spin_settle_seconds)
        texts = await self._page.locator(SELECTORS["result"]).all_text_contents()
        if not texts:
            raise TechnicalFailure("no roulette result on page")
        match = re.search(r"\d+", texts[-1])
        if not match:
            raise TechnicalFailure(f"unreadable roulette result {texts[-1]!r}")
        return int(match.group(0))

    async def rotate_seed(self) -> bool:
        await self._ensure_roulette()
        seed = secrets.token_hex(8)
        await self._page.click(SELECTORS["fairness_icon"])
        await self._page.wait_for_selector(SELECTORS["seed_modal"], state="visible")
        await self._page.fill(SELECTORS["seed_input"], seed)
        await self._page.click(SELECTORS["seed_change"])
        kind, text = await self._wait_for_alert(timeout_ms=5000)
        try:
            await self._page.click(SELECTORS["seed_close"], timeout=3000)
        except Exception as e:
            logger.debug(f"[{self.name}] Seed modal close failed: {e}")
        if kind == "error":
            logger.warning(f"[{self.name}] Seed change refused: {text}")
            return False
        logger.info(f"[{self.name}] 🎲 Client seed rotated")
        return True

    async def hard_refresh(self) -> None:
        if not await self.browser.check_page_alive(self.page):
            logger.warning(f"[{self.name}] Page unresponsive, restarting browser")
            await self.browser.restart()
            self.page = await self.browser.new_page()
            self.page.set_default_timeout(self.settings.timeout)
        await self._goto(self.roulette_url)
        await self._page.reload(wait_until="domcontentloaded")
        await self._dismiss_notifications()

    async def read_monitored_balance(self) -> Decimal:
        text = await self._text_of(SELECTORS["balance"])
        if text is None:
            await self._goto(self.faucet_url)
            text = await self._text_of(SELECTORS["balance"])
        return parse_balance(text)
