# pylint: disable=protected-access
"""
Tests for the TronPick executor.

Tests cover:
- Chip planning and bet / balance parsing
- Stake deposit with verification and correction
- Result reading and seed rotation
- Session, login and verification classification against a mocked page
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from core.outcome import LogicalFailure, TechnicalFailure
from core.progression import Side
from faucets.base import SessionState, VerificationStatus
from faucets.tronpick import (
    SELECTORS,
    TARGETS,
    TronPickExecutor,
    parse_balance,
    parse_bet_amount,
    plan_chips,
)
from conftest import make_settings

ROULETTE_URL = "https://tronpick.io/roulette.php"


@pytest.fixture
def mock_page():
    """Mock Playwright Page sitting on the roulette page."""
    page = AsyncMock()
    page.url = ROULETTE_URL
    page.is_closed = MagicMock(return_value=False)
    page.set_default_timeout = MagicMock()

    page.locator = MagicMock()
    page.locator.return_value.count = AsyncMock(return_value=0)
    page.locator.return_value.all_text_contents = AsyncMock(return_value=[])
    page.locator.return_value.first = MagicMock()
    page.locator.return_value.first.text_content = AsyncMock(return_value="")
    page.locator.return_value.first.click = AsyncMock()
    page.locator.return_value.click = AsyncMock()
    page.locator.return_value.wait_for = AsyncMock()
    page.locator.return_value.nth.return_value.click = AsyncMock()
    return page


@pytest.fixture
def executor(mock_page):
    bot = TronPickExecutor(
        make_settings(), browser=MagicMock(), mailbox=MagicMock(),
    )
    bot.browser.save_storage_state = AsyncMock()
    bot.page = mock_page
    return bot


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("faucets.tronpick.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


def clicked(page):
    return [call.args[0] for call in page.click.await_args_list]


class TestHelpers:
    def test_plan_single_chip(self):
        assert plan_chips(100) == [(100, 1)]

    def test_plan_top_of_ladder(self):
        assert plan_chips(819200) == [
            (100000, 8), (10000, 1), (1000, 9), (100, 2),
        ]

    def test_plan_leaves_sub_chip_remainder(self):
        assert plan_chips(150) == [(100, 1)]
        assert plan_chips(0) == []

    @pytest.mark.parametrize("raw, expected", [
        ("0.00000300", 300),
        ("300", 300),
        (" 0.00051200 ", 51200),
        ("", 0),
        (None, 0),
        ("abc", 0),
    ])
    def test_parse_bet_amount(self, raw, expected):
        assert parse_bet_amount(raw) == expected

    def test_parse_balance(self):
        assert parse_balance("12.345678 TRX") == Decimal("12.345678")
        assert parse_balance("1,234.5") == Decimal("1234.5")

    def test_parse_balance_rejects_garbage(self):
        with pytest.raises(TechnicalFailure):
            parse_balance("--")
        with pytest.raises(TechnicalFailure):
            parse_balance(None)


class TestPlaceStake:
    @pytest.mark.asyncio
    async def test_exact_deposit(self, executor, mock_page):
        mock_page.input_value = AsyncMock(return_value="0.00000300")
        await executor.place_stake(Decimal("300"), Side.RED)

        red = TARGETS[Side.RED]
        assert clicked(mock_page) == [
            SELECTORS["clear_bet"],
            SELECTORS["chip"].format(value=100), red, red, red,
        ]

    @pytest.mark.asyncio
    async def test_shortfall_is_topped_up(self, executor, mock_page):
        mock_page.input_value = AsyncMock(side_effect=["0.00000200", "0.00000400"])
        await executor.place_stake(Decimal("400"), Side.BLACK)

        black = TARGETS[Side.BLACK]
        # 400 as four 100-chips, then a correction of two more clicks
        assert clicked(mock_page).count(black) == 6
        assert mock_page.input_value.await_count == 2

    @pytest.mark.asyncio
    async def test_over_deposit_is_accepted(self, executor, mock_page):
        mock_page.input_value = AsyncMock(return_value="0.00000500")
        await executor.place_stake(Decimal("400"), Side.RED)
        assert clicked(mock_page).count(SELECTORS["clear_bet"]) == 1

    @pytest.mark.asyncio
    async def test_uncorrectable_deposit_clears_and_fails(self, executor, mock_page):
        mock_page.input_value = AsyncMock(return_value="0.00000100")
        with pytest.raises(LogicalFailure):
            await executor.place_stake(Decimal("300"), Side.RED)

        assert mock_page.input_value.await_count == 5
        assert clicked(mock_page)[-1] == SELECTORS["clear_bet"]

    @pytest.mark.asyncio
    async def test_navigates_to_roulette_first(self, executor, mock_page):
        mock_page.url = "https://tronpick.io/faucet.php"
        mock_page.input_value = AsyncMock(return_value="100")
        await executor.place_stake(Decimal("100"), Side.RED)
        assert mock_page.goto.await_args.args[0] == ROULETTE_URL


class TestRound:
    @pytest.mark.asyncio
    async def test_read_last_outcome_takes_newest(self, executor, mock_page):
        mock_page.locator.return_value.all_text_contents = AsyncMock(
            return_value=["12", " 7 "],
        )
        assert await executor.read_last_outcome() == 7

    @pytest.mark.asyncio
    async def test_missing_result_is_technical(self, executor, mock_page):
        with pytest.raises(TechnicalFailure):
            await executor.read_last_outcome()

    @pytest.mark.asyncio
    async def test_spin_waits_for_button(self, executor, mock_page):
        await executor.spin()
        mock_page.wait_for_selector.assert_awaited_once_with(
            SELECTORS["spin"], state="visible", timeout=10000,
        )
        assert clicked(mock_page) == [SELECTORS["spin"]]

    @pytest.mark.asyncio
    async def test_rotate_seed_fills_new_hex_seed(self, executor, mock_page):
        executor._wait_for_alert = AsyncMock(return_value=("success", "Seed changed"))
        assert await executor.rotate_seed() is True

        selector, seed = mock_page.fill.await_args.args
        assert selector == SELECTORS["seed_input"]
        assert len(seed) == 16
        int(seed, 16)
        assert SELECTORS["seed_change"] in clicked(mock_page)

    @pytest.mark.asyncio
    async def test_rotate_seed_refused(self, executor, mock_page):
        executor._wait_for_alert = AsyncMock(return_value=("error", "Too fast"))
        assert await executor.rotate_seed() is False

    @pytest.mark.asyncio
    async def test_read_monitored_balance(self, executor, mock_page):
        mock_page.locator.return_value.count = AsyncMock(return_value=1)
        mock_page.locator.return_value.first.text_content = AsyncMock(
            return_value="16.7 TRX",
        )
        assert await executor.read_monitored_balance() == Decimal("16.7")


class TestAccount:
    @pytest.mark.asyncio
    async def test_session_active_when_balance_shown(self, executor, mock_page):
        mock_page.url = "https://tronpick.io/faucet.php"
        mock_page.locator.return_value.count = AsyncMock(return_value=1)
        assert await executor.check_session() is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_session_logged_out_on_login_redirect(self, executor, mock_page):
        mock_page.url = "https://tronpick.io/login.php"
        assert await executor.check_session() is SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_login_success(self, executor, mock_page):
        assert await executor.authenticate() is SessionState.ACTIVE
        mock_page.fill.assert_any_await(SELECTORS["email"], "bot@example.com")
        mock_page.fill.assert_any_await(SELECTORS["password"], "secret")
        assert clicked(mock_page) == [SELECTORS["login_button"]]
        executor.browser.save_storage_state.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_login_rejected_is_logical(self, executor, mock_page):
        mock_page.wait_for_url = AsyncMock(side_effect=Exception("Timeout"))
        mock_page.url = "https://tronpick.io/login.php"
        mock_page.locator.return_value.count = AsyncMock(return_value=1)
        mock_page.locator.return_value.first.text_content = AsyncMock(
            return_value="Invalid email or password",
        )
        with pytest.raises(LogicalFailure, match="Invalid email"):
            await executor.authenticate()

    @pytest.mark.asyncio
    async def test_verified_banner(self, executor, mock_page):
        mock_page.locator.return_value.all_text_contents = AsyncMock(
            return_value=["Your email has been successfully verified"],
        )
        assert await executor.check_verification() is VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_unverified_banner(self, executor, mock_page):
        mock_page.locator.return_value.count = AsyncMock(return_value=1)
        assert await executor.check_verification() is VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_no_banner_and_no_page_data_is_ambiguous(self, executor, mock_page):
        assert await executor.check_verification() is VerificationStatus.AMBIGUOUS

    @pytest.mark.asyncio
    async def test_request_verification_without_button_is_logical(
        self, executor, mock_page,
    ):
        with pytest.raises(LogicalFailure):
            await executor.request_verification()

    @pytest.mark.asyncio
    async def test_poll_follows_link(self, executor, mock_page):
        link = "https://tronpick.io/confirm.php?act=verify_email&key=k"
        executor.mailbox.wait_for_verification_link = AsyncMock(return_value=link)
        executor._wait_for_alert = AsyncMock(return_value=("success", "verified"))
        assert await executor.poll_for_verification_proof() is True
        assert mock_page.goto.await_args.args[0] == link

    @pytest.mark.asyncio
    async def test_poll_without_email(self, executor, mock_page):
        executor.mailbox.wait_for_verification_link = AsyncMock(return_value=None)
        assert await executor.poll_for_verification_proof() is False
        mock_page.goto.assert_not_awaited()


class TestClaims:
    @pytest.mark.asyncio
    async def test_hourly_claim_success(self, executor, mock_page):
        executor._wait_for_alert = AsyncMock(return_value=("success", "You won"))
        assert await executor.claim_recurring() is True
        mock_page.check.assert_awaited_once_with(SELECTORS["hourly_radio"])

    @pytest.mark.asyncio
    async def test_hourly_claim_refused(self, executor, mock_page):
        executor._wait_for_alert = AsyncMock(return_value=("error", "Wait 20 minutes"))
        with pytest.raises(LogicalFailure, match="Wait 20 minutes"):
            await executor.claim_recurring()

    @pytest.mark.asyncio
    async def test_bonus_claims_each_free_spin(self, executor, mock_page):
        mock_page.locator.return_value.count = AsyncMock(return_value=1)
        mock_page.locator.return_value.first.text_content = AsyncMock(return_value="2")
        executor._wait_for_alert = AsyncMock(return_value=("success", "ok"))
        assert await executor.claim_bonus() == 2

    @pytest.mark.asyncio
    async def test_no_free_spins(self, executor, mock_page):
        assert await executor.claim_bonus() == 0
        mock_page.check.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_launch_opens_page(self, mock_page):
        browser = MagicMock()
        browser.launch = AsyncMock()
        browser.new_page = AsyncMock(return_value=mock_page)
        bot = TronPickExecutor(make_settings(), browser=browser, mailbox=MagicMock())

        await bot.launch()
        assert bot.page is mock_page
        mock_page.set_default_timeout.assert_called_once_with(60000)

    @pytest.mark.asyncio
    async def test_release_closes_browser(self, executor):
        executor.browser.close = AsyncMock()
        await executor.release()
        executor.browser.close.assert_awaited_once()
        assert executor.page is None

    @pytest.mark.asyncio
    async def test_hard_refresh_reloads_live_page(self, executor, mock_page):
        executor.browser.check_page_alive = AsyncMock(return_value=True)
        executor.browser.restart = AsyncMock()
        await executor.hard_refresh()
        executor.browser.restart.assert_not_awaited()
        mock_page.reload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hard_refresh_restarts_frozen_browser(self, executor, mock_page):
        fresh = AsyncMock()
        fresh.url = ROULETTE_URL
        fresh.is_closed = MagicMock(return_value=False)
        fresh.set_default_timeout = MagicMock()
        fresh.locator = mock_page.locator
        executor.browser.check_page_alive = AsyncMock(return_value=False)
        executor.browser.restart = AsyncMock()
        executor.browser.new_page = AsyncMock(return_value=fresh)

        await executor.hard_refresh()
        executor.browser.restart.assert_awaited_once()
        assert executor.page is fresh
        fresh.reload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_page_is_technical(self, executor, mock_page):
        mock_page.is_closed = MagicMock(return_value=True)
        with pytest.raises(TechnicalFailure):
            await executor.spin()
