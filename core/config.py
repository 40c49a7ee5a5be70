"""Application configuration for the TronPick autopilot.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/bot_config.json`` file.

Key exports:
    BotSettings: Root settings model (instantiate once in ``main.py``).
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime configuration files (checkpoint, overrides)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)

# Fields that must be present before the workflow can leave NEEDS_CONFIG.
REQUIRED_FIELDS = (
    "tronpick_email",
    "tronpick_password",
    "imap_host",
    "imap_user",
    "imap_password",
)


class BotSettings(BaseSettings):
    """Root configuration model for the TronPick autopilot.

    All fields can be set via environment variables or a ``.env`` file.
    The model also merges values from ``config/bot_config.json``
    (account, mailbox, telegram and browser overrides) during post-init.

    Section overview:
        * **Core** -- log level, headless mode, browser timeout.
        * **Account** -- TronPick credentials, referrer, instance id.
        * **Mailbox** -- IMAP access used for email verification.
        * **Telegram** -- bot token and the system / money chats.
        * **Loop** -- tick delay, per-step timeout, shutdown grace.
        * **Recurring claim** -- hourly faucet interval and retries.
        * **Verification** -- attempt cap and cooldown.
        * **Progression** -- ladder base stake and depth.
        * **Error budget** -- per-category failure thresholds.
        * **Threshold** -- withdrawal trigger / resume policy.
        * **Balance watch** -- change and inactivity notices.
    """

    # Core
    log_level: str = "INFO"
    headless: bool = True
    # Browser navigation timeout in ms
    timeout: int = 60000
    base_url: str = "https://tronpick.io"
    checkpoint_file: str = str(CONFIG_DIR / "checkpoint.json")

    # Account
    tronpick_email: Optional[str] = None
    tronpick_username: Optional[str] = None
    tronpick_password: Optional[str] = None
    referrer_code: Optional[str] = None
    withdrawal_address: Optional[str] = None
    # Prefix for notifications when several hosts run the bot
    instance_id: str = "local"

    # Mailbox
    imap_host: Optional[str] = None
    imap_port: int = 993
    imap_user: Optional[str] = None
    imap_password: Optional[str] = None
    imap_folder: str = "INBOX"

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_system_chat_id: Optional[str] = None
    telegram_money_chat_id: Optional[str] = None
    notify_max_attempts: int = 3
    notify_retry_delay_seconds: float = 2.0

    # Loop
    tick_delay_seconds: float = 0.25
    # Upper bound for one workflow step (a whole ladder walk included)
    step_timeout_seconds: float = 900.0
    # Upper bound for one executor call
    action_timeout_seconds: float = 90.0
    shutdown_grace_seconds: float = 10.0
    # Pause between two ladder walks
    walk_delay_seconds: float = 1.0
    # Pause between two rounds of one walk
    level_delay_seconds: float = 1.0

    # Recurring claim (hourly faucet)
    recurring_claim_interval_minutes: int = 62
    recurring_claim_attempts: int = 3
    recurring_claim_retry_delay_seconds: float = 10.0
    # Back-off after a failed claim round before the gate fires again
    recurring_claim_defer_minutes: int = 5

    # Verification
    max_verification_attempts: int = 3
    verification_retry_delay_seconds: float = 120.0
    verification_poll_timeout_seconds: float = 120.0
    verification_poll_interval_seconds: float = 10.0

    # Progression (amounts in minor units)
    stake_base: int = 100
    max_level: int = 13
    seed_rotation_level: int = 3
    # Settle time after a seed rotation / hard refresh
    refresh_settle_seconds: float = 5.0
    # Delay between a qualifying win and the seed rotation
    rotation_delay_seconds: float = 3.0
    # Time the wheel needs before the result can be read
    spin_settle_seconds: float = 6.0

    # Error budget
    deposit_verification_error_threshold: int = 5
    spin_error_threshold: int = 3
    walk_error_threshold: int = 5
    cool_down_seconds: float = 300.0
    deposit_max_corrections: int = 5

    # Threshold (withdrawal pause)
    withdrawal_trigger: Decimal = Decimal("16.6383")
    balance_to_keep: Decimal = Decimal("1.6383")
    withdrawal_detection_delta: Decimal = Decimal("10.0")
    reset_pnl_on_resume: bool = True
    manual_action_poll_seconds: float = 30.0

    # Balance watch
    balance_check_interval_minutes: int = 15
    # Relative change (0.002 == 0.2%) that produces a notice
    balance_change_threshold: float = 0.002

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Merge overrides from ``config/bot_config.json``."""
        self._load_config_file_defaults()

    def _load_config_file_defaults(self) -> None:
        """Load account, mailbox and telegram values from config file.

        Values already provided through the environment are *not*
        overwritten.  Browser-level overrides (headless, timeout) are
        applied only when the JSON file provides them.
        """
        config_path: Path = CONFIG_DIR / "bot_config.json"
        if not config_path.exists():
            return

        try:
            data: Dict[str, Any] = json.loads(
                config_path.read_text(encoding="utf-8")
            )
        except Exception as exc:
            logger.warning(
                "Failed to load bot_config.json: %s", exc
            )
            return

        sections = {
            "account": {
                "email": "tronpick_email",
                "username": "tronpick_username",
                "password": "tronpick_password",
                "referrer": "referrer_code",
                "withdrawal_address": "withdrawal_address",
            },
            "mailbox": {
                "host": "imap_host",
                "port": "imap_port",
                "user": "imap_user",
                "password": "imap_password",
            },
            "telegram": {
                "bot_token": "telegram_bot_token",
                "system_chat_id": "telegram_system_chat_id",
                "money_chat_id": "telegram_money_chat_id",
            },
        }
        for section, mapping in sections.items():
            values = data.get(section)
            if not isinstance(values, dict):
                continue
            for key, field in mapping.items():
                if values.get(key) in (None, ""):
                    continue
                if getattr(self, field) not in (None, ""):
                    continue
                setattr(self, field, values[key])

        browser_settings = data.get("browser_settings")
        if isinstance(browser_settings, dict):
            if "headless" in browser_settings:
                self.headless = bool(
                    browser_settings.get("headless")
                )
            if "timeout" in browser_settings:
                self.timeout = int(
                    browser_settings.get(
                        "timeout", self.timeout
                    )
                )

    def missing_requirements(self) -> List[str]:
        """Return the names of mandatory settings that are unset.

        Returns:
            Field names from ``REQUIRED_FIELDS`` whose value is empty.
        """
        return [
            name for name in REQUIRED_FIELDS
            if not getattr(self, name)
        ]

    @property
    def telegram_enabled(self) -> bool:
        """Whether a bot token and at least one chat are configured."""
        return bool(self.telegram_bot_token) and bool(
            self.telegram_system_chat_id or self.telegram_money_chat_id
        )
