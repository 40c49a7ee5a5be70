"""Fire-and-forget Telegram notifications.

Two chats are used: a *system* chat for lifecycle and error events and a
*money* chat for balance movements.  :meth:`Notifier.notify` schedules
the send as a background task and returns immediately; a send that
still fails after the bounded retries is logged and dropped.  Nothing
here ever raises into the workflow loop.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

import aiohttp

from core.config import BotSettings

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


class NotifyChannel(Enum):
    SYSTEM = "system"
    MONEY = "money"


class NotifyEvent(Enum):
    """Event types routed to the chats."""
    # system
    BOT_STARTED = "bot_started"
    BOT_STOPPED = "bot_stopped"
    CRITICAL_ERROR = "critical_error"
    UNHANDLED_ERROR = "unhandled_error"
    LEVEL_LIMIT_LOSS = "level_limit_loss"
    THRESHOLD_REACHED = "threshold_reached"
    SYSTEM_RESUMED = "system_resumed"
    CORRECTIVE_ACTION = "corrective_action"
    BALANCE_INACTIVITY = "balance_inactivity"
    # money
    BALANCE_INITIAL = "balance_initial"
    BALANCE_CHANGE = "balance_change"
    WITHDRAWAL_DETECTED = "withdrawal_detected"


class Notifier:
    """Notification sink consumed by the workflow."""

    def notify(
        self,
        channel: NotifyChannel,
        event: NotifyEvent,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait (bounded) for in-flight sends before shutdown."""


class NullNotifier(Notifier):
    """Sink used when no transport is configured."""

    def notify(self, channel, event, details=None) -> None:
        logger.debug(
            f"[notify] {channel.value}/{event.value} (disabled): {details or {}}"
        )


def format_message(
    instance_id: str,
    event: NotifyEvent,
    details: Optional[Dict[str, Any]] = None,
) -> str:
    title = event.value.replace("_", " ").upper()
    lines = [f"[{instance_id}] {title}"]
    for key, value in (details or {}).items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


class TelegramNotifier(Notifier):
    """Sends notifications through the Telegram Bot API via ``aiohttp``.

    Attributes:
        settings: Global :class:`BotSettings` (token, chat ids, retry
            policy, instance id).
    """

    def __init__(self, settings: BotSettings):
        self.settings = settings
        self.max_attempts = max(1, settings.notify_max_attempts)
        self.retry_delay = settings.notify_retry_delay_seconds
        self._tasks: Set[asyncio.Task] = set()

    def _chat_for(self, channel: NotifyChannel) -> Optional[str]:
        if channel is NotifyChannel.MONEY:
            return self.settings.telegram_money_chat_id
        return self.settings.telegram_system_chat_id

    def notify(
        self,
        channel: NotifyChannel,
        event: NotifyEvent,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        chat_id = self._chat_for(channel)
        if not self.settings.telegram_bot_token or not chat_id:
            logger.debug(
                f"[notify] No chat configured for {channel.value}, "
                f"dropping {event.value}"
            )
            return
        text = format_message(self.settings.instance_id, event, details)
        try:
            task = asyncio.get_running_loop().create_task(
                self._send(chat_id, text, event)
            )
        except RuntimeError:
            logger.warning(
                f"[notify] No running loop, dropping {event.value}"
            )
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, chat_id: str, text: str, event: NotifyEvent) -> bool:
        """POST *text* to *chat_id* with bounded retries.

        Returns:
            ``True`` once Telegram accepted the message.
        """
        url = TELEGRAM_API_URL.format(token=self.settings.telegram_bot_token)
        payload = {"chat_id": chat_id, "text": text}
        for attempt in range(1, self.max_attempts + 1):
            try:
                timeout = aiohttp.ClientTimeout(total=15)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.post(url, json=payload) as resp:
                        if resp.status == 200:
                            return True
                        body = await resp.text()
                        logger.warning(
                            f"[notify] {event.value} attempt {attempt}/"
                            f"{self.max_attempts} rejected: "
                            f"HTTP {resp.status} {body[:200]}"
                        )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"[notify] {event.value} attempt {attempt}/"
                    f"{self.max_attempts} failed: {e}"
                )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)

        logger.error(
            f"[notify] Giving up on {event.value} after "
            f"{self.max_attempts} attempts"
        )
        return False

    async def drain(self, timeout: float = 5.0) -> None:
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"[notify] {len(pending)} notification(s) dropped at shutdown"
            )


def build_notifier(settings: BotSettings) -> Notifier:
    if settings.telegram_enabled:
        return TelegramNotifier(settings)
    logger.info("Telegram not configured, notifications disabled")
    return NullNotifier()
