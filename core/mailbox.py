"""IMAP lookup of the account verification email.

The blocking ``imaplib`` session runs in a worker thread so the event
loop keeps ticking (and can cancel the wait) while the mailbox is
searched.
"""

import asyncio
import email
import imaplib
import logging
import quopri
import re
from email.message import Message
from typing import List, Optional

from core.config import BotSettings

logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "Verify Your Email Address"

_KEY_PATTERN = re.compile(
    r"confirm\.php\?act=verify_email(?:&amp;|&)key=([A-Za-z0-9_\-]+)",
    re.IGNORECASE,
)


def extract_verification_link(body: str, base_url: str) -> Optional[str]:
    """Find the confirmation link in an email body.

    Quoted-printable soft line breaks and ``=3D`` escapes are undone
    before matching; the link is rebuilt from the key so HTML entity
    noise never leaks into the URL.

    Args:
        body: Raw or decoded message body.
        base_url: Site root, e.g. ``https://tronpick.io``.

    Returns:
        The confirmation URL, or ``None``.
    """
    text = body.replace("=\r\n", "").replace("=\n", "").replace("=3D", "=")
    match = _KEY_PATTERN.search(text)
    if not match:
        return None
    return (
        f"{base_url.rstrip('/')}/confirm.php"
        f"?act=verify_email&key={match.group(1)}"
    )


def _message_text(message: Message) -> str:
    parts: List[str] = []
    for part in message.walk():
        if part.get_content_maintype() != "text":
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            raw = part.get_payload()
            if isinstance(raw, str):
                payload = quopri.decodestring(raw.encode())
            else:
                continue
        charset = part.get_content_charset() or "utf-8"
        parts.append(payload.decode(charset, errors="replace"))
    return "\n".join(parts)


class VerificationMailbox:
    """Searches the configured inbox for the newest verification link."""

    def __init__(self, settings: BotSettings):
        self.settings = settings

    def _search_sync(self) -> Optional[str]:
        s = self.settings
        client = imaplib.IMAP4_SSL(
            s.imap_host, s.imap_port, timeout=s.action_timeout_seconds,
        )
        try:
            client.login(s.imap_user, s.imap_password)
            client.select(s.imap_folder)
            status, data = client.search(
                None, "SUBJECT", f'"{VERIFICATION_SUBJECT}"',
            )
            if status != "OK" or not data or not data[0]:
                logger.debug("[mailbox] No verification email yet")
                return None

            # Newest first
            for msg_id in reversed(data[0].split()):
                status, fetched = client.fetch(msg_id, "(RFC822)")
                if status != "OK" or not fetched or not fetched[0]:
                    continue
                message = email.message_from_bytes(fetched[0][1])
                link = extract_verification_link(
                    _message_text(message), s.base_url,
                )
                if link:
                    client.store(msg_id, "+FLAGS", "\\Seen")
                    return link
            return None
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug("[mailbox] Logout failed: %s", e)

    async def find_verification_link(self) -> Optional[str]:
        """Return the newest verification link in the mailbox, if any."""
        return await asyncio.to_thread(self._search_sync)

    async def wait_for_verification_link(
        self, timeout: float, interval: float,
    ) -> Optional[str]:
        """Poll until a link shows up or *timeout* seconds pass."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempt = 0
        while True:
            attempt += 1
            try:
                link = await self.find_verification_link()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.warning(f"[mailbox] Search attempt {attempt} failed: {e}")
                link = None
            if link:
                logger.info("[mailbox] ✅ Verification link found")
                return link
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(interval, remaining))
