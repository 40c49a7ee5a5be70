import imaplib
from email.message import EmailMessage
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.mailbox import (
    VERIFICATION_SUBJECT,
    VerificationMailbox,
    _message_text,
    extract_verification_link,
)
from conftest import make_settings

BASE = "https://tronpick.io"
LINK = f"{BASE}/confirm.php?act=verify_email&key=a1B2-c3_d4"


class TestExtractVerificationLink:
    def test_plain_link(self):
        body = f"Click {LINK} to verify"
        assert extract_verification_link(body, BASE) == LINK

    def test_html_entity_ampersand(self):
        body = '<a href="https://tronpick.io/confirm.php?act=verify_email&amp;key=a1B2-c3_d4">Verify</a>'
        assert extract_verification_link(body, BASE) == LINK

    def test_quoted_printable_soft_breaks(self):
        body = (
            '<a href=3D"https://tronpick.io/confirm.php?act=3Dverify_em=\r\n'
            'ail&key=3Da1B2-c3_d4">'
        )
        assert extract_verification_link(body, BASE) == LINK

    def test_rebuilds_on_configured_base(self):
        body = "https://tronpick.io/confirm.php?act=verify_email&key=xyz"
        assert extract_verification_link(body, "https://mirror.test/") == (
            "https://mirror.test/confirm.php?act=verify_email&key=xyz"
        )

    def test_no_link(self):
        assert extract_verification_link("Welcome to TronPick!", BASE) is None


def test_message_text_reads_all_text_parts():
    message = EmailMessage()
    message["Subject"] = VERIFICATION_SUBJECT
    message.set_content("plain part")
    message.add_alternative("<p>html part</p>", subtype="html")
    text = _message_text(message)
    assert "plain part" in text
    assert "html part" in text


class TestVerificationMailbox:
    def test_search_marks_message_seen(self):
        message = EmailMessage()
        message["Subject"] = VERIFICATION_SUBJECT
        message.set_content(f"Verify here: {LINK}")

        client = MagicMock()
        client.search.return_value = ("OK", [b"1 2"])
        client.fetch.return_value = ("OK", [(b"2 (RFC822)", message.as_bytes())])

        mailbox = VerificationMailbox(make_settings())
        with patch("core.mailbox.imaplib.IMAP4_SSL", return_value=client) as ssl:
            assert mailbox._search_sync() == LINK

        ssl.assert_called_once_with("imap.example.com", 993, timeout=2)
        client.login.assert_called_once_with("bot@example.com", "secret")
        client.fetch.assert_called_once_with(b"2", "(RFC822)")
        client.store.assert_called_once_with(b"2", "+FLAGS", "\\Seen")
        client.logout.assert_called_once()

    def test_search_without_results(self):
        client = MagicMock()
        client.search.return_value = ("OK", [b""])
        mailbox = VerificationMailbox(make_settings())
        with patch("core.mailbox.imaplib.IMAP4_SSL", return_value=client):
            assert mailbox._search_sync() is None
        client.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_wait_polls_until_link_arrives(self):
        mailbox = VerificationMailbox(make_settings())
        mailbox.find_verification_link = AsyncMock(
            side_effect=[None, imaplib.IMAP4.error("busy"), LINK],
        )
        link = await mailbox.wait_for_verification_link(timeout=5, interval=0)
        assert link == LINK
        assert mailbox.find_verification_link.await_count == 3

    @pytest.mark.asyncio
    async def test_wait_gives_up_after_timeout(self):
        mailbox = VerificationMailbox(make_settings())
        mailbox.find_verification_link = AsyncMock(return_value=None)
        assert await mailbox.wait_for_verification_link(timeout=0, interval=0) is None
        assert mailbox.find_verification_link.await_count == 1
