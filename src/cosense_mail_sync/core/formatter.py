"""Convert a MailMessage into Cosense page lines with a metadata code block."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from cosense_mail_sync.core.models import FormattedPage, MailMessage

logger = logging.getLogger(__name__)

DEFAULT_TITLE_PREFIX = "(📮Email) | "
DEFAULT_FOOTER_TAG = "#Eメールからの自動インポート"
DEFAULT_GMAIL_LINK_TEMPLATE = "https://mail.google.com/mail/u/0/#inbox/{message_id}"

_BRACKET_RE = re.compile(r"\[([^\]]*)\]")
_DOMAIN_RE = re.compile(r"@([^>]+)")


def escape_brackets(text: str) -> str:
    """Wrap each ``[...]`` span in inline code so Cosense shows it literally.

    ``see [this link]`` becomes ``see `[`this link`]` `` which renders as the
    original bracket text instead of a page link.
    """
    return _BRACKET_RE.sub(r"`[`\1`]`", text)


def format_date(raw: str) -> str:
    """Reformat a mail date to ``YYYY/MM/DD HH:MM`` in local time.

    Accepts RFC 2822 (the Date header) and ISO 8601. Anything unparseable is
    returned unchanged.
    """
    parsed = _parse_date(raw)
    if parsed is None:
        return raw
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime("%Y/%m/%d %H:%M")


def _parse_date(raw: str) -> datetime | None:
    if not raw or not raw.strip():
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        pass
    else:
        # "-0000" parses to a naive datetime but still means UTC
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    try:
        return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable date kept verbatim: %s", raw)
        return None


def sender_domain(return_path: str) -> str:
    """Extract the domain after ``@`` up to ``>``; the raw value if there is no ``@``."""
    match = _DOMAIN_RE.search(return_path)
    return match.group(1) if match else return_path


def split_lines(text: str) -> list[str]:
    """Normalize CRLF to LF and split into lines."""
    return text.replace("\r\n", "\n").split("\n")


class PageFormatter:
    """Build the Cosense page for a mail. Pure, no I/O."""

    def __init__(
        self,
        title_prefix: str = DEFAULT_TITLE_PREFIX,
        footer_tag: str = DEFAULT_FOOTER_TAG,
        gmail_link_template: str = DEFAULT_GMAIL_LINK_TEMPLATE,
    ) -> None:
        self._title_prefix = title_prefix
        self._footer_tag = footer_tag
        self._gmail_link_template = gmail_link_template

    def title_for(self, message: MailMessage) -> str:
        return f"{self._title_prefix}{message.subject}"

    def format(self, message: MailMessage) -> FormattedPage:
        """Lay out title, metadata, escaped body and footer tag."""
        title = self.title_for(message)
        body_lines = split_lines(escape_brackets(message.body))

        lines = [
            title,
            "",
            *self._metadata_lines(message),
            *body_lines,
            "",
            self._footer_tag,
        ]
        return FormattedPage(title=title, lines=tuple(lines))

    def _metadata_lines(self, message: MailMessage) -> list[str]:
        link = self._gmail_link_template.format(message_id=message.id)
        lines = [
            f"[📧 Gmailで開く {link}]",
            "",
            "code:metadata.md",
            f" From:    {message.sender}",
            f" To:      {message.to}",
            f" 日付:    {format_date(message.date)}",
            f" 件名:    {message.subject}",
        ]
        if message.return_path:
            lines.append(f" 送信元:  {sender_domain(message.return_path)}")
        if message.reply_to and message.reply_to != message.sender:
            lines.append(f" 返信先:  {message.reply_to}")
        if message.rfc_message_id:
            lines.append(f" Message-ID: {message.rfc_message_id}")
        lines.append("")
        return lines
