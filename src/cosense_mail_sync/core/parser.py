"""Gmail message parser: MIME tree walking, base64url decoding, header extraction."""

from __future__ import annotations

import base64
import logging
from typing import Any

import trafilatura

from cosense_mail_sync.core.exceptions import ParseError
from cosense_mail_sync.core.models import MailMessage

logger = logging.getLogger(__name__)


def html_to_text(html: str) -> str:
    """Convert an HTML body to plain text.

    trafilatura's extractor is tuned for articles and returns None for
    short or layout-heavy mails, in which case every text node is kept.
    """
    result: str | None = None
    try:
        result = trafilatura.extract(
            html,
            output_format="txt",
            favor_recall=True,
            include_links=True,
            include_tables=True,
        )
    except Exception as e:
        logger.warning("Trafilatura extraction failed: %s", e)

    if not result:
        result = trafilatura.html2txt(html) or ""
    return result


class GmailParser:
    """Parses raw Gmail API message dicts into MailMessage objects."""

    def parse(self, raw_message: dict[str, Any]) -> MailMessage:
        """Parse a raw Gmail API message dict (format=full) into a MailMessage.

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            message_id = raw_message["id"]
            payload = raw_message.get("payload") or {}
            headers = payload.get("headers") or []

            return MailMessage(
                id=message_id,
                thread_id=raw_message.get("threadId", ""),
                subject=self._header(headers, "Subject") or "",
                body=self._extract_body(payload),
                sender=self._header(headers, "From") or "",
                to=self._header(headers, "To") or "",
                date=self._header(headers, "Date") or "",
                return_path=self._header(headers, "Return-Path"),
                rfc_message_id=self._header(headers, "Message-ID"),
                reply_to=self._header(headers, "Reply-To"),
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse message {raw_message.get('id', '?')}: {e}") from e

    @staticmethod
    def _header(headers: list[dict[str, str]], name: str) -> str | None:
        """Return the first header value with exactly this name, or None."""
        for h in headers:
            if h.get("name") == name:
                return h.get("value", "")
        return None

    def _extract_body(self, payload: dict[str, Any]) -> str:
        """Prefer text/plain, then text/html converted to text, then the inline body."""
        if payload.get("parts"):
            plain_text = self._find_part(payload, "text/plain")
            if plain_text is not None:
                return plain_text
            html = self._find_part(payload, "text/html")
            if html is not None:
                return html_to_text(html)

        body_data = (payload.get("body") or {}).get("data")
        if body_data:
            decoded = self._decode_body(body_data)
            if payload.get("mimeType") == "text/html":
                return html_to_text(decoded)
            return decoded

        return ""

    def _find_part(self, part: dict[str, Any], mime_type: str) -> str | None:
        """Depth-first search for the first non-attachment part of the given type."""
        for sub_part in part.get("parts") or []:
            # Skip attachments
            if sub_part.get("filename"):
                continue

            if sub_part.get("mimeType") == mime_type:
                data = (sub_part.get("body") or {}).get("data")
                if data:
                    return self._decode_body(data)
            elif sub_part.get("parts"):
                found = self._find_part(sub_part, mime_type)
                if found is not None:
                    return found

        return None

    @staticmethod
    def _decode_body(data: str) -> str:
        """Decode base64url-encoded body data from the Gmail API."""
        # Gmail uses base64url encoding (RFC 4648 §5)
        padded = data + "=" * (4 - len(data) % 4) if len(data) % 4 else data
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
