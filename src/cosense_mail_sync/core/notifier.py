"""Best-effort webhook notifications (Discord-compatible ``{"content": ...}`` payload)."""

from __future__ import annotations

import logging

import httpx

from cosense_mail_sync.core.models import BatchResult

logger = logging.getLogger(__name__)


def format_batch_summary(batch: BatchResult) -> str:
    """Summary text for a completed run, listing every user and imported page."""
    user_lines = [
        f"User {r.user_id}: {r.message or r.error or 'Processing completed'}" for r in batch.results
    ]
    pages = [url for r in batch.results for url in r.imported_pages]

    message = (
        "Gmail sync completed successfully!\n\n"
        "Results:\n" + "\n".join(user_lines) + "\n\n"
        f"Total users processed: {batch.total_users}\n"
    )
    if pages:
        message += "\nImported Pages:\n" + "\n".join(pages)
    return message


def format_failure_summary(error: BaseException | str) -> str:
    return f"❌ Gmail sync Failed!\n\nError: {error}"


class WebhookNotifier:
    """Posts a text message to a webhook URL. Never raises."""

    def __init__(self, http_client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def notify(self, webhook_url: str | None, message: str) -> bool:
        """Send message; returns True on a 2xx response.

        A missing URL, transport error or non-2xx response is logged and
        reported as False.
        """
        if not webhook_url:
            return False

        try:
            response = self._http.post(webhook_url, json={"content": message})
        except httpx.HTTPError as e:
            logger.error("Failed to send notification: %s", e)
            return False

        if not response.is_success:
            logger.error("Notification webhook failed with status: %d", response.status_code)
            return False
        return True
