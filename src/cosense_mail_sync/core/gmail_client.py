"""Gmail API client for candidate discovery and full message fetch."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from cosense_mail_sync.core.auth import build_gmail_service
from cosense_mail_sync.core.exceptions import AuthError, ProviderError, RateLimitError
from cosense_mail_sync.core.models import MailMessage
from cosense_mail_sync.core.parser import GmailParser

logger = logging.getLogger(__name__)


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API 429 rate limit."""
    if isinstance(exc, HttpError):
        return exc.status_code == 429 or "rateLimitExceeded" in str(exc.content)
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, HttpError) and exc.status_code == 404


class GmailClient:
    """Thin wrapper around the Gmail API for one authorized mailbox."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        parser: GmailParser | None = None,
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        inter_page_delay_seconds: float = 0.2,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._parser = parser or GmailParser()
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._num_retries = num_retries

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute a single API request with exponential backoff on 429 errors.

        Args:
            request: A googleapiclient HttpRequest object.
            context: Description for log messages (e.g. "list messages").

        Returns:
            The API response dict.

        Raises:
            RateLimitError: When retries are exhausted on 429 errors.
            HttpError: 404 responses are re-raised untouched for the caller.
            ProviderError: On any other API error.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if _is_not_found_error(e):
                    raise
                if _is_rate_limit_error(e):
                    if attempt >= self._max_retries:
                        raise RateLimitError(
                            f"Rate limited during {context} after "
                            f"{self._max_retries} retries: {e}"
                        ) from e
                    sleep_time = min(backoff, self._max_backoff)
                    jitter = random.uniform(0, sleep_time)
                    logger.warning(
                        "Rate limited during %s (attempt %d/%d), sleeping %.2fs",
                        context, attempt + 1, self._max_retries, jitter,
                    )
                    time.sleep(jitter)
                    backoff = min(backoff * 2, self._max_backoff)
                else:
                    raise ProviderError(f"Failed to {context}: {e}") from e

        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def list_candidate_ids(
        self,
        query: str,
        limit: int | None = None,
        max_results_per_page: int = 500,
    ) -> list[str]:
        """Collect message IDs matching a Gmail search query across pages.

        Pagination stops as soon as ``limit`` IDs are collected; the result is
        truncated to ``limit`` and remaining pages are never requested.

        Args:
            query: Gmail search query, e.g. "label:cosense".
            limit: Cap on returned IDs. None means exhaust pagination.
            max_results_per_page: Page size requested from the API (1-500).

        Returns:
            Message IDs in the order the API returned them.
        """
        collected: list[str] = []
        page_token: str | None = None

        while True:
            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "q": query,
                "maxResults": max_results_per_page,
            }
            if page_token:
                kwargs["pageToken"] = page_token

            request = self._service.users().messages().list(**kwargs)
            try:
                response = self._execute_with_retry(request, "list messages")
            except HttpError as e:
                raise ProviderError(f"Failed to list messages: {e}") from e

            ids = [msg["id"] for msg in response.get("messages", [])]
            collected.extend(ids)
            logger.info("Fetched %d message IDs, total so far: %d", len(ids), len(collected))

            if limit is not None and len(collected) >= limit:
                logger.info("Reached limit of %d message IDs", limit)
                return collected[:limit]

            page_token = response.get("nextPageToken")
            if not page_token:
                return collected

            if self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)

    def fetch_message(self, message_id: str) -> MailMessage | None:
        """Fetch and parse a full message.

        Returns:
            The parsed message, or None if Gmail reports no such message.

        Raises:
            ProviderError: On any other API failure.
        """
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        try:
            raw = self._execute_with_retry(request, f"fetch message {message_id}")
        except HttpError as e:
            logger.warning("Message %s not found: %s", message_id, e)
            return None

        if not raw:
            return None
        return self._parser.parse(raw)


class MessageSource:
    """Per-user Gmail access: resolves an access token, then delegates to GmailClient."""

    def __init__(
        self,
        get_valid_access_token: Callable[[int], str | None],
        *,
        query: str = "label:cosense",
        max_results_per_page: int = 500,
        service_factory: Callable[[str], Resource] = build_gmail_service,
        client_options: dict[str, Any] | None = None,
    ) -> None:
        self._get_valid_access_token = get_valid_access_token
        self._query = query
        self._max_results_per_page = max_results_per_page
        self._service_factory = service_factory
        self._client_options = client_options or {}
        self._clients: dict[int, GmailClient] = {}

    def client_for(self, user_id: int) -> GmailClient:
        """Return the user's GmailClient, building it on first use.

        The client is reused until release() so one token lookup and one
        service build serve a whole user pass.

        Raises:
            AuthError: If no valid access token is obtainable.
        """
        if user_id in self._clients:
            return self._clients[user_id]
        token = self._get_valid_access_token(user_id)
        if not token:
            raise AuthError(f"Failed to authenticate with Gmail for user {user_id}")
        client = GmailClient(self._service_factory(token), **self._client_options)
        self._clients[user_id] = client
        return client

    def release(self, user_id: int) -> None:
        """Forget the cached client so the next pass resolves a fresh token."""
        self._clients.pop(user_id, None)

    def list_candidate_ids(self, user_id: int, limit: int | None = None) -> list[str]:
        return self.client_for(user_id).list_candidate_ids(
            self._query, limit=limit, max_results_per_page=self._max_results_per_page
        )

    def fetch_message(self, user_id: int, message_id: str) -> MailMessage | None:
        return self.client_for(user_id).fetch_message(message_id)
