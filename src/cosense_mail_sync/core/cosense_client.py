"""Cosense (Scrapbox) API client: page probes and the two-phase page import."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from cosense_mail_sync.core.exceptions import AuthError, DestinationError
from cosense_mail_sync.core.models import FormattedPage, ImportResult, ImportStatus

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://scrapbox.io"
SESSION_COOKIE = "connect.sid"


def _quote_title(title: str) -> str:
    # Matches encodeURIComponent: '/' and spaces must be escaped too
    return quote(title, safe="-_.!~*'()")


class CosenseClient:
    """Authenticated client for one Cosense project.

    The session credential is sent as the ``connect.sid`` cookie. Writes also
    need a CSRF token obtained from ``/api/users/me``.
    """

    def __init__(
        self,
        project_name: str,
        session_id: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._project = project_name
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._headers = {"cookie": f"{SESSION_COOKIE}={session_id}"}

    @property
    def project_name(self) -> str:
        return self._project

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> CosenseClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def page_url(self, title: str) -> str:
        """Public URL of a page in this project."""
        return f"{self._base_url}/{self._project}/{_quote_title(title)}"

    def _page_api_url(self, title: str) -> str:
        return f"{self._base_url}/api/pages/{self._project}/{_quote_title(title)}"

    # ---------- probes ----------

    def page_exists(self, title: str) -> bool:
        """Best-effort existence probe.

        404 means absent. Any other failure is logged and reported as absent
        rather than raised.
        """
        try:
            response = self._http.get(f"{self._page_api_url(title)}/text", headers=self._headers)
        except httpx.HTTPError as e:
            logger.error("Error checking page existence for %r: %s", title, e)
            return False

        if response.status_code == 200:
            return True
        if response.status_code != 404:
            logger.error(
                "Unexpected status %d checking page %r", response.status_code, title
            )
        return False

    def get_page(self, title: str) -> dict[str, Any] | None:
        """Fetch page detail JSON, or None if the page does not exist.

        Raises:
            DestinationError: On any non-404 failure.
        """
        try:
            response = self._http.get(self._page_api_url(title), headers=self._headers)
        except httpx.HTTPError as e:
            raise DestinationError(f"Failed to fetch page {title!r}: {e}") from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise DestinationError(
                f"Page check for {title!r} failed with status {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise DestinationError(f"Page check for {title!r} returned invalid JSON: {e}") from e

    def has_content(self, title: str) -> bool:
        """True if the page exists and its descriptions list is non-empty."""
        page = self.get_page(title)
        return bool(page and page.get("descriptions"))

    # ---------- two-phase import ----------

    def get_csrf_token(self) -> str:
        """Obtain a CSRF token for authenticated writes.

        Raises:
            AuthError: If the identity probe fails.
        """
        try:
            response = self._http.get(
                f"{self._base_url}/api/users/me",
                headers={**self._headers, "content-type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Failed to get CSRF token: {e}") from e

        if not response.is_success:
            raise AuthError(
                f"Failed to get CSRF token: {response.status_code} {response.reason_phrase}"
            )
        token = response.json().get("csrfToken")
        if not token:
            raise AuthError("Identity probe returned no csrfToken; session may be invalid")
        return token

    def stage_import(self, page: FormattedPage, csrf_token: str) -> ImportResult:
        """Upload a single-page import file. STAGED or STAGE_FAILED."""
        payload = json.dumps(page.to_import_payload(), ensure_ascii=False).encode("utf-8")
        url = f"{self._base_url}/api/page-data/import/{self._project}.json"
        try:
            response = self._http.post(
                url,
                headers={**self._headers, "X-CSRF-TOKEN": csrf_token},
                files={"import-file": ("import.json", payload, "application/json")},
            )
        except httpx.HTTPError as e:
            logger.error("Import request for %r failed: %s", page.title, e)
            return ImportResult(
                ImportStatus.STAGE_FAILED, page.title, error="Import request failed", details=str(e)
            )

        if not response.is_success:
            logger.error("Import failed for %r: %s", page.title, response.text)
            return ImportResult(
                ImportStatus.STAGE_FAILED,
                page.title,
                error=f"Import failed: {response.status_code} {response.reason_phrase}",
                details=response.text,
            )
        return ImportResult(ImportStatus.STAGED, page.title, details=response.text)

    def commit_import(self, title: str, csrf_token: str) -> ImportResult:
        """Finish a staged import. COMMITTED only if the API answers message == "success"."""
        url = f"{self._base_url}/api/page-data/import-finish/{self._project}.json"
        try:
            response = self._http.post(url, headers={**self._headers, "X-CSRF-TOKEN": csrf_token})
        except httpx.HTTPError as e:
            logger.error("Import finish request for %r failed: %s", title, e)
            return ImportResult(
                ImportStatus.COMMIT_FAILED,
                title,
                error="Import completed but finish step failed",
                details=str(e),
            )

        if not response.is_success:
            logger.error("Import finish failed for %r: %s", title, response.text)
            return ImportResult(
                ImportStatus.COMMIT_FAILED,
                title,
                error=(
                    "Import completed but finish step failed: "
                    f"{response.status_code} {response.reason_phrase}"
                ),
                details=response.text,
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text
        if not isinstance(body, dict) or body.get("message") != "success":
            logger.error("Unexpected finish response for %r: %s", title, body)
            return ImportResult(
                ImportStatus.COMMIT_FAILED,
                title,
                error="Import completed but finish step returned unexpected response",
                details=body,
            )
        return ImportResult(ImportStatus.COMMITTED, title, details=body)

    def import_page(self, page: FormattedPage) -> ImportResult:
        """Stage then commit. The commit is never attempted after a failed stage.

        Raises:
            AuthError: If no CSRF token can be obtained.
        """
        csrf_token = self.get_csrf_token()

        staged = self.stage_import(page, csrf_token)
        if staged.status is not ImportStatus.STAGED:
            return staged

        return self.commit_import(page.title, csrf_token)
