"""Sync orchestrator: reconcile → discover backlog → fetch → format → import → record."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from cosense_mail_sync.config.settings import SyncSettings
from cosense_mail_sync.core.cosense_client import CosenseClient
from cosense_mail_sync.core.exceptions import ConfigurationError, DestinationError
from cosense_mail_sync.core.formatter import PageFormatter
from cosense_mail_sync.core.gmail_client import MessageSource
from cosense_mail_sync.core.models import (
    BatchResult,
    FormattedPage,
    ImportResult,
    ImportStatus,
    SyncResult,
    UserConfig,
)
from cosense_mail_sync.core.notifier import (
    WebhookNotifier,
    format_batch_summary,
    format_failure_summary,
)
from cosense_mail_sync.storage.crypto import TokenCipher
from cosense_mail_sync.storage.kv_store import KeyValueStore
from cosense_mail_sync.storage.records import ImportRecordStore
from cosense_mail_sync.storage.users import UserStore

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    def list_user_ids(self) -> list[int]: ...

    def get_user_config(self, user_id: int) -> UserConfig | None: ...


class SyncOrchestrator:
    """Runs one sync pass over every user.

    Per user:
    1. Reconcile: drop import records whose Cosense page no longer exists.
    2. Backlog:   first ``batch_limit`` candidate ids minus recorded ids.
    3. Process:   fetch → format → precheck → stage + commit → record, one
                  message at a time with a fixed delay in between.

    A failing message never aborts its user; a failing user never aborts the
    batch. Only a failure to enumerate users fails the whole run.
    """

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        users: UserDirectory,
        records: ImportRecordStore,
        message_source: MessageSource,
        formatter: PageFormatter | None = None,
        notifier: WebhookNotifier | None = None,
        destination_factory: Callable[[UserConfig], CosenseClient] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._users = users
        self._records = records
        self._source = message_source
        self._formatter = formatter or PageFormatter(
            title_prefix=self._settings.page_title_prefix,
            footer_tag=self._settings.page_footer_tag,
            gmail_link_template=self._settings.gmail_link_template,
        )
        self._notifier = notifier
        self._destination_factory = destination_factory or self._default_destination
        self._sleep = sleep
        self._closeables: list[KeyValueStore | WebhookNotifier] = []

    @classmethod
    def from_settings(cls, settings: SyncSettings | None = None) -> SyncOrchestrator:
        """Wire the SQLite store, Gmail source, Cosense client and notifier."""
        settings = settings or SyncSettings()
        settings.ensure_directories()

        kv = KeyValueStore(settings.database_path)
        kv.connect()
        users = UserStore(
            kv,
            TokenCipher(settings.token_encryption_key),
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
        source = MessageSource(
            users.get_valid_access_token,
            query=settings.gmail_query,
            max_results_per_page=settings.max_results_per_page,
            client_options={
                "max_retries": settings.max_retries,
                "initial_backoff_seconds": settings.initial_backoff_seconds,
                "max_backoff_seconds": settings.max_backoff_seconds,
                "inter_page_delay_seconds": settings.inter_page_delay_seconds,
                "num_retries": settings.num_retries,
            },
        )
        notifier = WebhookNotifier(timeout=settings.http_timeout_seconds)

        orchestrator = cls(
            settings,
            users=users,
            records=ImportRecordStore(kv),
            message_source=source,
            notifier=notifier,
        )
        orchestrator._closeables.extend([kv, notifier])
        return orchestrator

    def close(self) -> None:
        """Release resources opened by from_settings()."""
        for resource in self._closeables:
            resource.close()
        self._closeables.clear()

    def _default_destination(self, config: UserConfig) -> CosenseClient:
        return CosenseClient(
            config.cosense_project_name,
            config.cosense_session_id,
            base_url=self._settings.cosense_base_url,
            timeout=self._settings.http_timeout_seconds,
        )

    # ---------- batch ----------

    def run_sync(self) -> BatchResult:
        """Sync every user once and send one summary notification.

        Returns:
            BatchResult with per-user results, or success=False if the user
            enumeration itself failed.
        """
        notification_target = self._settings.notification_webhook_url
        results: list[SyncResult] = []

        try:
            user_ids = self._users.list_user_ids()
            logger.info("Starting Gmail sync for %d users", len(user_ids))

            for user_id in user_ids:
                try:
                    config = self._require_config(user_id)
                    notification_target = notification_target or config.notification_webhook_url
                    result = self.sync_user(user_id, config)
                except Exception as e:
                    logger.exception("Error processing user %s", user_id)
                    result = SyncResult(user_id=user_id, error=str(e))
                results.append(result)

        except Exception as e:
            logger.exception("Batch processing error")
            self._send_notification(notification_target, format_failure_summary(e))
            return BatchResult(
                success=False,
                error="Failed to process batch Gmail sync",
                details=str(e),
            )

        batch = BatchResult(success=True, results=results, total_users=len(results))
        self._send_notification(notification_target, format_batch_summary(batch))
        return batch

    def _send_notification(self, target: str | None, message: str) -> None:
        if self._notifier is None or not target:
            return
        try:
            self._notifier.notify(target, message)
        except Exception as e:
            logger.error("Notification dispatch failed: %s", e)

    def _require_config(self, user_id: int) -> UserConfig:
        config = self._users.get_user_config(user_id)
        if config is None:
            raise ConfigurationError(f"Cosense configuration not found for user {user_id}")
        return config

    # ---------- per user ----------

    def sync_user(self, user_id: int, config: UserConfig | None = None) -> SyncResult:
        """Run reconciliation, backlog computation and import for one user.

        Raises:
            ConfigurationError: If the user has no Cosense configuration.
            AuthError: If Gmail credentials are unavailable.
            ProviderError: If candidate listing fails.
        """
        config = config or self._require_config(user_id)
        result = SyncResult(user_id=user_id)
        logger.info("Processing Gmail sync for user %s...", user_id)

        destination = self._destination_factory(config)
        try:
            result.deleted_stale_record_count = self.reconcile(user_id, destination)
            backlog = self.compute_backlog(user_id)

            if not backlog and result.deleted_stale_record_count == 0:
                logger.info("No new emails for user %s", user_id)
                result.message = "No new emails found"
                return result

            logger.info("Found %d new/re-processable emails for user %s", len(backlog), user_id)
            for message_id in backlog:
                self._process_message(user_id, message_id, destination, result)
        finally:
            destination.close()
            self._source.release(user_id)

        result.failed_count = result.processed_count - result.success_count
        result.message = (
            f"Processed {result.processed_count} emails, {result.success_count} successful, "
            f"{result.deleted_stale_record_count} deleted pages cleaned up"
        )
        return result

    def reconcile(self, user_id: int, destination: CosenseClient) -> int:
        """Remove records whose page is gone. Returns the number removed."""
        deleted = 0
        for message_id, record in self._records.list(user_id).items():
            if not destination.page_exists(record.page_title):
                logger.info(
                    "Page %r no longer exists, removing from records", record.page_title
                )
                self._records.remove(user_id, message_id)
                deleted += 1
            self._sleep(self._settings.reconcile_delay_seconds)

        if deleted:
            logger.info("Removed %d deleted pages from records for user %s", deleted, user_id)
        return deleted

    def compute_backlog(self, user_id: int) -> list[str]:
        """Candidate ids (capped at batch_limit) not yet recorded, in listing order."""
        candidates = self._source.list_candidate_ids(user_id, self._settings.batch_limit)
        saved = self._records.list(user_id)
        return [mid for mid in dict.fromkeys(candidates) if mid not in saved]

    def _process_message(
        self,
        user_id: int,
        message_id: str,
        destination: CosenseClient,
        result: SyncResult,
    ) -> None:
        try:
            message = self._source.fetch_message(user_id, message_id)
            if message is None:
                logger.warning("Could not retrieve content for email %s", message_id)
                return

            if not message.subject or not message.body:
                logger.error("Failed to import email %s: missing required fields", message_id)
            else:
                page = self._formatter.format(message)
                outcome = self.import_message(destination, page)
                if outcome.ok:
                    self._records.put(user_id, message_id, page.title)
                    result.success_count += 1
                    result.imported_pages.append(destination.page_url(page.title))
                    logger.info("Successfully imported email %s: %s", message_id, message.subject)
                else:
                    logger.error(
                        "Failed to import email %s (%s): %s %s",
                        message_id, outcome.status.value, outcome.error, outcome.details or "",
                    )
        except Exception as e:
            logger.error("Error processing email %s: %s", message_id, e)

        result.processed_count += 1
        self._sleep(self._settings.inter_message_delay_seconds)

    def import_message(self, destination: CosenseClient, page: FormattedPage) -> ImportResult:
        """Import a page unless it already exists with content.

        An existing but empty page is imported over. A failing content check
        does not block the import.
        """
        if destination.page_exists(page.title):
            try:
                populated = destination.has_content(page.title)
            except DestinationError as e:
                logger.error("Error checking page content for %r: %s", page.title, e)
                populated = False
            if populated:
                return ImportResult(
                    ImportStatus.ALREADY_EXISTS,
                    page.title,
                    error="Page already exists with content",
                )

        return destination.import_page(page)
