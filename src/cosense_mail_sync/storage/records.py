"""Per-user mapping of Gmail message id to the Cosense page it was imported as."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from cosense_mail_sync.core.models import ImportRecord
from cosense_mail_sync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


def _records_key(user_id: int) -> str:
    return f"saved_emails:{user_id}"


class ImportRecordStore:
    """Import records stored as one JSON object per user.

    Every write is a read-modify-write through KeyValueStore.update, so two
    writes for the same user never lose each other's change.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def list(self, user_id: int) -> dict[str, ImportRecord]:
        raw: dict[str, Any] = self._kv.get(_records_key(user_id)) or {}
        return {message_id: ImportRecord.from_dict(data) for message_id, data in raw.items()}

    def put(self, user_id: int, message_id: str, page_title: str) -> ImportRecord:
        record = ImportRecord(page_title=page_title, imported_at=datetime.now(UTC))

        def _add(current: dict[str, Any] | None) -> dict[str, Any]:
            records = dict(current or {})
            records[message_id] = record.to_dict()
            return records

        self._kv.update(_records_key(user_id), _add)
        logger.debug("Recorded %s -> %r for user %s", message_id, page_title, user_id)
        return record

    def remove(self, user_id: int, message_id: str) -> bool:
        """Remove a record. Returns True if one existed."""
        removed = False

        def _drop(current: dict[str, Any] | None) -> dict[str, Any]:
            nonlocal removed
            records = dict(current or {})
            removed = records.pop(message_id, None) is not None
            return records

        self._kv.update(_records_key(user_id), _drop)
        return removed
