"""cosense-mail-sync - Import labeled Gmail messages into Cosense pages."""

from cosense_mail_sync.core.models import (
    BatchResult,
    FormattedPage,
    ImportRecord,
    ImportResult,
    ImportStatus,
    MailMessage,
    SyncResult,
    UserConfig,
)
from cosense_mail_sync.pipeline.sync import SyncOrchestrator

__all__ = [
    "BatchResult",
    "FormattedPage",
    "ImportRecord",
    "ImportResult",
    "ImportStatus",
    "MailMessage",
    "SyncOrchestrator",
    "SyncResult",
    "UserConfig",
]
