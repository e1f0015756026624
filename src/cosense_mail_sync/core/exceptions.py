"""Custom exceptions for cosense-mail-sync."""


class CosenseMailSyncError(Exception):
    """Base exception for all cosense-mail-sync errors."""


class AuthError(CosenseMailSyncError):
    """No valid credential for Gmail or Cosense."""


class ProviderError(CosenseMailSyncError):
    """Gmail API list or fetch failure."""


class RateLimitError(ProviderError):
    """Gmail API rate limit exceeded."""


class ParseError(CosenseMailSyncError):
    """Failed to parse Gmail message structure."""


class DestinationError(CosenseMailSyncError):
    """Unexpected response from the Cosense API."""


class ConfigurationError(CosenseMailSyncError):
    """A user has no usable Cosense configuration."""
