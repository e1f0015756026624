"""Gmail API service construction and OAuth token refresh."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource, build

from cosense_mail_sync.core.exceptions import AuthError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


def build_gmail_service(access_token: str) -> Resource:
    """Build a Gmail API service resource authorized by a bearer access token."""
    creds = Credentials(token=access_token)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def refresh_access_token(
    refresh_token: str,
    client_id: str,
    client_secret: str,
) -> tuple[str, datetime | None]:
    """Exchange a refresh token for a fresh access token.

    Returns:
        Tuple of (access_token, expiry as an aware UTC datetime or None).

    Raises:
        AuthError: If the refresh fails.
    """
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        scopes=SCOPES,
    )
    try:
        creds.refresh(Request())
    except Exception as e:
        raise AuthError(f"Token refresh failed: {e}") from e

    if not creds.token:
        raise AuthError("Token refresh returned no access token")

    # google-auth reports expiry as naive UTC
    expiry = creds.expiry.replace(tzinfo=UTC) if creds.expiry else None
    logger.debug("Refreshed access token (expires %s)", expiry)
    return creds.token, expiry
