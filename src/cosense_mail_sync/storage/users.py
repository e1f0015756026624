"""User profiles, per-user Cosense configuration and Gmail OAuth tokens."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from cosense_mail_sync.core.auth import refresh_access_token
from cosense_mail_sync.core.exceptions import CosenseMailSyncError
from cosense_mail_sync.core.models import User, UserConfig
from cosense_mail_sync.storage.crypto import TokenCipher
from cosense_mail_sync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"

# Refresh a little before the provider-reported expiry
EXPIRY_SKEW_SECONDS = 60


class UserStore:
    """Key layout:

    - ``user:<id>``: profile
    - ``google_id:<google id>``: user id
    - ``user_config:<id>``: Cosense project, encrypted session id, webhook
    - ``user_token:<id>``: encrypted access/refresh tokens and expiry
    """

    def __init__(
        self,
        kv: KeyValueStore,
        cipher: TokenCipher,
        *,
        client_id: str = "",
        client_secret: str = "",
        refresh: Callable[[str, str, str], tuple[str, datetime | None]] = refresh_access_token,
    ) -> None:
        self._kv = kv
        self._cipher = cipher
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh = refresh

    # ---------- profiles ----------

    def create_user(self, google_id: str, email: str, name: str = "", picture: str = "") -> User:
        user_id = int(time.time() * 1000)
        user = User(id=user_id, email=email, google_id=google_id, name=name, picture=picture)
        self._kv.set(
            f"{USER_PREFIX}{user_id}",
            {
                "id": user.id,
                "email": user.email,
                "googleId": user.google_id,
                "name": user.name,
                "picture": user.picture,
            },
        )
        self._kv.set(f"google_id:{google_id}", user_id)
        logger.info("Created user %s (%s)", user_id, email)
        return user

    def get_user(self, user_id: int) -> User | None:
        data = self._kv.get(f"{USER_PREFIX}{user_id}")
        if not data:
            return None
        return User(
            id=data["id"],
            email=data.get("email", ""),
            google_id=data.get("googleId", ""),
            name=data.get("name", ""),
            picture=data.get("picture", ""),
        )

    def get_user_by_google_id(self, google_id: str) -> User | None:
        user_id = self._kv.get(f"google_id:{google_id}")
        if user_id is None:
            return None
        return self.get_user(int(user_id))

    def list_user_ids(self) -> list[int]:
        """All user ids; keys with a non-numeric suffix are ignored."""
        user_ids = []
        for key in self._kv.keys(USER_PREFIX):
            suffix = key[len(USER_PREFIX):]
            if suffix.isdigit():
                user_ids.append(int(suffix))
        return user_ids

    # ---------- config ----------

    def get_user_config(self, user_id: int) -> UserConfig | None:
        data = self._kv.get(f"user_config:{user_id}")
        if not data or not data.get("cosenseProjectName") or not data.get("cosenseSessionId"):
            return None
        return UserConfig(
            cosense_project_name=data["cosenseProjectName"],
            cosense_session_id=self._cipher.decrypt(data["cosenseSessionId"]),
            notification_webhook_url=data.get("notificationWebhookUrl") or None,
        )

    def update_user_config(
        self,
        user_id: int,
        *,
        cosense_project_name: str | None = None,
        cosense_session_id: str | None = None,
        notification_webhook_url: str | None = None,
    ) -> UserConfig | None:
        """Merge the given fields into the stored config. None leaves a field untouched."""
        partial: dict[str, Any] = {}
        if cosense_project_name is not None:
            partial["cosenseProjectName"] = cosense_project_name
        if cosense_session_id is not None:
            partial["cosenseSessionId"] = self._cipher.encrypt(cosense_session_id)
        if notification_webhook_url is not None:
            partial["notificationWebhookUrl"] = notification_webhook_url

        self._kv.update(f"user_config:{user_id}", lambda current: {**(current or {}), **partial})
        return self.get_user_config(user_id)

    # ---------- tokens ----------

    def save_tokens(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        """Store tokens encrypted. A None refresh_token keeps the stored one."""

        def _merge(current: dict[str, Any] | None) -> dict[str, Any]:
            data = dict(current or {})
            data["accessToken"] = self._cipher.encrypt(access_token)
            if refresh_token is not None:
                data["refreshToken"] = self._cipher.encrypt(refresh_token)
            data["expiresAt"] = expires_at.timestamp() if expires_at else None
            return data

        self._kv.update(f"user_token:{user_id}", _merge)

    def get_valid_access_token(self, user_id: int) -> str | None:
        """Return a usable Gmail access token, refreshing it if expired.

        Fails closed: any missing data or refresh error yields None.
        """
        data = self._kv.get(f"user_token:{user_id}")
        if not data or not data.get("accessToken"):
            logger.warning("No Gmail token stored for user %s", user_id)
            return None

        try:
            expires_at = data.get("expiresAt")
            if expires_at is None or expires_at - EXPIRY_SKEW_SECONDS > time.time():
                return self._cipher.decrypt(data["accessToken"])

            if not data.get("refreshToken"):
                logger.warning("Gmail token expired and no refresh token for user %s", user_id)
                return None

            refresh_token = self._cipher.decrypt(data["refreshToken"])
            access_token, expiry = self._refresh(
                refresh_token, self._client_id, self._client_secret
            )
        except CosenseMailSyncError as e:
            logger.error("Cannot obtain Gmail token for user %s: %s", user_id, e)
            return None

        self.save_tokens(user_id, access_token, expires_at=expiry)
        logger.info("Refreshed Gmail token for user %s", user_id)
        return access_token
