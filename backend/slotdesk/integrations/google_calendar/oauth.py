"""Google Calendar OAuth 2.0 access-token refresh"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple

import aiohttp
from cryptography.fernet import Fernet, InvalidToken

from slotdesk.core.config import settings
from slotdesk.services.scheduling.errors import CalendarError

logger = logging.getLogger(__name__)

# Get encryption key from env (same as app secrets key)
ENCRYPTION_KEY = settings.google.encryption_key or Fernet.generate_key()
cipher_suite = Fernet(ENCRYPTION_KEY)

TOKEN_URL = "https://oauth2.googleapis.com/token"

# Refresh this many seconds before Google's stated expiry
EXPIRY_MARGIN_SECONDS = 60


class GoogleCalendarOAuth:
    """Exchange a business's stored refresh token for short-lived access tokens"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id or settings.google.client_id
        self.client_secret = client_secret or settings.google.client_secret
        self.timeout = timeout or settings.google.http_timeout_seconds

        if not all([self.client_id, self.client_secret]):
            logger.warning("Google Calendar OAuth credentials not configured")

    async def refresh_access_token(self, refresh_token: str) -> Tuple[str, int]:
        """
        Use refresh token to get new access token

        Args:
            refresh_token: Decrypted refresh token from initial auth

        Returns:
            Tuple of (new_access_token, expires_in_seconds)
        """
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(
                    TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.error(f"Token refresh failed: {error_text}")
                        raise CalendarError(f"Failed to refresh token: {resp.status}", status_code=resp.status)

                    data = await resp.json()
                    access_token = data.get("access_token")
                    expires_in = int(data.get("expires_in", 3600))

                    if not access_token:
                        raise CalendarError("No access token in response")

                    logger.info("Successfully refreshed access token")
                    return access_token, expires_in

        except CalendarError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Token refresh error: {e}")
            raise CalendarError(f"Token refresh error: {e}") from e

    def token_provider(self, encrypted_refresh_token: Optional[str]) -> Callable[[], Awaitable[str]]:
        """
        Build an async callable returning a valid access token

        The token is cached until shortly before it expires.
        """
        if not encrypted_refresh_token:
            raise CalendarError("Google Calendar is not connected for this business")
        refresh_token = self.decrypt_token(encrypted_refresh_token)
        cache: dict = {"token": None, "expires_at": 0.0}

        async def provide() -> str:
            if cache["token"] and time.monotonic() < cache["expires_at"]:
                return cache["token"]
            access_token, expires_in = await self.refresh_access_token(refresh_token)
            cache["token"] = access_token
            cache["expires_at"] = time.monotonic() + max(0, expires_in - EXPIRY_MARGIN_SECONDS)
            return access_token

        return provide

    @staticmethod
    def encrypt_token(token: str) -> str:
        """Encrypt refresh token for storage"""
        return cipher_suite.encrypt(token.encode()).decode()

    @staticmethod
    def decrypt_token(encrypted_token: str) -> str:
        """Decrypt stored refresh token"""
        try:
            return cipher_suite.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise CalendarError("Stored Google refresh token cannot be decrypted") from e


# Singleton instance
google_oauth = GoogleCalendarOAuth()
