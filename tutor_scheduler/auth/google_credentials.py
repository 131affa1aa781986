"""Access tokens for the Google Calendar API.

Two modes are supported: an OAuth refresh token issued to the business
account, or a service-account key whose signed assertion is exchanged for a
token. Tokens are cached until shortly before they expire.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import jwt

from tutor_scheduler.core import config

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
REFRESH_MARGIN = timedelta(minutes=5)


class GoogleAuthError(Exception):
    """The token endpoint refused or could not be reached."""


class GoogleCredentials:
    def __init__(self, token_url: str = GOOGLE_TOKEN_URL):
        self.token_url = token_url
        self._access_token: str | None = None
        self._expires_at = datetime.min.replace(tzinfo=timezone.utc)
        self._lock = asyncio.Lock()

    def _token_request_data(self) -> dict:
        raise NotImplementedError

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        async with self._lock:
            if self._access_token and self._expires_at > datetime.now(timezone.utc) + REFRESH_MARGIN:
                return self._access_token

            logger.info("Requesting a new Google access token.")
            try:
                response = await client.post(self.token_url, data=self._token_request_data())
            except httpx.HTTPError as exc:
                raise GoogleAuthError(f"Token request failed: {exc}") from exc

            if response.status_code != 200:
                raise GoogleAuthError(f"Token refresh failed with status {response.status_code}: {response.text}")

            tokens = response.json()
            access_token = tokens.get("access_token")
            if not access_token:
                raise GoogleAuthError("No access token in token response.")

            self._access_token = access_token
            self._expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 3600)))
            return access_token


class RefreshTokenCredentials(GoogleCredentials):
    def __init__(self, client_id: str, client_secret: str, refresh_token: str, token_url: str = GOOGLE_TOKEN_URL):
        super().__init__(token_url)
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token

    def _token_request_data(self) -> dict:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        }


class ServiceAccountCredentials(GoogleCredentials):
    def __init__(self, info: dict, scopes: list[str] | None = None):
        super().__init__(info.get("token_uri", GOOGLE_TOKEN_URL))
        self.client_email = info["client_email"]
        self.private_key = info["private_key"]
        self.private_key_id = info.get("private_key_id")
        self.scopes = scopes or [CALENDAR_SCOPE]

    def build_assertion(self) -> str:
        issued_at = datetime.now(timezone.utc)
        payload = {
            "iss": self.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.token_url,
            "iat": issued_at,
            "exp": issued_at + timedelta(hours=1),
        }
        headers = {"kid": self.private_key_id} if self.private_key_id else None
        return jwt.encode(payload, self.private_key, algorithm="RS256", headers=headers)

    def _token_request_data(self) -> dict:
        return {"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()}


def load_credentials() -> GoogleCredentials:
    if config.GOOGLE_REFRESH_TOKEN:
        return RefreshTokenCredentials(
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            refresh_token=config.GOOGLE_REFRESH_TOKEN,
        )

    if config.GOOGLE_SERVICE_ACCOUNT_KEY:
        return ServiceAccountCredentials(json.loads(config.GOOGLE_SERVICE_ACCOUNT_KEY))

    raise GoogleAuthError("No authentication method available: set GOOGLE_REFRESH_TOKEN or GOOGLE_SERVICE_ACCOUNT_KEY.")
