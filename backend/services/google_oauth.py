"""
Google OAuth 2.0 Client

Authorization-code flow against Google's endpoints:
1. `authorization_url(state)` - where the browser is sent to consent
2. `exchange_code(code)` - trade the callback code for an access token
3. `fetch_profile(access_token)` - OpenID userinfo (sub, email, names, picture)

`fetch_identity(code)` chains 2 and 3 and returns a UserIdentity for the
reconciler.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from config import get_settings
from identity.models import UserIdentity

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPES = ("openid", "email", "profile")

DEFAULT_TIMEOUT = 10.0


class GoogleOAuthError(Exception):
    """The Google exchange failed; the login attempt must be rejected."""


class GoogleOAuthClient:
    """
    Stateless wrapper around the Google OAuth endpoints.

    An httpx.AsyncClient can be injected (tests use httpx.MockTransport);
    otherwise a short-lived client is opened per call.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http_client = http_client
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Google OAuth request to {url} failed: {e}")
            raise GoogleOAuthError(f"Google request failed: {e}") from e

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for Google's token response."""
        response = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            logger.warning(f"Google token exchange rejected: {response.status_code}")
            raise GoogleOAuthError(f"Token exchange failed with status {response.status_code}")

        payload = response.json()
        if not payload.get("access_token"):
            raise GoogleOAuthError("Token response did not include an access token")
        return payload

    async def fetch_profile(self, access_token: str) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code != 200:
            logger.warning(f"Google userinfo rejected: {response.status_code}")
            raise GoogleOAuthError(f"Profile request failed with status {response.status_code}")
        return response.json()

    async def fetch_identity(self, code: str) -> UserIdentity:
        tokens = await self.exchange_code(code)
        profile = await self.fetch_profile(tokens["access_token"])
        return UserIdentity.from_google_profile(profile)


def get_google_client() -> GoogleOAuthClient:
    """FastAPI dependency building the client from settings."""
    settings = get_settings()
    return GoogleOAuthClient(
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        redirect_uri=settings.GOOGLE_CALLBACK_URL,
    )
