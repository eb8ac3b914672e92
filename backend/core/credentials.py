"""
Service-account credentials and the access-token cache.

The access token is obtained with the OAuth2 JWT-bearer grant: an RS256
assertion signed with the service account's private key is exchanged at the
Google token endpoint for a bearer token valid for about an hour.
"""

import base64
import binascii
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import httpx
from jose import jwt
from jose.exceptions import JOSEError
from pydantic import BaseModel

from config import Settings
from core.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
DATASTORE_SCOPE = "https://www.googleapis.com/auth/datastore"
ASSERTION_LIFETIME = 3600

class ServiceAccount(BaseModel):
    client_email: str
    private_key: str
    project_id: str
    private_key_id: Optional[str] = None

class CachedToken(BaseModel):
    access_token: str
    expires_at: datetime

    def is_valid(self, now: datetime, margin: timedelta) -> bool:
        return self.expires_at - margin > now

class TokenCache(Protocol):
    async def get(self) -> Optional[CachedToken]: ...
    async def set(self, token: CachedToken) -> None: ...
    async def is_valid(self, now: Optional[datetime] = None) -> bool: ...

class MemoryTokenCache:
    """Process-local cache; survives across invocations while the process is warm"""

    def __init__(self, refresh_margin: timedelta = timedelta(minutes=5)):
        self.refresh_margin = refresh_margin
        self._token: Optional[CachedToken] = None

    async def get(self) -> Optional[CachedToken]:
        return self._token

    async def set(self, token: CachedToken) -> None:
        self._token = token

    async def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self._token is not None and self._token.is_valid(now, self.refresh_margin)

def load_service_account(settings: Settings) -> ServiceAccount:
    """Read the service account from the base64 bundle or the raw key fields"""
    if settings.firebase_service_account_b64:
        try:
            raw = base64.b64decode(settings.firebase_service_account_b64.strip(), validate=False)
            bundle = json.loads(raw)
        except (binascii.Error, ValueError) as e:
            raise AuthError(f"Service account bundle is not valid base64 JSON: {e}")
        if not isinstance(bundle, dict):
            raise AuthError("Service account bundle must be a JSON object")
        email = bundle.get("client_email")
        key = bundle.get("private_key")
        project = settings.firebase_project_id or bundle.get("project_id")
        key_id = bundle.get("private_key_id")
    else:
        email = settings.firebase_client_email
        key = settings.firebase_private_key
        project = settings.firebase_project_id
        key_id = None

    if not email or not key:
        raise AuthError("Service account credentials are not configured")
    if not project:
        raise AuthError("Firebase project id is not configured")
    # Env files usually carry the PEM with escaped newlines
    key = key.replace("\\n", "\n")
    return ServiceAccount(client_email=email, private_key=key, project_id=project, private_key_id=key_id)

class CredentialProvider:
    def __init__(self, account: ServiceAccount, cache: TokenCache, client: httpx.AsyncClient,
                 token_url: str = TOKEN_URL, clock=time.time):
        self.account = account
        self.cache = cache
        self.client = client
        self.token_url = token_url
        self.clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def build_assertion(self) -> str:
        issued = int(self.clock())
        claims = {
            "iss": self.account.client_email,
            "sub": self.account.client_email,
            "aud": self.token_url,
            "scope": DATASTORE_SCOPE,
            "iat": issued,
            "exp": issued + ASSERTION_LIFETIME,
        }
        headers = {"kid": self.account.private_key_id} if self.account.private_key_id else None
        try:
            return jwt.encode(claims, self.account.private_key, algorithm="RS256", headers=headers)
        except (JOSEError, ValueError, TypeError) as e:
            raise AuthError(f"Could not sign token assertion: {e}")

    async def get_access_token(self) -> str:
        """Return a bearer token, refreshing when fewer than the margin remains"""
        now = self._now()
        if await self.cache.is_valid(now):
            cached = await self.cache.get()
            if cached is not None:
                return cached.access_token

        assertion = self.build_assertion()
        try:
            response = await self.client.post(self.token_url, data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": assertion,
            })
        except httpx.HTTPError as e:
            raise AuthError(f"Token exchange failed: {e}")

        if response.status_code // 100 != 2:
            raise AuthError(f"Token exchange rejected ({response.status_code}): {response.text[:200]}")
        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", ASSERTION_LIFETIME))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"Malformed token response: {e}")

        cached = CachedToken(access_token=token, expires_at=now + timedelta(seconds=expires_in))
        await self.cache.set(cached)
        logger.info(f"Access token refreshed, expires at {cached.expires_at.isoformat()}")
        return token
