import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from core.credentials import (
    DATASTORE_SCOPE, TOKEN_URL, CachedToken, CredentialProvider, MemoryTokenCache,
    ServiceAccount, load_service_account,
)
from core.errors import AuthError

from fake_services import FakeBackend, make_settings

EMAIL = "worker@demo-project.iam.gserviceaccount.com"


@pytest.fixture(scope="module")
def private_key_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


class TestLoadServiceAccount:
    def test_raw_fields_with_escaped_newlines(self):
        settings = make_settings(firebase_private_key="-----BEGIN-----\\nabc\\n-----END-----")
        account = load_service_account(settings)
        assert account.client_email == EMAIL
        assert account.private_key == "-----BEGIN-----\nabc\n-----END-----"
        assert account.project_id == "demo-project"

    def test_base64_bundle(self):
        bundle = {"client_email": "a@b.iam", "private_key": "KEY", "project_id": "bundle-project",
                  "private_key_id": "kid-1"}
        encoded = base64.b64encode(json.dumps(bundle).encode()).decode()
        settings = make_settings(firebase_service_account_b64=encoded, firebase_project_id=None)
        account = load_service_account(settings)
        assert account.client_email == "a@b.iam"
        assert account.project_id == "bundle-project"
        assert account.private_key_id == "kid-1"

    def test_project_override_wins_over_bundle(self):
        bundle = {"client_email": "a@b.iam", "private_key": "KEY", "project_id": "bundle-project"}
        encoded = base64.b64encode(json.dumps(bundle).encode()).decode()
        settings = make_settings(firebase_service_account_b64=encoded, firebase_project_id="override")
        assert load_service_account(settings).project_id == "override"

    def test_garbage_bundle(self):
        with pytest.raises(AuthError):
            load_service_account(make_settings(firebase_service_account_b64="%%%not-base64"))

    def test_missing_credentials(self):
        settings = make_settings(firebase_client_email=None, firebase_private_key=None)
        with pytest.raises(AuthError):
            load_service_account(settings)

    def test_missing_project(self):
        with pytest.raises(AuthError):
            load_service_account(make_settings(firebase_project_id=None))


class TestMemoryTokenCache:
    async def test_empty_cache_is_invalid(self):
        assert not await MemoryTokenCache().is_valid()

    async def test_token_inside_refresh_margin_is_invalid(self):
        now = datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc)
        cache = MemoryTokenCache(refresh_margin=timedelta(minutes=5))
        await cache.set(CachedToken(access_token="t", expires_at=now + timedelta(minutes=4)))
        assert not await cache.is_valid(now)
        assert await cache.is_valid(now - timedelta(minutes=2))


class TestCredentialProvider:
    def make_provider(self, private_key_pem, backend, cache=None, clock=None):
        account = ServiceAccount(client_email=EMAIL, private_key=private_key_pem, project_id="demo-project")
        kwargs = {"clock": clock} if clock else {}
        return CredentialProvider(account, cache or MemoryTokenCache(), backend.client(), **kwargs)

    async def test_exchanges_signed_assertion(self, private_key_pem):
        backend = FakeBackend()
        provider = self.make_provider(private_key_pem, backend)
        assert await provider.get_access_token() == "token-1"

        form = backend.token_requests[0]
        assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:jwt-bearer"]
        claims = jwt.get_unverified_claims(form["assertion"][0])
        assert claims["iss"] == EMAIL
        assert claims["aud"] == TOKEN_URL
        assert claims["scope"] == DATASTORE_SCOPE
        assert claims["exp"] - claims["iat"] == 3600

    async def test_token_reused_while_valid(self, private_key_pem):
        backend = FakeBackend()
        provider = self.make_provider(private_key_pem, backend)
        await provider.get_access_token()
        assert await provider.get_access_token() == "token-1"
        assert len(backend.token_requests) == 1

    async def test_refreshes_five_minutes_before_expiry(self, private_key_pem):
        backend = FakeBackend()
        now = [1_800_000_000.0]
        provider = self.make_provider(private_key_pem, backend, clock=lambda: now[0])
        await provider.get_access_token()
        now[0] += 3600 - 299
        assert await provider.get_access_token() == "token-2"
        assert len(backend.token_requests) == 2

    async def test_rejected_exchange_caches_nothing(self, private_key_pem):
        backend = FakeBackend()
        backend.token_status = 400
        cache = MemoryTokenCache()
        provider = self.make_provider(private_key_pem, backend, cache=cache)
        with pytest.raises(AuthError):
            await provider.get_access_token()
        assert await cache.get() is None

    async def test_bad_private_key(self):
        backend = FakeBackend()
        provider = self.make_provider("not a pem key", backend)
        with pytest.raises(AuthError):
            await provider.get_access_token()
        assert backend.token_requests == []
