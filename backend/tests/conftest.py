import pytest

from core.credentials import CredentialProvider, MemoryTokenCache, ServiceAccount
from core.firestore import FirestoreClient
from services.notifier import NotificationWorker
from services.whatsapp import WhatsAppClient
from utils.pacing import Pacer

from fake_services import PROJECT, FakeBackend, FakeClock, make_settings, warm_cache_token

BRANCH_PATH = "merchants/m1/branches/b1"


@pytest.fixture
def backend():
    fake = FakeBackend()
    fake.put(f"{BRANCH_PATH}/config/notifications",
             {"enabled": True, "destinationAddress": "+973 3600 0001"})
    return fake


@pytest.fixture
async def http(backend):
    client = backend.client()
    yield client
    await client.aclose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def warm_cache():
    cache = MemoryTokenCache()
    await cache.set(warm_cache_token())
    return cache


@pytest.fixture
def account():
    return ServiceAccount(client_email="worker@demo-project.iam.gserviceaccount.com",
                          private_key="unused", project_id=PROJECT)


@pytest.fixture
def store(account, warm_cache, http):
    return FirestoreClient(PROJECT, CredentialProvider(account, warm_cache, http), http)


@pytest.fixture
def make_worker(account, warm_cache, http, clock):
    def factory(**overrides) -> NotificationWorker:
        settings = make_settings(**overrides)
        credentials = CredentialProvider(account, warm_cache, http)
        store = FirestoreClient(PROJECT, credentials, http)
        whatsapp = WhatsAppClient(settings.twilio_account_sid, settings.twilio_auth_token, http)
        pacer = Pacer(settings.send_delay_seconds, clock=clock, sleep=clock.sleep)
        return NotificationWorker(settings, credentials, store, whatsapp, pacer=pacer)
    return factory
