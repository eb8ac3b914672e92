"""
Scheduled entry point. Run once per trigger (cron ``* * * * *``), or with
``--loop`` to keep the process warm and reuse the cached access token.
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

import httpx

from config import Settings, settings
from core.credentials import CredentialProvider, MemoryTokenCache, TokenCache, load_service_account
from core.errors import NotifierError
from core.firestore import FirestoreClient
from core.redis_client import RedisTokenCache, create_redis_client
from models.schemas import RunSummary
from services.notifier import NotificationWorker
from services.whatsapp import WhatsAppClient

logger = logging.getLogger(__name__)

# Process-wide so warm invocations skip the token exchange
_token_cache: Optional[TokenCache] = None

def token_cache_for(config: Settings, account_email: str) -> TokenCache:
    global _token_cache
    if _token_cache is None:
        margin = timedelta(seconds=config.token_refresh_margin_seconds)
        if config.redis_url:
            _token_cache = RedisTokenCache(create_redis_client(config.redis_url), account_email, margin)
        else:
            _token_cache = MemoryTokenCache(margin)
    return _token_cache

async def run_scheduled(config: Settings = settings, client: Optional[httpx.AsyncClient] = None,
                        cache: Optional[TokenCache] = None) -> RunSummary:
    """One invocation. Run-fatal errors are logged and reported as an aborted summary."""
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    try:
        account = load_service_account(config)
        credentials = CredentialProvider(account, cache or token_cache_for(config, account.client_email), client)
        store = FirestoreClient(account.project_id, credentials, client)
        whatsapp = WhatsAppClient(config.twilio_account_sid or "", config.twilio_auth_token or "", client)
        worker = NotificationWorker(config, credentials, store, whatsapp)
        return await worker.run()
    except NotifierError as e:
        logger.error(f"Notification run aborted: {e}")
        return RunSummary(aborted=True, errors=[str(e)])
    finally:
        if own_client:
            await client.aclose()

async def run_forever(config: Settings = settings):
    while True:
        try:
            await run_scheduled(config)
        except Exception:
            logger.exception("Notification run crashed")
        await asyncio.sleep(config.schedule_interval_seconds)

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send WhatsApp alerts for new and cancelled orders")
    parser.add_argument("--loop", action="store_true", help="keep running every SCHEDULE_INTERVAL_SECONDS")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    if args.loop:
        asyncio.run(run_forever())
        return 0
    summary = asyncio.run(run_scheduled())
    return 1 if summary.aborted else 0

if __name__ == "__main__":
    sys.exit(main())
