import logging
import redis.asyncio as redis
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.credentials import CachedToken

logger = logging.getLogger(__name__)

def create_redis_client(redis_url: str) -> redis.Redis:
    return redis.Redis.from_url(redis_url, decode_responses=True)

class RedisTokenCache:
    """Access token shared by every worker instance pointing at the same Redis.

    Redis being unreachable only costs a token exchange: reads count as a miss
    and writes are dropped.
    """

    def __init__(self, client: redis.Redis, account_email: str,
                 refresh_margin: timedelta = timedelta(minutes=5)):
        self.client = client
        self.key = f"notifier:access_token:{account_email}"
        self.refresh_margin = refresh_margin

    async def get(self) -> Optional[CachedToken]:
        try:
            raw = await self.client.get(self.key)
        except redis.RedisError as e:
            logger.warning(f"Token cache read failed, treating as miss: {e}")
            return None
        if not raw:
            return None
        try:
            return CachedToken.model_validate_json(raw)
        except ValueError:
            try:
                await self.client.delete(self.key)
            except redis.RedisError as e:
                logger.warning(f"Could not drop corrupt cached token: {e}")
            return None

    async def set(self, token: CachedToken) -> None:
        """Store token; Redis expires the key when the token does"""
        ttl = int((token.expires_at - datetime.now(timezone.utc)).total_seconds())
        if ttl <= 0:
            return
        try:
            await self.client.setex(self.key, ttl, token.model_dump_json())
        except redis.RedisError as e:
            logger.warning(f"Token cache write failed: {e}")

    async def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        token = await self.get()
        return token is not None and token.is_valid(now, self.refresh_margin)
