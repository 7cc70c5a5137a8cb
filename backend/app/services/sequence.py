"""
Redis-backed sequence allocator for waitlist ordering.

INCR is atomic on the Redis server, so every instance of the service draws
from the same per-product counter. There is deliberately no local fallback:
if Redis is unreachable the reservation request fails.
"""
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from backend.app.core.exceptions import SequenceUnavailableError
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings

logger = get_logger(__name__)


class SequenceAllocator:
    """Per-product, strictly increasing integers."""

    _redis: Optional[Redis] = None

    KEY_SEQUENCE = "reservation:sequence:{product_id}"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create the shared Redis connection."""
        if cls._redis is None:
            settings = get_settings()
            cls._redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                password=settings.REDIS_PASSWORD,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.aclose()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    def key_for(self, product_id: int) -> str:
        return self.KEY_SEQUENCE.format(product_id=product_id)

    async def next_sequence(self, product_id: int) -> int:
        """Mint the next sequence number for product_id.

        Raises SequenceUnavailableError when Redis cannot be reached.
        """
        try:
            value = await self.redis.incr(self.key_for(product_id))
        except RedisError as e:
            logger.error("Sequence allocation failed", product_id=product_id, error=str(e))
            raise SequenceUnavailableError(product_id) from e
        return int(value)

    async def ping(self) -> bool:
        return bool(await self.redis.ping())
