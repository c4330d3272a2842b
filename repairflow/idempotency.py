"""
Hybrid in-memory + Redis dedup for carrier webhook events

Carriers retry deliveries, so each eventId is claimed once. Redis (SET NX EX)
shares claims across workers when REDIS_URL is set; otherwise, or when Redis
is unreachable, claims live in a bounded per-process TTL cache (fail-open).
"""

import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Optional

import redis

from .config import CARRIER_EVENT_CACHE_SIZE, CARRIER_EVENT_TTL_SECONDS, REDIS_URL

logger = logging.getLogger(__name__)

KEY_PREFIX = "repairflow:carrier_event:"

# Redis connection
redis_client: Optional[redis.Redis] = None
_redis_unavailable = False


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create the Redis client.
    Returns None when REDIS_URL is unset or the first connection failed.
    """
    global redis_client, _redis_unavailable

    if redis_client is not None or _redis_unavailable or not REDIS_URL:
        return redis_client

    logger.info("🔄 Initializing Redis connection for carrier event dedup...")

    # Mask password in URL for logging
    if "@" in REDIS_URL:
        url_parts = REDIS_URL.split("@")
        protocol = url_parts[0].split(":")[0]
        masked_url = f"{protocol}:****@{url_parts[1]}"
    else:
        masked_url = "****"
    logger.info(f"📡 Using Redis URL connection: {masked_url}")

    try:
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
        redis_client = client
        logger.info("Redis connected successfully via URL")
    except Exception as e:
        _redis_unavailable = True
        logger.error(f"❌ Failed to connect to Redis via URL: {str(e)}")
        logger.error("⚠️ Carrier event dedup falls back to per-process memory (fail-open mode)")

    return redis_client


class CarrierEventDeduplicator:
    """Claim-once registry for carrier event ids"""

    def __init__(
        self,
        ttl_seconds: int = CARRIER_EVENT_TTL_SECONDS,
        max_entries: int = CARRIER_EVENT_CACHE_SIZE,
        use_redis: bool = True,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.use_redis = use_redis
        # {event_id: expires_at}, oldest first
        self._memory: "OrderedDict[str, float]" = OrderedDict()
        self._lock = Lock()

    def _cleanup(self, now: float) -> None:
        expired = [k for k, expires_at in self._memory.items() if expires_at <= now]
        for k in expired:
            del self._memory[k]
        while len(self._memory) > self.max_entries:
            self._memory.popitem(last=False)
        if expired:
            logger.debug(f"🧹 Cleaned up {len(expired)} expired carrier event ids")

    def _claim_in_memory(self, event_id: str) -> bool:
        now = time.time()
        with self._lock:
            self._cleanup(now)
            if event_id in self._memory:
                return False
            self._memory[event_id] = now + self.ttl_seconds
            if len(self._memory) > self.max_entries:
                self._memory.popitem(last=False)
            return True

    def claim(self, event_id: str) -> bool:
        """True the first time event_id is seen within the TTL, False for a replay"""
        client = get_redis_client() if self.use_redis else None
        if client is not None:
            try:
                return bool(client.set(KEY_PREFIX + event_id, "1", nx=True, ex=self.ttl_seconds))
            except redis.RedisError as e:
                logger.warning(f"⚠️ Redis dedup failed for event {event_id}, using memory: {e}")
        return self._claim_in_memory(event_id)

    def release(self, event_id: str) -> None:
        """Forget a claim so a failed delivery can be retried by the carrier"""
        with self._lock:
            self._memory.pop(event_id, None)
        client = get_redis_client() if self.use_redis else None
        if client is not None:
            try:
                client.delete(KEY_PREFIX + event_id)
            except redis.RedisError as e:
                logger.warning(f"⚠️ Could not release carrier event {event_id} in Redis: {e}")


carrier_event_dedup = CarrierEventDeduplicator()
