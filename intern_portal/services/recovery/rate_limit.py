"""
Rate limiting for the recovery endpoints.
Redis-backed when REDIS_URL is configured, in-memory otherwise.
"""
import logging
import threading
import time
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import redis

from ...core.config import settings

logger = logging.getLogger(__name__)

ACTION_START = "start"  # request and resend
ACTION_VERIFY = "verify"


class RateLimitService:
    """
    Sliding-window limits per client IP.

    Limits (defaults, see settings):
    - start (request/resend): 10 per 10 min per IP
    - verify: 20 per 10 min per IP

    Per-phone abuse is already bounded by the challenge itself (one live
    code per phone, 3 attempts, resend cooldown).
    """

    def __init__(
        self,
        redis_client: Optional["redis.Redis"] = None,
        start_limit: Optional[int] = None,
        verify_limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self._redis = redis_client
        self.limits = {
            ACTION_START: start_limit or settings.RECOVERY_START_LIMIT_IP,
            ACTION_VERIFY: verify_limit or settings.RECOVERY_VERIFY_LIMIT_IP,
        }
        self.window_seconds = window_seconds or settings.RECOVERY_RATE_WINDOW_SECONDS
        # Fallback in-memory windows: "action:ip" -> attempt timestamps
        self._attempts: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._cleanup_interval = 3600
        self._last_cleanup = time.time()

    def _hit_redis(self, key: str, limit: int, now: float) -> Optional[bool]:
        """Check and record in one pipeline. Returns None if Redis is unavailable."""
        if self._redis is None:
            return None
        try:
            pipe = self._redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zcard(key)
            _, count = pipe.execute()
            if count >= limit:
                return False
            pipe = self._redis.pipeline()
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, self.window_seconds)
            pipe.execute()
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis rate limit check failed, using fallback: {e}")
            return None

    def _hit_memory(self, key: str, limit: int, now: float) -> bool:
        with self._lock:
            self._cleanup_old_entries(now)
            window_start = now - self.window_seconds
            recent = [ts for ts in self._attempts[key] if ts > window_start]
            if len(recent) >= limit:
                self._attempts[key] = recent
                return False
            recent.append(now)
            self._attempts[key] = recent
            return True

    def _cleanup_old_entries(self, now: float):
        """Drop idle windows. Caller must hold the lock."""
        if now - self._last_cleanup < self._cleanup_interval:
            return
        cutoff = now - self.window_seconds
        for key in [k for k, attempts in self._attempts.items() if not attempts or attempts[-1] <= cutoff]:
            del self._attempts[key]
        self._last_cleanup = now

    def hit(self, action: str, ip: str) -> Tuple[bool, Optional[str]]:
        """
        Record an attempt and check whether it is allowed.

        Args:
            action: ACTION_START or ACTION_VERIFY
            ip: Client IP address

        Returns:
            Tuple of (allowed, error_message)
        """
        limit = self.limits[action]
        now = time.time()
        key = f"rate_limit:recovery:{action}:ip:{ip}"

        allowed = self._hit_redis(key, limit, now)
        if allowed is None:
            allowed = self._hit_memory(key, limit, now)

        if not allowed:
            if action == ACTION_VERIFY:
                return False, "Too many verification attempts. Please wait a few minutes and try again."
            return False, "Too many OTP requests. Please wait before requesting a new code."
        return True, None

    def reset(self):
        with self._lock:
            self._attempts.clear()


_rate_limit_service: Optional[RateLimitService] = None


def get_rate_limit_service(redis_client: Optional["redis.Redis"] = None) -> RateLimitService:
    """Get or create rate limit service singleton"""
    global _rate_limit_service
    if _rate_limit_service is None:
        if redis_client is None and settings.REDIS_URL:
            try:
                redis_client = redis.from_url(
                    settings.REDIS_URL, decode_responses=True, socket_connect_timeout=3, socket_timeout=3
                )
                redis_client.ping()
                logger.info("Redis rate limiting enabled for recovery endpoints")
            except redis.RedisError as e:
                logger.warning(f"Failed to initialize Redis for rate limiting, using in-memory fallback: {e}")
                redis_client = None
        _rate_limit_service = RateLimitService(redis_client=redis_client)
    return _rate_limit_service
