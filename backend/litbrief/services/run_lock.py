"""
Run Lock Service

Single-flight guard so only one search run per brief executes at a time.
Uses Redis SET NX with a TTL when available; falls back to an in-process
registry when Redis is unavailable or disabled.
"""
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set
from uuid import uuid4

import redis

from litbrief.core.config import settings
from litbrief.core.exceptions import RunInProgressError
from litbrief.core.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """Per-brief run lock backed by Redis with in-memory fallback."""
    
    def __init__(self, use_redis: Optional[bool] = None, ttl_seconds: Optional[int] = None):
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._held: Set[str] = set()
        self._tokens: dict = {}
        self._guard = threading.Lock()
        self.ttl_seconds = ttl_seconds or settings.run_lock_ttl_seconds
        
        if settings.redis_enabled if use_redis is None else use_redis:
            self._connect()
    
    def _connect(self):
        """Attempt to connect to Redis."""
        try:
            self._client = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=0,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2
            )
            self._client.ping()
            self._connected = True
            logger.info("Run lock using Redis")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis not available, run lock using in-memory fallback: {e}")
            self._client = None
            self._connected = False
    
    def _get_key(self, brief_id: str) -> str:
        return f"litbrief:run:{brief_id}"
    
    def try_acquire(self, brief_id: str) -> bool:
        """Take the lock for a brief; False if a run already holds it."""
        key = self._get_key(brief_id)
        
        if self._connected and self._client:
            token = uuid4().hex
            try:
                acquired = bool(self._client.set(key, token, nx=True, ex=self.ttl_seconds))
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning(f"Redis lock error, falling back to in-memory lock: {e}")
                self._connected = False
                return self.try_acquire(brief_id)
            if acquired:
                self._tokens[key] = token
            return acquired
        
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True
    
    def release(self, brief_id: str) -> None:
        """Release the lock if this instance holds it."""
        key = self._get_key(brief_id)
        token = self._tokens.pop(key, None)
        
        if token is not None and self._client is not None:
            try:
                # Only delete our own token; an expired lock may belong to another run now
                if self._client.get(key) == token:
                    self._client.delete(key)
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.error(f"Redis lock release error for {key}: {e}")
            return
        
        with self._guard:
            self._held.discard(key)
    
    def is_locked(self, brief_id: str) -> bool:
        key = self._get_key(brief_id)
        if self._connected and self._client:
            try:
                return bool(self._client.exists(key))
            except (redis.ConnectionError, redis.TimeoutError):
                return key in self._tokens
        with self._guard:
            return key in self._held
    
    @asynccontextmanager
    async def hold(self, brief_id: str) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of a run.
        
        Raises:
            RunInProgressError: If another run for the brief holds the lock
        """
        if not self.try_acquire(brief_id):
            raise RunInProgressError(brief_id)
        try:
            yield
        finally:
            self.release(brief_id)
    
    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected
