"""
Redis mutex serialising book/accept for a single tutor time slot.

The partial unique index on active tutor slots is the authoritative guard;
this lock only narrows the window in which two requests race to it, so every
Redis failure degrades to "acquired" and the request proceeds.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)


def _lock_key(tutor_id: str, scheduled_time: datetime) -> str:
    return f"tutor:{tutor_id}:slot:{scheduled_time.isoformat()}"


class SessionSlotLock:
    """SET NX EX based mutex keyed by tutor and slot timestamp."""

    def __init__(
        self,
        *,
        enabled: Optional[bool] = None,
        redis_url: Optional[str] = None,
        namespace: Optional[str] = None,
        ttl_s: Optional[int] = None,
        client: Optional[Redis] = None,
    ) -> None:
        self.enabled = settings.session_lock_enabled if enabled is None else enabled
        self.redis_url = redis_url or settings.redis_url
        self.namespace = namespace or settings.session_lock_namespace
        self.ttl_s = ttl_s or settings.session_lock_ttl_seconds
        self._client = client
        self._client_lock = threading.Lock()

    def _namespaced_key(self, key: str) -> str:
        return f"{self.namespace}:lock:{key}"

    def _get_client(self) -> Optional[Redis]:
        if self._client is not None:
            return self._client
        with self._client_lock:
            if self._client is not None:
                return self._client
            try:
                client = Redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
                client.ping()
            except Exception as exc:
                logger.warning("session_lock_redis_unavailable: %s", exc)
                return None
            self._client = client
            return self._client

    def acquire(self, tutor_id: str, scheduled_time: datetime) -> bool:
        if not self.enabled:
            return True
        key = _lock_key(tutor_id, scheduled_time)
        client = self._get_client()
        if client is None:
            prometheus_metrics.record_session_lock("acquire", "redis_unavailable")
            logger.warning("session_lock_redis_unavailable", extra={"lock_key": key})
            return True
        try:
            acquired = bool(
                client.set(self._namespaced_key(key), str(time.time()), nx=True, ex=self.ttl_s)
            )
        except Exception as exc:
            prometheus_metrics.record_session_lock("acquire", "error")
            logger.warning(
                "session_lock_acquire_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            return True
        prometheus_metrics.record_session_lock("acquire", "success" if acquired else "blocked")
        return acquired

    def release(self, tutor_id: str, scheduled_time: datetime) -> None:
        if not self.enabled:
            return
        key = _lock_key(tutor_id, scheduled_time)
        client = self._get_client()
        if client is None:
            prometheus_metrics.record_session_lock("release", "redis_unavailable")
            return
        try:
            deleted = client.delete(self._namespaced_key(key))
            prometheus_metrics.record_session_lock("release", "success" if deleted else "not_found")
        except Exception as exc:
            prometheus_metrics.record_session_lock("release", "error")
            logger.warning(
                "session_lock_release_failed",
                extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
            )

    @contextmanager
    def hold(self, tutor_id: str, scheduled_time: datetime) -> Iterator[bool]:
        acquired = self.acquire(tutor_id, scheduled_time)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(tutor_id, scheduled_time)
