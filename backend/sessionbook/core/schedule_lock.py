from __future__ import annotations

from contextlib import ExitStack, contextmanager
from datetime import date
import logging
import threading
import time
from typing import Iterator, Optional, Sequence

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .exceptions import ConflictException

logger = logging.getLogger(__name__)

_REDIS: Optional[Redis] = None
_REDIS_LOCK = threading.Lock()


def teacher_day_key(teacher_id: str, day: date) -> str:
    return f"teacher:{teacher_id}:day:{day.isoformat()}"


def program_day_key(program_id: str, day: date) -> str:
    return f"program:{program_id}:day:{day.isoformat()}"


def _namespaced_key(key: str) -> str:
    return f"sessionbook:lock:{key}"


def _get_redis() -> Optional[Redis]:
    global _REDIS
    if _REDIS is not None:
        return _REDIS
    with _REDIS_LOCK:
        if _REDIS is not None:
            return _REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("schedule_lock_redis_unavailable: %s", exc)
            return None
        _REDIS = client
        return _REDIS


def acquire_schedule_lock(key: str, ttl_s: Optional[int] = None) -> bool:
    """
    Try to take the lock for ``key``.

    Fails open: when Redis is disabled or unreachable the caller proceeds and
    the conditional status update remains the only guard.
    """
    if not settings.schedule_lock_enabled:
        return True
    client = _get_redis()
    if client is None:
        prometheus_metrics.record_schedule_lock("acquire", "redis_unavailable")
        return True
    try:
        acquired = bool(
            client.set(
                _namespaced_key(key),
                str(time.time()),
                nx=True,
                ex=ttl_s or settings.schedule_lock_ttl_seconds,
            )
        )
    except Exception as exc:
        prometheus_metrics.record_schedule_lock("acquire", "error")
        logger.warning(
            "schedule_lock_acquire_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True
    prometheus_metrics.record_schedule_lock("acquire", "success" if acquired else "blocked")
    return acquired


def release_schedule_lock(key: str) -> None:
    if not settings.schedule_lock_enabled:
        return
    client = _get_redis()
    if client is None:
        prometheus_metrics.record_schedule_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_namespaced_key(key))
        prometheus_metrics.record_schedule_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_schedule_lock("release", "error")
        logger.warning(
            "schedule_lock_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def schedule_lock(key: str, ttl_s: Optional[int] = None) -> Iterator[None]:
    """Hold ``key`` for the duration of the block or raise ``ConflictException``."""
    if not acquire_schedule_lock(key, ttl_s=ttl_s):
        raise ConflictException(
            "Another change to this schedule is in progress, please retry",
            code="SCHEDULE_LOCKED",
            details={"lock_key": key},
        )
    try:
        yield
    finally:
        release_schedule_lock(key)


@contextmanager
def schedule_locks(keys: Sequence[str], ttl_s: Optional[int] = None) -> Iterator[None]:
    """Take several locks in sorted order so concurrent callers cannot deadlock."""
    with ExitStack() as stack:
        for key in sorted(set(keys)):
            stack.enter_context(schedule_lock(key, ttl_s=ttl_s))
        yield
