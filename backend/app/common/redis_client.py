# app/common/redis_client.py
"""presence lease, typing flag, signaling peerCount 가 같이 쓰는 redis 연결."""
import redis
from django.conf import settings


_redis = None


def _connect():
    options = {
        "decode_responses": True,  # bytes 말고 str로 받게
        "socket_timeout": settings.REDIS_SOCKET_TIMEOUT_SEC,
    }
    if settings.REDIS_URL:
        return redis.Redis.from_url(settings.REDIS_URL, **options)
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        **options,
    )


def get_redis():
    global _redis
    if _redis is None:
        _redis = _connect()
    return _redis
