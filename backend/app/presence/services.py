# app/presence/services.py
"""
Presence registry.

클라이언트가 등록하는 onDisconnect 대신 서버 쪽 lease(TTL)로 관리한다.
- presence:user:<id>      lease, TTL 지나면 offline
- presence:lastseen:<id>  마지막 online/offline 전환 시각 (epoch ms)
- presence:online         lease 만료시각을 score 로 둔 sorted set (count 용)
"""
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.conf import settings

from app.common.redis_client import get_redis

ONLINE_SET_KEY = "presence:online"


def presence_key(user_id) -> str:
    return f"presence:user:{user_id}"


def last_seen_key(user_id) -> str:
    return f"presence:lastseen:{user_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PresenceRecord:
    user_id: str
    online: bool
    last_seen: Optional[int]

    def to_dict(self):
        return {"userId": self.user_id, "online": self.online, "lastSeen": self.last_seen}


def mark_online(user_id) -> None:
    """connect / ping 마다 호출. lease 갱신."""
    ttl = settings.PRESENCE_TTL_SEC
    now = _now_ms()
    pipe = get_redis().pipeline(transaction=True)
    pipe.set(presence_key(user_id), "1", ex=ttl)
    pipe.set(last_seen_key(user_id), now)
    pipe.zadd(ONLINE_SET_KEY, {str(user_id): now + ttl * 1000})
    pipe.execute()


def mark_offline(user_id) -> None:
    pipe = get_redis().pipeline(transaction=True)
    pipe.delete(presence_key(user_id))
    pipe.set(last_seen_key(user_id), _now_ms())
    pipe.zrem(ONLINE_SET_KEY, str(user_id))
    pipe.execute()


def is_online(user_id) -> bool:
    return bool(get_redis().exists(presence_key(user_id)))


def get_presence(user_ids: Iterable) -> List[PresenceRecord]:
    ids = [str(uid) for uid in user_ids]
    if not ids:
        return []

    r = get_redis()
    leases = r.mget([presence_key(uid) for uid in ids])
    seen = r.mget([last_seen_key(uid) for uid in ids])

    records = []
    for uid, lease, last in zip(ids, leases, seen):
        records.append(
            PresenceRecord(
                user_id=uid,
                online=lease is not None,
                last_seen=int(last) if last is not None else None,
            )
        )
    return records


def online_count() -> int:
    r = get_redis()
    # 만료된 lease 는 count 전에 정리
    r.zremrangebyscore(ONLINE_SET_KEY, "-inf", _now_ms())
    return int(r.zcard(ONLINE_SET_KEY))
