# app/matches/services.py
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from app.common.errors import (
    InvalidMessage,
    NotSessionParticipant,
    RaceCollision,
    SessionNotFound,
)
from app.matches import events
from app.matches.models import (
    MODE_CHOICES,
    MODE_VIDEO,
    AvailabilityEntry,
    MatchPool,
    MatchSession,
)

logger = logging.getLogger(__name__)

MODES = {value for value, _ in MODE_CHOICES}


def session_id_for(a, b) -> str:
    """두 user id 로 만든 세션 id. 순서와 무관하게 같은 값."""
    a, b = str(a), str(b)
    if a == b:
        raise ValueError("cannot pair a user with themselves")
    return "_".join(sorted([a, b]))


@dataclass
class MatchResult:
    entry: Optional[AvailabilityEntry]
    session: Optional[MatchSession]
    matched: bool
    peer_user_id: Optional[int] = None
    role: Optional[str] = None
    created: bool = False  # 이번 호출에서 새로 매칭됐는지

    def to_dict(self):
        return {
            "sessionId": self.session.session_id if self.session else None,
            "matched": self.matched,
            "peerUserId": str(self.peer_user_id) if self.peer_user_id else None,
            "role": self.role,
            "mode": self.session.mode if self.session else (self.entry.mode if self.entry else None),
        }


def _normalize_mode(mode) -> str:
    mode = str(mode or MODE_VIDEO).upper()
    if mode not in MODES:
        raise InvalidMessage("mode must be VIDEO or TEXT")
    return mode


def _lock_pools(*modes):
    # 항상 같은 순서로 잠가서 deadlock 방지
    for mode in sorted(set(modes)):
        MatchPool.objects.select_for_update().get_or_create(mode=mode)


def _result_for(user, entry, session, *, created=False) -> MatchResult:
    return MatchResult(
        entry=entry,
        session=session,
        matched=True,
        peer_user_id=session.peer_of(user.id),
        role=session.role_of(user.id),
        created=created,
    )


def get_session_for(session_id, user_id, *, for_update=False) -> MatchSession:
    qs = MatchSession.objects.filter(session_id=session_id)
    if for_update:
        qs = qs.select_for_update()
    session = qs.first()
    if session is None:
        raise SessionNotFound()
    if not session.has_participant(user_id):
        raise NotSessionParticipant()
    return session


@transaction.atomic
def request_match(user, *, mode=MODE_VIDEO, rng=None) -> MatchResult:
    """
    "find a stranger".

    같은 mode pool 을 잠근 상태에서
      1) 내 entry 등록 (이미 매칭돼 있으면 그 세션 반환)
      2) matched=False 인 다른 후보 중 하나를 무작위 선택
      3) 세션 생성 + 두 entry 를 한 번의 update 로 matched 처리
    pool 단위로 직렬화되므로 같은 후보를 두 명이 동시에 잡는 일은 없다.
    """
    mode = _normalize_mode(mode)
    rng = rng or random

    existing = AvailabilityEntry.objects.filter(user=user).first()
    _lock_pools(mode, existing.mode if existing else mode)

    # 1) 내 entry
    entry = AvailabilityEntry.objects.select_for_update().filter(user=user).first()
    if entry is not None and entry.matched:
        session = MatchSession.objects.filter(session_id=entry.session_id).first()
        if session is not None and session.has_participant(user.id):
            return _result_for(user, entry, session)
        logger.warning(
            "dangling session pointer %s for user %s, re-queueing",
            entry.session_id,
            user.id,
        )

    if entry is None:
        entry = AvailabilityEntry.objects.create(user=user, mode=mode)
    elif entry.matched or entry.mode != mode:
        entry.mode = mode
        entry.matched = False
        entry.session_id = None
        entry.enqueued_at = timezone.now()
        entry.save(update_fields=["mode", "matched", "session_id", "enqueued_at"])

    # 2) 후보 (나 제외, 아직 매칭 안 된 사람)
    candidates = list(
        AvailabilityEntry.objects.select_for_update()
        .filter(mode=mode, matched=False)
        .exclude(user=user)
        .order_by("enqueued_at")[: settings.MATCH_CANDIDATE_LIMIT]
    )
    if not candidates:
        logger.info("user %s waiting in %s pool", user.id, mode)
        return MatchResult(entry=entry, session=None, matched=False)

    partner = rng.choice(candidates)
    sid = session_id_for(user.id, partner.user_id)

    # 둘 다 unmatched 인데 같은 id 의 세션이 남아 있으면 이전 통화 찌꺼기
    stale = MatchSession.objects.select_for_update().filter(session_id=sid).first()
    if stale is not None:
        logger.warning("removing stale session %s before re-pairing", sid)
        stale.delete()

    # 3) 세션 생성 + 두 entry 동시 갱신
    try:
        with transaction.atomic():
            session = MatchSession.objects.create(
                session_id=sid,
                mode=mode,
                user_a=user,
                user_b_id=partner.user_id,
            )
    except IntegrityError as exc:
        logger.warning("session id collision on %s: %s", sid, exc)
        raise RaceCollision() from exc

    AvailabilityEntry.objects.filter(pk__in=[entry.pk, partner.pk]).update(
        matched=True, session_id=sid
    )
    entry.matched = True
    entry.session_id = sid

    logger.info("paired %s with %s in %s (%s)", user.id, partner.user_id, sid, mode)
    transaction.on_commit(lambda: events.notify_match_found(session))
    return _result_for(user, entry, session, created=True)


@transaction.atomic
def cancel_search(user) -> Optional[MatchSession]:
    """
    매칭 전이면 entry 삭제 후 None.
    이미 매칭이 커밋됐으면 그 세션을 돌려줌 (그 뒤 철회는 end_session 으로).
    """
    existing = AvailabilityEntry.objects.filter(user=user).first()
    if existing is None:
        return None
    _lock_pools(existing.mode)

    entry = AvailabilityEntry.objects.select_for_update().filter(user=user).first()
    if entry is None:
        return None

    if entry.matched:
        session = MatchSession.objects.filter(session_id=entry.session_id).first()
        if session is not None:
            return session

    entry.delete()
    logger.info("user %s left the %s pool", user.id, entry.mode)
    return None


def expire_stale_entries(older_than_sec=None) -> int:
    """timeout 지난 대기 entry 정리 (클라이언트가 사라진 경우용)."""
    if older_than_sec is None:
        older_than_sec = settings.MATCH_SEARCH_TIMEOUT_SEC
    cutoff = timezone.now() - timedelta(seconds=older_than_sec)

    removed = 0
    for mode in sorted(MODES):
        with transaction.atomic():
            _lock_pools(mode)
            count, _ = AvailabilityEntry.objects.filter(
                mode=mode, matched=False, enqueued_at__lt=cutoff
            ).delete()
            removed += count
    if removed:
        logger.info("expired %s stale availability entries", removed)
    return removed


@transaction.atomic
def end_session(session_id, user=None) -> bool:
    """
    세션 삭제 = 유일한 취소 신호.
    candidates/messages 는 cascade, 두 사람의 entry(포인터)도 같이 삭제.
    이미 없으면 False (idempotent).
    """
    session = MatchSession.objects.select_for_update().filter(session_id=session_id).first()
    if session is None:
        AvailabilityEntry.objects.filter(session_id=session_id).delete()
        return False

    if user is not None and not session.has_participant(user.id):
        raise NotSessionParticipant()

    participants = session.participants
    AvailabilityEntry.objects.filter(session_id=session_id).delete()
    session.delete()

    logger.info("session %s ended", session_id)
    transaction.on_commit(lambda: events.notify_session_ended(session_id, participants))
    return True


def current_session(user) -> Optional[MatchSession]:
    entry = AvailabilityEntry.objects.filter(user=user, matched=True).first()
    if entry is None or not entry.session_id:
        return None
    return MatchSession.objects.filter(session_id=entry.session_id).first()


@transaction.atomic
def reconcile_sessions() -> list:
    """
    한 유저가 동시에 두 세션에 묶여 있으면 가장 오래된 세션만 남기고 나머지는 종료.
    없는 세션을 가리키는 entry 도 정리. 종료한 session id 목록 반환.
    """
    _lock_pools(*MODES)

    live_ids = set(MatchSession.objects.values_list("session_id", flat=True))
    dangling, _ = (
        AvailabilityEntry.objects.filter(matched=True)
        .exclude(session_id__in=live_ids)
        .delete()
    )
    if dangling:
        logger.warning("cleared %s dangling session pointers", dangling)

    bound = set()
    winners, losers = [], []
    for session in MatchSession.objects.order_by("created_at", "id"):
        if session.user_a_id in bound or session.user_b_id in bound:
            losers.append(session)
            continue
        bound.update([session.user_a_id, session.user_b_id])
        winners.append(session)

    torn_down = []
    for session in losers:
        logger.warning("tearing down conflicting session %s", session.session_id)
        end_session(session.session_id)
        torn_down.append(session.session_id)

    if torn_down:
        # loser 삭제 때 같이 지워진 winner 쪽 포인터 복구
        for session in winners:
            for uid in (session.user_a_id, session.user_b_id):
                AvailabilityEntry.objects.update_or_create(
                    user_id=uid,
                    defaults={
                        "mode": session.mode,
                        "matched": True,
                        "session_id": session.session_id,
                    },
                )

    return torn_down


def sessions_without_presence(is_online) -> list:
    """두 참가자 모두 presence 가 끊긴 세션 id 목록."""
    stale = []
    for session in MatchSession.objects.all():
        if not is_online(session.user_a_id) and not is_online(session.user_b_id):
            stale.append(session.session_id)
    return stale
