# app/matches/signaling.py
"""
Signaling relay: 세션 레코드에 offer / answer / ICE candidate 를 쌓는다.

- offer 는 initiator(user_a)만, answer 는 responder(user_b)만, 각각 한 번만 기록
- candidate 는 append-only, 참가자 누구나
- 실시간 전달은 SignalingConsumer 가 담당하고, 여기는 저장 + 검증만
"""
import logging
from collections import defaultdict

from django.db import transaction

from app.common.errors import InvalidMessage, SignalingOrderError
from app.matches.models import IceCandidate
from app.matches.services import get_session_for

logger = logging.getLogger(__name__)


def _validate_description(sdp, kind: str) -> dict:
    # RTCSessionDescription.toJSON() 형태: {"type": "offer", "sdp": "..."}
    if not isinstance(sdp, dict) or not isinstance(sdp.get("sdp"), str):
        raise InvalidMessage(f"{kind} must be an object with an sdp string")
    if sdp.get("type", kind) != kind:
        raise InvalidMessage(f"expected a description of type {kind}")
    return {"type": kind, "sdp": sdp["sdp"]}


def _validate_candidate(candidate) -> dict:
    # RTCIceCandidate.toJSON(): {"candidate", "sdpMid", "sdpMLineIndex", ...}
    if not isinstance(candidate, dict) or "candidate" not in candidate:
        raise InvalidMessage("candidate must be an object with a candidate field")
    return candidate


@transaction.atomic
def publish_offer(session_id, user_id, sdp) -> bool:
    description = _validate_description(sdp, "offer")
    session = get_session_for(session_id, user_id, for_update=True)

    if session.role_of(user_id) != "initiator":
        raise SignalingOrderError("only the initiator publishes the offer")
    if session.offer is not None:
        logger.info("ignoring repeated offer on %s", session_id)
        return False

    session.offer = description
    session.save(update_fields=["offer"])
    return True


@transaction.atomic
def publish_answer(session_id, user_id, sdp) -> bool:
    description = _validate_description(sdp, "answer")
    session = get_session_for(session_id, user_id, for_update=True)

    if session.role_of(user_id) != "responder":
        raise SignalingOrderError("only the responder publishes the answer")
    if session.offer is None:
        raise SignalingOrderError("answer before offer")
    if session.answer is not None:
        logger.info("ignoring repeated answer on %s", session_id)
        return False

    session.answer = description
    session.save(update_fields=["answer"])
    return True


def append_candidate(session_id, user_id, candidate) -> IceCandidate:
    candidate = _validate_candidate(candidate)
    session = get_session_for(session_id, user_id)
    return IceCandidate.objects.create(
        session=session, participant_id=user_id, candidate=candidate
    )


def signaling_snapshot(session_id, user_id) -> dict:
    """지금까지 쌓인 offer/answer/candidates. 구독(재구독) 시작 시 재전송용."""
    session = get_session_for(session_id, user_id)

    candidates = defaultdict(list)
    for row in session.candidates.all():
        candidates[str(row.participant_id)].append(row.candidate)

    return {
        "sessionId": session.session_id,
        "participants": session.participants,
        "initiatorId": str(session.user_a_id),
        "offer": session.offer,
        "answer": session.answer,
        "candidates": {uid: candidates.get(uid, []) for uid in session.participants},
    }
