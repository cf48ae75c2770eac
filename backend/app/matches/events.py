# app/matches/events.py
"""
channel layer group 이름과 서비스 -> consumer 알림.

서비스 함수는 transaction.on_commit 으로 여기를 호출한다
(커밋 안 된 매칭/종료를 알리지 않도록).
"""
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group(user_id) -> str:
    return f"user_{user_id}"


def session_group(session_id) -> str:
    return f"session_{session_id}"


def chat_group(session_id) -> str:
    return f"chat_{session_id}"


def _group_send(group: str, message: dict) -> None:
    layer = get_channel_layer()
    if layer is None:
        return
    async_to_sync(layer.group_send)(group, message)


def notify_match_found(session) -> None:
    message = {
        "type": "match.found",  # handler: match_found
        "sessionId": session.session_id,
        "mode": session.mode,
        "initiatorId": str(session.user_a_id),
        "participants": session.participants,
    }
    for uid in session.participants:
        _group_send(user_group(uid), message)


def notify_session_ended(session_id, participants, reason: str = "ended") -> None:
    message = {
        "type": "session.ended",  # handler: session_ended
        "sessionId": session_id,
        "reason": reason,
    }
    for uid in participants:
        _group_send(user_group(uid), message)
    _group_send(session_group(session_id), message)
    _group_send(chat_group(session_id), message)
    logger.debug("session %s end broadcast to %s", session_id, participants)
