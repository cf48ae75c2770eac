# app/chat/services.py
import time

from django.conf import settings

from app.chat.models import ChatMessage
from app.common.errors import InvalidMessage
from app.common.redis_client import get_redis
from app.matches.models import MODE_TEXT
from app.matches.services import end_session, get_session_for

MAX_MESSAGE_LENGTH = 2000


def typing_key(session_id, user_id) -> str:
    return f"chat:typing:{session_id}:{user_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def get_text_session(session_id, user_id):
    session = get_session_for(session_id, user_id)
    if session.mode != MODE_TEXT:
        raise InvalidMessage("not a text chat session")
    return session


def send_message(session_id, sender_id, text, timestamp=None) -> ChatMessage:
    session = get_text_session(session_id, sender_id)

    text = str(text or "").strip()
    if not text:
        raise InvalidMessage("message is empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise InvalidMessage(f"message longer than {MAX_MESSAGE_LENGTH} characters")

    if timestamp is None:
        timestamp = _now_ms()
    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError):
        raise InvalidMessage("timestamp must be epoch milliseconds")

    message = ChatMessage.objects.create(
        session=session, sender_id=sender_id, text=text, timestamp=timestamp
    )
    # 보내고 나면 typing 해제
    set_typing(session_id, sender_id, False)
    return message


def message_log(session_id) -> list:
    """전체 메시지 (diff 아님), timestamp 오름차순."""
    qs = ChatMessage.objects.filter(session__session_id=session_id).order_by("timestamp", "id")
    return [m.to_dict() for m in qs]


def set_typing(session_id, user_id, typing: bool) -> None:
    r = get_redis()
    if typing:
        # quiet period 동안 입력 없으면 자동으로 false
        r.set(typing_key(session_id, user_id), "1", px=settings.CHAT_TYPING_QUIET_MS)
    else:
        r.delete(typing_key(session_id, user_id))


def typing_state(session_id, participants) -> dict:
    participants = [str(p) for p in participants]
    values = get_redis().mget([typing_key(session_id, uid) for uid in participants])
    return {uid: value is not None for uid, value in zip(participants, values)}


def end_chat(session_id, user=None) -> bool:
    return end_session(session_id, user)
