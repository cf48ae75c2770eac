import asyncio
import json
import logging

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from app.common.errors import (
    MatchError,
    NotSessionParticipant,
    SessionNotFound,
    SignalingTimeout,
)
from app.common.redis_client import get_redis
from app.matches.events import session_group, user_group
from app.matches.services import (
    cancel_search,
    current_session,
    end_session,
    get_session_for,
    request_match,
)
from app.matches.signaling import (
    append_candidate,
    publish_answer,
    publish_offer,
    signaling_snapshot,
)
from app.presence.services import mark_offline, mark_online

logger = logging.getLogger(__name__)


def _peercount_key(session_id: str) -> str:
    return f"ws:peerCount:{session_id}"


def _authenticated_user(scope):
    user = scope.get("user")
    if user is None or not user.is_authenticated:
        return None
    return user


class LobbyConsumer(AsyncJsonWebsocketConsumer):
    """
    presence + 매칭용 소켓 (유저당 하나)
      - URL: ws://<host>/ws/lobby/?token=<jwt>
      - in : {"type": "find", "mode": "VIDEO"|"TEXT"} / {"type": "cancel"}
             {"type": "end", "sessionId": "..."} / {"type": "ping"}
      - out: searching / matched / no-match / search-cancelled / session-ended / pong / error
    연결이 끊기면 서버가 offline 처리 + 대기 철회 + 세션 종료 (onDisconnect 대체)
    """

    async def connect(self):
        self.user = _authenticated_user(self.scope)
        if self.user is None:
            await self.close(code=4401)
            return

        self.group_name = user_group(self.user.id)
        self._search_task = None
        self._delivered_session_id = None

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await sync_to_async(mark_online)(self.user.id)

    async def disconnect(self, close_code):
        # connect 실패한 케이스 방어
        user = getattr(self, "user", None)
        if user is None:
            return

        self._cancel_search_timer()
        await self.channel_layer.group_discard(self.group_name, self.channel_name)
        await sync_to_async(mark_offline)(user.id)

        # 대기 중이면 철회, 이미 매칭됐으면 세션 종료
        session = await database_sync_to_async(cancel_search)(user)
        if session is None:
            session = await database_sync_to_async(current_session)(user)
        if session is not None:
            await database_sync_to_async(end_session)(session.session_id)
            logger.info("user %s disconnected, ended %s", user.id, session.session_id)

    async def receive_json(self, content, **kwargs):
        msg_type = content.get("type")
        try:
            if msg_type == "find":
                await self._find(content.get("mode"))
            elif msg_type == "cancel":
                await self._cancel()
            elif msg_type == "end":
                await self._end(content.get("sessionId"))
            elif msg_type == "ping":
                await sync_to_async(mark_online)(self.user.id)
                await self.send_json({"type": "pong"})
            else:
                await self._send_error("VALIDATION_ERROR", f"unknown type {msg_type!r}")
        except MatchError as exc:
            await self._send_error(exc.code, exc.message)

    @classmethod
    async def decode_json(cls, text_data):
        try:
            content = await super().decode_json(text_data)
        except ValueError:
            return {"type": None}
        return content if isinstance(content, dict) else {"type": None}

    # ---- actions ----

    async def _find(self, mode):
        result = await database_sync_to_async(request_match)(self.user, mode=mode)

        if result.matched:
            # 새 매칭은 on_commit -> match.found 로 양쪽에 전달됨
            if not result.created:
                # 재요청이면 이미 받은 매칭이어도 다시 알려줌
                await self._send_matched(
                    result.session.session_id,
                    result.session.mode,
                    str(result.session.user_a_id),
                    result.session.participants,
                    repeat=True,
                )
            return

        await self.send_json({"type": "searching", "mode": result.entry.mode})
        self._cancel_search_timer()
        self._search_task = asyncio.create_task(
            self._expire_search(settings.MATCH_SEARCH_TIMEOUT_SEC)
        )

    async def _cancel(self):
        self._cancel_search_timer()
        session = await database_sync_to_async(cancel_search)(self.user)
        if session is not None:
            # 취소보다 매칭 커밋이 먼저였음
            await self._send_matched(
                session.session_id, session.mode, str(session.user_a_id), session.participants
            )
            return
        await self.send_json({"type": "search-cancelled"})

    async def _end(self, session_id):
        if not session_id:
            await self._send_error("VALIDATION_ERROR", "sessionId is required")
            return
        ended = await database_sync_to_async(end_session)(session_id, self.user)
        if not ended:
            # 이미 끝난 세션이어도 클라이언트 상태는 맞춰줌
            await self.send_json(
                {"type": "session-ended", "sessionId": session_id, "reason": "ended"}
            )

    async def _expire_search(self, timeout):
        await asyncio.sleep(timeout)
        session = await database_sync_to_async(cancel_search)(self.user)
        if session is not None:
            await self._send_matched(
                session.session_id, session.mode, str(session.user_a_id), session.participants
            )
            return
        logger.info("search timed out for user %s", self.user.id)
        err = SignalingTimeout()
        await self.send_json({"type": "no-match", **err.as_payload()})

    def _cancel_search_timer(self):
        task = getattr(self, "_search_task", None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._search_task = None

    async def _send_matched(self, session_id, mode, initiator_id, participants, repeat=False):
        if self._delivered_session_id == session_id and not repeat:
            return
        self._delivered_session_id = session_id
        me = str(self.user.id)
        peer = next((p for p in participants if p != me), None)
        await self.send_json(
            {
                "type": "matched",
                "sessionId": session_id,
                "mode": mode,
                "peerUserId": peer,
                "role": "initiator" if initiator_id == me else "responder",
            }
        )

    async def _send_error(self, code, message):
        await self.send_json({"type": "error", "code": code, "message": message})

    # ---- group handlers ----

    async def match_found(self, event):
        self._cancel_search_timer()
        await self._send_matched(
            event["sessionId"], event["mode"], event["initiatorId"], event["participants"]
        )

    async def session_ended(self, event):
        if self._delivered_session_id == event.get("sessionId"):
            self._delivered_session_id = None
        await self.send_json(
            {
                "type": "session-ended",
                "sessionId": event.get("sessionId"),
                "reason": event.get("reason", "ended"),
            }
        )


class SignalingConsumer(AsyncJsonWebsocketConsumer):
    """
    WS Signaling Protocol
      - URL: ws://<host>/ws/signaling/<sessionId>/?token=<jwt>
      - Envelope:
        {
          "type": "...",
          "sessionId": "...",
          "fromUserId": "1",
          "payload": {...}
        }
      - 연결 직후 joined + snapshot(지금까지의 offer/answer/candidates) 전송
      - leave = 세션 삭제 (유일한 취소 신호), 양쪽에 session-ended
    """

    async def connect(self):
        self.session_id = self.scope["url_route"]["kwargs"]["session_id"]
        self.room_group_name = session_group(self.session_id)
        self.ended = False

        user = _authenticated_user(self.scope)
        if user is None:
            # 4401 Unauthorized (앱에서 처리하기 쉬움)
            await self.close(code=4401)
            return

        try:
            await database_sync_to_async(get_session_for)(self.session_id, user.id)
        except SessionNotFound:
            await self.close(code=4404)
            return
        except NotSessionParticipant:
            await self.close(code=4403)
            return

        self.user = user
        self.user_id = str(user.id)

        await self.channel_layer.group_add(self.room_group_name, self.channel_name)
        await self.accept()

        peer_count = await self._peercount_incr()

        # 나에게 joined
        await self._send_envelope("joined", {"peerCount": peer_count})

        # 나를 제외한 나머지에게 peer-joined
        await self.channel_layer.group_send(
            self.room_group_name,
            {
                "type": "peer.joined",  # handler: peer_joined
                "sessionId": self.session_id,
                "fromUserId": self.user_id,
                "payload": {"peerCount": peer_count},
            },
        )

        # 재구독이어도 지금까지 쌓인 것부터 다시 받게
        try:
            snapshot = await database_sync_to_async(signaling_snapshot)(
                self.session_id, self.user_id
            )
        except SessionNotFound:
            # connect 도중 세션이 끝남
            self.ended = True
            await self.close(code=4404)
            return
        await self._send_envelope("snapshot", snapshot)

    async def disconnect(self, close_code):
        room = getattr(self, "room_group_name", None)
        user_id = getattr(self, "user_id", None)
        if not room or not user_id:
            return

        peer_count = await self._peercount_decr()

        # "나 나감"을 먼저 브로드캐스트
        await self.channel_layer.group_send(
            room,
            {
                "type": "peer.left",  # handler: peer_left
                "sessionId": self.session_id,
                "fromUserId": user_id,
                "payload": {"peerCount": peer_count},
            },
        )
        await self.channel_layer.group_discard(room, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return

        try:
            data = json.loads(text_data)
        except ValueError:
            await self._send_error("VALIDATION_ERROR", "invalid json")
            return
        if not isinstance(data, dict):
            await self._send_error("VALIDATION_ERROR", "message must be a json object")
            return

        msg_type = data.get("type")
        payload = data.get("payload") or {}

        if msg_type == "join":
            await self._send_envelope("joined", {"peerCount": await self._peercount_get()})
            return

        if msg_type == "leave":
            await database_sync_to_async(end_session)(self.session_id)
            return

        if msg_type not in ("offer", "answer", "ice"):
            await self._send_error("VALIDATION_ERROR", f"unknown type {msg_type!r}")
            return

        try:
            written = await self._store(msg_type, payload)
        except MatchError as exc:
            await self._send_error(exc.code, exc.message)
            return
        except Exception:
            # signaling 중 예상 못한 실패는 세션 정리로
            logger.exception("signaling failure on %s, tearing down", self.session_id)
            await database_sync_to_async(end_session)(self.session_id)
            return

        if not written:
            return

        await self.channel_layer.group_send(
            self.room_group_name,
            {
                "type": "signal.message",  # handler: signal_message
                "envelope": {
                    "type": msg_type,
                    "sessionId": self.session_id,
                    "fromUserId": self.user_id,
                    "payload": payload,
                },
            },
        )

    async def _store(self, msg_type, payload) -> bool:
        if msg_type == "offer":
            return await database_sync_to_async(publish_offer)(
                self.session_id, self.user_id, payload
            )
        if msg_type == "answer":
            return await database_sync_to_async(publish_answer)(
                self.session_id, self.user_id, payload
            )
        await database_sync_to_async(append_candidate)(self.session_id, self.user_id, payload)
        return True

    # ---- group handlers ----

    async def signal_message(self, event):
        """
        offer/answer/ice 중계.
        내 메시지도 내게 돌아오는데(그룹 브로드캐스트), 클라이언트가 fromUserId로 거름.
        """
        envelope = event.get("envelope") or {}
        if self.ended or envelope.get("sessionId") != self.session_id:
            return
        await self.send_json(envelope)

    async def peer_joined(self, event):
        if event.get("fromUserId") == self.user_id:
            return
        await self._send_envelope(
            "peer-joined", event.get("payload") or {}, from_user_id=event.get("fromUserId")
        )

    async def peer_left(self, event):
        if event.get("fromUserId") == self.user_id:
            return
        await self._send_envelope(
            "peer-left", event.get("payload") or {}, from_user_id=event.get("fromUserId")
        )

    async def session_ended(self, event):
        if self.ended:
            return
        self.ended = True
        await self._send_envelope("session-ended", {"reason": event.get("reason", "ended")})
        await self.close(code=1000)

    # ---- helpers ----

    async def _send_envelope(self, msg_type, payload, from_user_id=None):
        await self.send_json(
            {
                "type": msg_type,
                "sessionId": self.session_id,
                "fromUserId": from_user_id or self.user_id,
                "payload": payload,
            }
        )

    async def _send_error(self, code, message):
        await self._send_envelope("error", {"code": code, "message": message})

    @sync_to_async
    def _peercount_get(self) -> int:
        raw = get_redis().get(_peercount_key(self.session_id))
        return int(raw) if raw is not None else 0

    @sync_to_async
    def _peercount_incr(self) -> int:
        r = get_redis()
        key = _peercount_key(self.session_id)
        val = r.incr(key)
        r.expire(key, settings.SIGNALING_PEERCOUNT_TTL_SEC)
        return int(val)

    @sync_to_async
    def _peercount_decr(self) -> int:
        r = get_redis()
        key = _peercount_key(self.session_id)
        val = r.decr(key)
        if val <= 0:
            r.delete(key)
            return 0
        r.expire(key, settings.SIGNALING_PEERCOUNT_TTL_SEC)
        return int(val)
