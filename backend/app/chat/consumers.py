import asyncio
import logging

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from app.chat.services import (
    get_text_session,
    end_chat,
    message_log,
    send_message,
    set_typing,
    typing_state,
)
from app.common.errors import MatchError, NotSessionParticipant, SessionNotFound
from app.matches.events import chat_group

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    text chat relay
      - URL: ws://<host>/ws/chat/<sessionId>/?token=<jwt>
      - in : {"type": "message", "text": "...", "timestamp": 1700000000000?}
             {"type": "typing", "typing": true} / {"type": "end"}
      - out: {"type": "messages", "messages": [...]}  (변경 때마다 전체 목록)
             {"type": "typing", "typing": {"<userId>": bool}}
             {"type": "chat-ended", "sessionId": "..."}
    """

    async def connect(self):
        self.session_id = self.scope["url_route"]["kwargs"]["session_id"]
        self.group_name = chat_group(self.session_id)
        self._typing_task = None

        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close(code=4401)
            return

        try:
            session = await database_sync_to_async(get_text_session)(self.session_id, user.id)
        except SessionNotFound:
            await self.close(code=4404)
            return
        except (NotSessionParticipant, MatchError):
            await self.close(code=4403)
            return

        self.user = user
        self.user_id = str(user.id)
        self.participants = session.participants

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        await self.send_json(
            {"type": "messages", "messages": await database_sync_to_async(message_log)(self.session_id)}
        )
        await self.send_json(
            {"type": "typing", "typing": await self._typing_snapshot()}
        )

    async def disconnect(self, close_code):
        user_id = getattr(self, "user_id", None)
        if user_id is None:
            return

        self._cancel_typing_timer()
        await sync_to_async(set_typing)(self.session_id, user_id, False)
        await self._broadcast_typing()
        await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        msg_type = content.get("type")
        try:
            if msg_type == "message":
                await self._message(content.get("text"), content.get("timestamp"))
            elif msg_type == "typing":
                await self._typing(content.get("typing", True) is True)
            elif msg_type == "end":
                await database_sync_to_async(end_chat)(self.session_id, self.user)
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

    async def _message(self, text, timestamp):
        await database_sync_to_async(send_message)(self.session_id, self.user_id, text, timestamp)
        self._cancel_typing_timer()

        messages = await database_sync_to_async(message_log)(self.session_id)
        await self.channel_layer.group_send(
            self.group_name, {"type": "chat.messages", "messages": messages}
        )
        await self._broadcast_typing()

    async def _typing(self, typing: bool):
        await sync_to_async(set_typing)(self.session_id, self.user_id, typing)
        self._cancel_typing_timer()
        if typing:
            self._typing_task = asyncio.create_task(self._clear_typing_after_quiet())
        await self._broadcast_typing()

    async def _clear_typing_after_quiet(self):
        # 마지막 키 입력 후 quiet period 지나면 false 로
        await asyncio.sleep(settings.CHAT_TYPING_QUIET_MS / 1000)
        await sync_to_async(set_typing)(self.session_id, self.user_id, False)
        await self._broadcast_typing()

    def _cancel_typing_timer(self):
        task = self._typing_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._typing_task = None

    async def _typing_snapshot(self):
        return await sync_to_async(typing_state)(self.session_id, self.participants)

    async def _broadcast_typing(self):
        await self.channel_layer.group_send(
            self.group_name, {"type": "chat.typing", "typing": await self._typing_snapshot()}
        )

    async def _send_error(self, code, message):
        await self.send_json({"type": "error", "code": code, "message": message})

    # ---- group handlers ----

    async def chat_messages(self, event):
        await self.send_json({"type": "messages", "messages": event["messages"]})

    async def chat_typing(self, event):
        await self.send_json({"type": "typing", "typing": event["typing"]})

    async def session_ended(self, event):
        if event.get("sessionId") != self.session_id:
            return
        self._cancel_typing_timer()
        await self.send_json({"type": "chat-ended", "sessionId": self.session_id})
        await self.close(code=1000)
