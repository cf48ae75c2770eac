# app/rtc/signaling_client.py
"""SignalingConsumer 에 붙는 websocket 클라이언트 (SignalingRelay 구현)."""
import json
import logging
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed

from app.rtc.transport import SignalingEvent

logger = logging.getLogger(__name__)


def parse_frame(frame: dict, me: str) -> list:
    """
    서버 envelope 하나를 SignalingEvent 목록으로.
    내가 보낸 것(그룹 브로드캐스트로 되돌아온 것)은 fromUserId 로 거른다.
    """
    me = str(me)
    msg_type = frame.get("type")
    session_id = frame.get("sessionId")
    sender = frame.get("fromUserId")
    payload = frame.get("payload") or {}

    if msg_type == "snapshot":
        events = []
        initiator = payload.get("initiatorId")
        responder = next((p for p in payload.get("participants", []) if p != initiator), None)
        if payload.get("offer") and initiator != me:
            events.append(SignalingEvent("offer", session_id, initiator, payload["offer"]))
        if payload.get("answer") and responder != me:
            events.append(SignalingEvent("answer", session_id, responder, payload["answer"]))
        for uid, candidates in (payload.get("candidates") or {}).items():
            if uid == me:
                continue
            for candidate in candidates:
                events.append(SignalingEvent("candidate", session_id, uid, candidate))
        return events

    if msg_type in ("offer", "answer", "ice"):
        if str(sender) == me:
            return []
        kind = "candidate" if msg_type == "ice" else msg_type
        return [SignalingEvent(kind, session_id, str(sender), payload)]

    if msg_type == "session-ended":
        return [SignalingEvent("ended", session_id, sender, payload)]

    if msg_type == "peer-left":
        return [SignalingEvent("peer-left", session_id, sender, payload)]

    if msg_type == "error":
        logger.warning("signaling error on %s: %s", session_id, payload)
    return []


class SignalingClient:
    """
    ws://<host>/ws/signaling/<sessionId>/?token=<jwt>

        client = SignalingClient("ws://localhost:8000", session_id, user_id, token)
        await client.open()
        await manager.connect(session_id, role, client)
    """

    def __init__(self, base_url: str, session_id: str, user_id, token: str):
        self.session_id = session_id
        self.user_id = str(user_id)
        self.url = (
            f"{base_url.rstrip('/')}/ws/signaling/{quote(session_id)}/"
            f"?token={quote(token)}"
        )
        self._ws = None

    async def open(self):
        self._ws = await websockets.connect(self.url)
        return self

    async def _send(self, msg_type: str, payload=None):
        if self._ws is None:
            raise RuntimeError("signaling client is not open")
        await self._ws.send(json.dumps({"type": msg_type, "payload": payload or {}}))

    async def publish_offer(self, description: dict) -> None:
        await self._send("offer", description)

    async def publish_answer(self, description: dict) -> None:
        await self._send("answer", description)

    async def append_candidate(self, candidate: dict) -> None:
        await self._send("ice", candidate)

    async def end(self) -> None:
        await self._send("leave")

    async def observe(self):
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("ignoring non-json signaling frame")
                    continue
                for event in parse_frame(frame, self.user_id):
                    yield event
        except ConnectionClosed:
            logger.info("signaling socket for %s closed", self.session_id)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
