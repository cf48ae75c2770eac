# app/rtc/peer.py
"""
Peer connection 상태 머신 (클라이언트 쪽).

idle -> acquiring-media -> connection-created -> offering | answering
     -> ice-negotiating -> connected
어느 상태에서든 disconnect / track ended / ICE failed / connection failed 면 closed.
"""
import asyncio
import enum
import json
import logging
from typing import Callable, List, Optional

from app.common.errors import ConnectionFailure, MediaAccessError, StaleSubscription
from app.rtc.transport import (
    MediaDevice,
    MediaStream,
    SignalingEvent,
    SignalingRelay,
    TransportFactory,
)

logger = logging.getLogger(__name__)

INITIATOR = "initiator"
RESPONDER = "responder"

DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
]

TERMINAL_CONNECTION_STATES = ("failed", "disconnected", "closed")


class PeerState(str, enum.Enum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    CONNECTION_CREATED = "connection-created"
    OFFERING = "offering"
    ANSWERING = "answering"
    ICE_NEGOTIATING = "ice-negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


def _candidate_key(candidate) -> str:
    return json.dumps(candidate, sort_keys=True)


class PeerConnectionManager:
    """
    로컬 미디어와 peer connection 하나를 끝까지(또는 실패까지) 끌고 간다.

    사용 순서:
        manager = PeerConnectionManager(user_id, media=..., transport_factory=...)
        await manager.acquire_media()          # 선택: 검색 전에 카메라 권한부터
        await manager.connect(session_id, role, relay)
        ...
        await manager.close()

    실패는 on_error 콜백으로 알리고 teardown 한다 (예외로 올리지 않음).
    단 acquire_media 의 MediaAccessError 는 호출자에게 그대로 올라간다.
    """

    def __init__(
        self,
        user_id,
        *,
        media: MediaDevice,
        transport_factory: TransportFactory,
        ice_servers: Optional[List[dict]] = None,
        on_state_change: Optional[Callable[[PeerState], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_remote_track: Optional[Callable] = None,
    ):
        self.user_id = str(user_id)
        self._media = media
        self._transport_factory = transport_factory
        self._ice_servers = ice_servers or DEFAULT_ICE_SERVERS
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._on_remote_track = on_remote_track
        self.reset()

    def reset(self):
        """closed 이후 수동 재시도용. 자동 재연결은 없음."""
        self.state = PeerState.IDLE
        self.session_id = None
        self.role = None
        self.relay: Optional[SignalingRelay] = None
        self.local_stream: Optional[MediaStream] = None
        self.remote_tracks = []
        self.pc = None
        self.applied_candidates = []
        self._pending_candidates = []
        self._seen_candidates = set()
        self._remote_description_set = False
        self._listener = None
        self._tasks = set()
        self._closing = False

    # ---- state ----

    def _set_state(self, state: PeerState):
        if self.state is state:
            return
        logger.debug("peer %s: %s -> %s", self.user_id, self.state.value, state.value)
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    @property
    def closed(self) -> bool:
        return self.state is PeerState.CLOSED

    # ---- media ----

    async def acquire_media(self) -> MediaStream:
        if self.local_stream is not None:
            return self.local_stream
        if self.closed:
            raise ConnectionFailure("peer connection is closed, reset() first")

        self._set_state(PeerState.ACQUIRING_MEDIA)
        try:
            stream = await self._media.acquire(audio=True, video=True)
        except MediaAccessError as exc:
            logger.warning("media access failed for %s: %s", self.user_id, exc.message)
            await self.close()
            raise

        self.local_stream = stream
        for track in stream.tracks:
            track.on_ended(self._on_local_track_ended)
        return stream

    # ---- connect ----

    async def connect(self, session_id, role: str, relay: SignalingRelay):
        if self.closed:
            raise ConnectionFailure("peer connection is closed, reset() first")
        if role not in (INITIATOR, RESPONDER):
            raise ValueError(f"unknown role {role!r}")

        self.session_id = session_id
        self.role = role
        self.relay = relay

        # 권한 실패면 여기서 close() -> relay.end() 까지 하고 MediaAccessError
        await self.acquire_media()

        self.pc = self._transport_factory(self._ice_servers)
        self.pc.on_connection_state_change(self._on_connection_state)
        self.pc.on_ice_connection_state_change(self._on_ice_connection_state)
        self.pc.on_ice_candidate(self._on_local_candidate)
        self.pc.on_track(self._on_track)
        for track in self.local_stream.tracks:
            self.pc.add_track(track, self.local_stream)
        self._set_state(PeerState.CONNECTION_CREATED)

        self._listener = asyncio.ensure_future(self._consume(relay.observe()))

        if role == INITIATOR:
            self._set_state(PeerState.OFFERING)
            try:
                offer = await self.pc.create_offer()
                await self.pc.set_local_description(offer)
                await relay.publish_offer(offer)
            except Exception as exc:
                logger.exception("offer failed on %s", session_id)
                await self._fail(ConnectionFailure(f"offer failed: {exc}"))
        else:
            # offer 가 올 때까지 구독만 하고 기다림
            self._set_state(PeerState.ANSWERING)

    # ---- signaling events ----

    async def _consume(self, events):
        try:
            async for event in events:
                if self.closed or event.session_id != self.session_id:
                    # teardown 이후 늦게 도착한 콜백
                    logger.debug("dropping %s event: %s", event.kind, StaleSubscription())
                    continue
                await self._handle(event)
                if self.closed:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("signaling failure on %s", self.session_id)
            await self._fail(ConnectionFailure(f"signaling failed: {exc}"))
            return

        if not self.closed:
            await self._fail(ConnectionFailure("signaling channel closed"))

    async def _handle(self, event: SignalingEvent):
        if event.kind == "ended":
            await self.close(end_session=False)
            return
        if event.from_user_id == self.user_id:
            return

        if event.kind == "offer" and self.role == RESPONDER:
            if self._remote_description_set:
                return
            await self._apply_remote_description(event.payload)
            answer = await self.pc.create_answer()
            await self.pc.set_local_description(answer)
            await self.relay.publish_answer(answer)
            self._set_state(PeerState.ICE_NEGOTIATING)
        elif event.kind == "answer" and self.role == INITIATOR:
            if self._remote_description_set:
                return
            await self._apply_remote_description(event.payload)
            self._set_state(PeerState.ICE_NEGOTIATING)
        elif event.kind == "candidate":
            await self._receive_candidate(event.payload)

    async def _apply_remote_description(self, description):
        # 한 번 세팅된 remote description 은 덮어쓰지 않음
        await self.pc.set_remote_description(description)
        self._remote_description_set = True
        await self._flush_candidates()

    async def _receive_candidate(self, candidate):
        key = _candidate_key(candidate)
        if key in self._seen_candidates:
            return
        self._seen_candidates.add(key)

        if not self._remote_description_set:
            self._pending_candidates.append(candidate)
            return
        await self._apply_candidate(candidate)

    async def _flush_candidates(self):
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate):
        try:
            await self.pc.add_ice_candidate(candidate)
        except Exception as exc:
            # 후보 하나 실패는 치명적이지 않음
            logger.warning("could not apply ICE candidate on %s: %s", self.session_id, exc)
            return
        self.applied_candidates.append(candidate)

    # ---- transport callbacks ----

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_local_candidate(self, candidate):
        if candidate is None or self.closed:
            return
        self._spawn(self._forward_candidate(candidate))

    async def _forward_candidate(self, candidate):
        try:
            await self.relay.append_candidate(candidate)
        except Exception as exc:
            logger.warning("error sending ICE candidate on %s: %s", self.session_id, exc)

    def _on_connection_state(self, state: str):
        if state == "connected":
            self._set_state(PeerState.CONNECTED)
        elif state in TERMINAL_CONNECTION_STATES:
            self._spawn(self._fail(ConnectionFailure(f"connection {state}")))

    def _on_ice_connection_state(self, state: str):
        if state == "failed":
            self._spawn(self._fail(ConnectionFailure("ICE negotiation failed")))

    def _on_local_track_ended(self, track):
        self._spawn(self._fail(ConnectionFailure(f"{track.kind} track ended")))

    def _on_track(self, track):
        self.remote_tracks.append(track)
        if self._on_remote_track is not None:
            self._on_remote_track(track)

    # ---- teardown ----

    async def _fail(self, error: Exception):
        if self.closed or self._closing:
            return
        logger.info("peer %s failing on %s: %s", self.user_id, self.session_id, error)
        if self._on_error is not None:
            self._on_error(error)
        await self.close()

    async def close(self, *, end_session: bool = True):
        """
        track 정지, connection close, 세션/availability 정리(relay.end).
        여러 번 불려도 한 번만 수행. 앞 단계가 실패해도 relay.end 는 항상 시도.
        """
        if self.closed or self._closing:
            return
        self._closing = True
        current = asyncio.current_task()
        try:
            if self._listener is not None and self._listener is not current:
                self._listener.cancel()
            for task in list(self._tasks):
                if task is not current:
                    task.cancel()

            tracks = list(self.local_stream.tracks) if self.local_stream is not None else []
            for track in tracks + self.remote_tracks:
                try:
                    track.stop()
                except Exception as exc:
                    logger.warning("could not stop %s track: %s", track.kind, exc)

            if self.pc is not None:
                try:
                    await self.pc.close()
                except Exception as exc:
                    logger.warning("peer connection close failed on %s: %s", self.session_id, exc)
        finally:
            try:
                await self._release_relay(end_session)
            finally:
                self._closing = False
                self._set_state(PeerState.CLOSED)

    async def _release_relay(self, end_session: bool):
        if self.relay is None:
            return
        if end_session:
            try:
                await self.relay.end()
            except Exception as exc:
                logger.warning("could not end session %s: %s", self.session_id, exc)
        try:
            await self.relay.close()
        except Exception as exc:
            logger.warning("could not close signaling for %s: %s", self.session_id, exc)
