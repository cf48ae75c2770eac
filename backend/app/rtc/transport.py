# app/rtc/transport.py
"""
PeerConnectionManager 가 기대하는 외부 협력자 계약.

브라우저의 getUserMedia / RTCPeerConnection 에 해당하는 부분은 구현체를 주입받는다.
"""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional, Protocol


class MediaTrack(Protocol):
    kind: str

    def stop(self) -> None: ...

    def on_ended(self, callback: Callable[["MediaTrack"], None]) -> None: ...


class MediaStream(Protocol):
    tracks: List[MediaTrack]


class MediaDevice(Protocol):
    async def acquire(self, *, audio: bool, video: bool) -> MediaStream:
        """실패 시 MediaAccessError (permission-denied / device-not-found)."""
        ...


class PeerTransport(Protocol):
    remote_description: Optional[dict]

    async def create_offer(self) -> dict: ...

    async def create_answer(self) -> dict: ...

    async def set_local_description(self, description: dict) -> None: ...

    async def set_remote_description(self, description: dict) -> None: ...

    async def add_ice_candidate(self, candidate: dict) -> None: ...

    def add_track(self, track: MediaTrack, stream: MediaStream) -> None: ...

    def on_connection_state_change(self, callback: Callable[[str], None]) -> None: ...

    def on_ice_connection_state_change(self, callback: Callable[[str], None]) -> None: ...

    def on_ice_candidate(self, callback: Callable[[Optional[dict]], None]) -> None: ...

    def on_track(self, callback: Callable[[MediaTrack], None]) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[List[dict]], PeerTransport]


@dataclass
class SignalingEvent:
    kind: str  # offer / answer / candidate / ended / peer-left
    session_id: str
    from_user_id: Optional[str] = None
    payload: Any = field(default=None)


class SignalingRelay(Protocol):
    """세션 하나에 묶인 signaling 채널."""

    session_id: str

    async def publish_offer(self, description: dict) -> None: ...

    async def publish_answer(self, description: dict) -> None: ...

    async def append_candidate(self, candidate: dict) -> None: ...

    def observe(self) -> AsyncIterator[SignalingEvent]: ...

    async def end(self) -> None:
        """세션 삭제 (상대에게 session-ended)."""
        ...

    async def close(self) -> None:
        """구독 해제."""
        ...
