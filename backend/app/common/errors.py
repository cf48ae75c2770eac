# app/common/errors.py
"""
매칭/시그널링 도메인 에러.

프레임워크 import 없이 유지 (app.rtc 클라이언트도 같이 씀).
REST 에서는 app.common.exceptions 핸들러가 envelope 으로 바꾸고,
WebSocket consumer 에서는 {"type": "error", ...} 프레임으로 내려보낸다.
"""


class MatchError(Exception):
    code = "MATCH_ERROR"
    message = "matchmaking error"
    http_status = 400

    def __init__(self, message=None, *, code=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if code:
            self.code = code

    def as_payload(self):
        return {"code": self.code, "message": self.message}


class InvalidMessage(MatchError):
    code = "VALIDATION_ERROR"
    message = "invalid request"


class SessionNotFound(MatchError):
    code = "SESSION_NOT_FOUND"
    message = "session not found"
    http_status = 404


class NotSessionParticipant(MatchError):
    code = "FORBIDDEN"
    message = "not your session"
    http_status = 403


class SignalingOrderError(MatchError):
    """answer 가 offer 보다 먼저 오거나, 역할이 맞지 않는 signaling 쓰기."""

    code = "SIGNALING_ORDER"
    message = "signaling message out of order"
    http_status = 409


class RaceCollision(MatchError):
    """두 initiator 가 같은 상대를 동시에 잡은 경우."""

    code = "RACE_COLLISION"
    message = "partner was taken by another pairing"
    http_status = 409


class SignalingTimeout(MatchError):
    code = "NO_MATCH"
    message = "No match found, try again."
    http_status = 408


class StaleSubscription(MatchError):
    code = "STALE_SUBSCRIPTION"
    message = "event belongs to a session that is no longer active"


class MediaAccessError(MatchError):
    PERMISSION_DENIED = "permission-denied"
    DEVICE_NOT_FOUND = "device-not-found"

    code = "MEDIA_ACCESS"
    message = "Failed to access camera/mic."

    def __init__(self, reason=PERMISSION_DENIED, message=None):
        if message is None:
            detail = {
                self.PERMISSION_DENIED: "Permission denied.",
                self.DEVICE_NOT_FOUND: "No device found.",
            }.get(reason, reason)
            message = f"Failed to access camera/mic. {detail}"
        super().__init__(message)
        self.reason = reason


class ConnectionFailure(MatchError):
    code = "CONNECTION_FAILURE"
    message = "peer connection failed"
