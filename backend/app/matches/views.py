# app/matches/views.py
from django.conf import settings
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from app.common.responses import ok, fail
from app.matches.services import (
    request_match,
    cancel_search,
    end_session,
    current_session,
)


def _session_payload(session, user):
    return {
        "sessionId": session.session_id,
        "mode": session.mode,
        "peerUserId": str(session.peer_of(user.id)),
        "role": session.role_of(user.id),
        "createdAt": session.created_at.isoformat(),
    }


class MatchRequestView(APIView):
    """
    POST /api/match/request
    body: { "mode": "VIDEO" | "TEXT" }
    res : { sessionId, matched, peerUserId, role, mode }
    매칭 안 되면 sessionId=null 로 대기 상태. 결과는 lobby 소켓이나 /current 로 확인.
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        result = request_match(request.user, mode=request.data.get("mode"))
        return ok(result.to_dict())


class MatchCancelView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        session = cancel_search(request.user)
        if session is not None:
            # 취소 전에 이미 매칭됨
            return ok({"cancelled": False, "session": _session_payload(session, request.user)})
        return ok({"cancelled": True, "session": None})


class MatchEndView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        session_id = request.data.get("sessionId") or request.data.get("session_id")
        if not session_id:
            return fail("VALIDATION_ERROR", "sessionId is required")

        # 남의 세션이면 NotSessionParticipant -> 403 (exception handler)
        ended = end_session(session_id, request.user)
        return ok({"ended": True, "wasActive": ended})


class CurrentMatchView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        session = current_session(request.user)
        if session is None:
            return ok({"session": None})
        return ok({"session": _session_payload(session, request.user)})


class RtcConfigView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return ok({"iceServers": settings.RTC_ICE_SERVERS})
