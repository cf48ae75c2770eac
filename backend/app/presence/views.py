# app/presence/views.py
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from app.common.responses import ok, fail
from .services import mark_online, get_presence, online_count

MAX_LOOKUP = 100


class PresencePingView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        mark_online(request.user.id)
        return ok({"ok": True})


class OnlineCountView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return ok({"online": online_count()})


class PresenceLookupView(APIView):
    permission_classes = [IsAuthenticated]

    # GET /api/presence?userIds=1,2,3
    def get(self, request):
        raw = request.query_params.get("userIds", "")
        user_ids = [u.strip() for u in raw.split(",") if u.strip()]
        if not user_ids:
            return fail("VALIDATION_ERROR", "userIds is required")
        if len(user_ids) > MAX_LOOKUP:
            return fail("VALIDATION_ERROR", f"at most {MAX_LOOKUP} userIds")

        return ok({"presence": [rec.to_dict() for rec in get_presence(user_ids)]})
