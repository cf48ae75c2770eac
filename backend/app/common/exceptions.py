# app/common/exceptions.py
import logging

from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

from app.common.errors import MatchError

logger = logging.getLogger(__name__)


def _envelope(code: str, message: str):
    return {"success": False, "data": None, "error": {"code": code, "message": message}}


def custom_exception_handler(exc, context):
    # 도메인 에러는 DRF 가 모르니 여기서 직접 응답 생성
    if isinstance(exc, MatchError):
        logger.info("match error %s: %s", exc.code, exc.message)
        return Response(
            {"success": False, "data": None, "error": exc.as_payload()},
            status=exc.http_status,
        )

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(exc, (InvalidToken, TokenError)):
        response.data = _envelope("INVALID_TOKEN", "Invalid token")
    elif isinstance(exc, NotAuthenticated):
        response.data = _envelope("UNAUTHORIZED", "Authorization header missing")
    elif isinstance(exc, PermissionDenied):
        response.data = _envelope("FORBIDDEN", "Permission denied")

    return response
