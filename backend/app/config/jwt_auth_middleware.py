# app/config/jwt_auth_middleware.py
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from django.contrib.auth.models import AnonymousUser

from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_from_token(token: str):
    """
    SimpleJWT 토큰 검증 후 유저 반환.
    실패 시 AnonymousUser 반환.
    """
    try:
        jwt_auth = JWTAuthentication()
        validated = jwt_auth.get_validated_token(token)
        return jwt_auth.get_user(validated)
    except (InvalidToken, TokenError, AuthenticationFailed) as exc:
        logger.debug("websocket token rejected: %s", exc)
        return AnonymousUser()


def _token_from_scope(scope):
    # 1) ws://.../?token=xxx
    qs = parse_qs(scope.get("query_string", b"").decode())
    token_list = qs.get("token", [])
    if token_list:
        return token_list[0]

    # 2) Authorization: Bearer xxx (브라우저 밖 클라이언트용)
    for name, value in scope.get("headers", []):
        if name == b"authorization":
            raw = value.decode()
            if raw.lower().startswith("bearer "):
                return raw.split(" ", 1)[1]
    return None


class JwtAuthMiddleware:
    """
    ?token=xxx 또는 Authorization 헤더로 들어오는 JWT를 검증해서 scope['user']에 세팅
    """

    def __init__(self, inner):
        self.inner = inner

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        token = _token_from_scope(scope)

        if token:
            scope["user"] = await get_user_from_token(token)
        else:
            scope["user"] = AnonymousUser()

        return await self.inner(scope, receive, send)


def JwtAuthMiddlewareStack(inner):
    return JwtAuthMiddleware(inner)
