# app/authentication/views.py
import logging

from rest_framework.views import APIView

from app.common.responses import ok, fail
from .services import register_user, login_user, issue_jwt_for_user

logger = logging.getLogger(__name__)


class RegisterView(APIView):
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        email = request.data.get("email")
        password = request.data.get("password")

        if not all([email, password]):
            return fail("VALIDATION_ERROR", "email and password are required")

        try:
            user = register_user(email, password)
        except LookupError:
            return fail("EMAIL_ALREADY_USED", "email already exists", 409)
        except ValueError:
            return fail("VALIDATION_ERROR", "email and password are required")

        logger.info("registered user %s", user.id)
        token = issue_jwt_for_user(user)
        return ok({"userId": str(user.id), "accessToken": token, "tokenType": "Bearer"})


class LoginView(APIView):
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        email = request.data.get("email")
        password = request.data.get("password")
        if not all([email, password]):
            return fail("VALIDATION_ERROR", "email and password are required")

        try:
            user = login_user(email, password)
        except PermissionError:
            return fail("INVALID_CREDENTIALS", "invalid email or password", 401)

        token = issue_jwt_for_user(user)
        return ok({"userId": str(user.id), "accessToken": token, "tokenType": "Bearer"})
