# app/authentication/services.py
from django.contrib.auth import authenticate
from rest_framework_simplejwt.tokens import AccessToken

from app.users.models import User


def _normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def register_user(email: str, password: str) -> User:
    email = _normalize_email(email)
    if not email or not password:
        raise ValueError("VALIDATION_ERROR")
    if User.objects.filter(email=email).exists():
        raise LookupError("EMAIL_ALREADY_USED")
    return User.objects.create_user(email=email, password=password)


def login_user(email: str, password: str) -> User:
    user = authenticate(username=_normalize_email(email), password=password)
    if user is None or not user.is_active:
        raise PermissionError("INVALID_CREDENTIALS")
    return user


def issue_jwt_for_user(user: User) -> str:
    token = AccessToken.for_user(user)
    return str(token)
