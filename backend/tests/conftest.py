import itertools

import fakeredis
import pytest
from channels.layers import channel_layers
from rest_framework.test import APIClient

from app.authentication.services import issue_jwt_for_user
from app.common import redis_client
from app.matches.services import request_match

_emails = itertools.count(1)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    monkeypatch.setattr(redis_client, "_redis", client)
    return client


@pytest.fixture(autouse=True)
def fresh_channel_layer():
    # InMemoryChannelLayer 큐가 이전 테스트의 event loop 에 묶이지 않게
    channel_layers.backends.clear()
    yield
    channel_layers.backends.clear()


@pytest.fixture
def make_user(django_user_model):
    def _make(email=None, password="pw-12345"):
        email = email or f"user{next(_emails)}@example.com"
        return django_user_model.objects.create_user(email=email, password=password)

    return _make


@pytest.fixture
def token_for():
    return issue_jwt_for_user


@pytest.fixture
def pair():
    """a 가 먼저 대기, b 가 매칭을 성사시킴 -> b 가 initiator."""

    def _pair(a, b, mode="VIDEO"):
        request_match(a, mode=mode)
        result = request_match(b, mode=mode)
        assert result.matched
        return result.session

    return _pair


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(token_for):
    def _client(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_for(user)}")
        return client

    return _client
