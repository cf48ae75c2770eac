import pytest

from app.matches.models import MatchSession

pytestmark = pytest.mark.django_db


def test_register_then_login(api_client):
    res = api_client.post(
        "/api/auth/register", {"email": "New@Example.com", "password": "pw-12345"}, format="json"
    )
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["data"]["tokenType"] == "Bearer"

    res = api_client.post(
        "/api/auth/login", {"email": "new@example.com", "password": "pw-12345"}, format="json"
    )
    assert res.status_code == 200
    assert res.json()["data"]["userId"] == body["data"]["userId"]


def test_register_duplicate_email(api_client, make_user):
    make_user("taken@example.com")

    res = api_client.post(
        "/api/auth/register", {"email": "taken@example.com", "password": "pw"}, format="json"
    )

    assert res.status_code == 409
    assert res.json()["error"]["code"] == "EMAIL_ALREADY_USED"


def test_login_wrong_password(api_client, make_user):
    make_user("someone@example.com")

    res = api_client.post(
        "/api/auth/login", {"email": "someone@example.com", "password": "nope"}, format="json"
    )

    assert res.status_code == 401
    assert res.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_me(auth_client, make_user):
    user = make_user("me@example.com")

    res = auth_client(user).get("/api/users/me")

    assert res.json()["data"]["userId"] == str(user.id)
    assert res.json()["data"]["email"] == "me@example.com"


def test_requires_token(api_client):
    res = api_client.get("/api/match/current")

    assert res.status_code == 401
    assert res.json() == {
        "success": False,
        "data": None,
        "error": {"code": "UNAUTHORIZED", "message": "Authorization header missing"},
    }


def test_garbage_token(api_client):
    api_client.credentials(HTTP_AUTHORIZATION="Bearer garbage")

    res = api_client.get("/api/match/current")

    assert res.status_code == 401
    assert res.json()["error"]["code"] == "INVALID_TOKEN"


def test_match_flow(auth_client, make_user):
    a, b = make_user(), make_user()
    client_a, client_b = auth_client(a), auth_client(b)

    waiting = client_a.post("/api/match/request", {"mode": "TEXT"}, format="json").json()["data"]
    assert waiting["matched"] is False
    assert waiting["sessionId"] is None
    assert waiting["mode"] == "TEXT"

    paired = client_b.post("/api/match/request", {"mode": "TEXT"}, format="json").json()["data"]
    assert paired["matched"] is True
    assert paired["role"] == "initiator"
    assert paired["peerUserId"] == str(a.id)

    current = client_a.get("/api/match/current").json()["data"]["session"]
    assert current["sessionId"] == paired["sessionId"]
    assert current["role"] == "responder"

    ended = client_a.post("/api/match/end", {"sessionId": paired["sessionId"]}, format="json")
    assert ended.json()["data"] == {"ended": True, "wasActive": True}
    assert client_b.get("/api/match/current").json()["data"]["session"] is None
    assert not MatchSession.objects.exists()


def test_unknown_mode(auth_client, make_user):
    res = auth_client(make_user()).post("/api/match/request", {"mode": "AUDIO"}, format="json")

    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"


def test_cancel(auth_client, make_user):
    client = auth_client(make_user())
    client.post("/api/match/request", {"mode": "VIDEO"}, format="json")

    res = client.post("/api/match/cancel")

    assert res.json()["data"] == {"cancelled": True, "session": None}


def test_end_someone_elses_session(auth_client, make_user, pair):
    a, b, outsider = make_user(), make_user(), make_user()
    session = pair(a, b)

    res = auth_client(outsider).post("/api/match/end", {"sessionId": session.session_id}, format="json")

    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"
    assert MatchSession.objects.filter(pk=session.pk).exists()


def test_end_requires_session_id(auth_client, make_user):
    res = auth_client(make_user()).post("/api/match/end", {}, format="json")

    assert res.status_code == 400


def test_rtc_config(auth_client, make_user, settings):
    res = auth_client(make_user()).get("/api/match/rtc-config")

    assert res.json()["data"]["iceServers"] == settings.RTC_ICE_SERVERS


def test_presence_endpoints(auth_client, make_user):
    a, b = make_user(), make_user()
    client = auth_client(a)

    assert client.post("/api/presence/ping").json()["data"] == {"ok": True}
    assert client.get("/api/presence/online-count").json()["data"] == {"online": 1}

    res = client.get("/api/presence/", {"userIds": f"{a.id},{b.id}"})
    presence = {p["userId"]: p["online"] for p in res.json()["data"]["presence"]}
    assert presence == {str(a.id): True, str(b.id): False}


def test_presence_lookup_needs_ids(auth_client, make_user):
    res = auth_client(make_user()).get("/api/presence/")

    assert res.status_code == 400
