import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator

from app.common.errors import SessionNotFound
from app.config.asgi import application
from app.matches import consumers as signaling_consumers
from app.matches.models import AvailabilityEntry, MatchSession

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}


async def open_socket(path, token=None):
    if token is not None:
        path = f"{path}?token={token}"
    communicator = WebsocketCommunicator(application, path)
    connected, code = await communicator.connect()
    assert connected, code
    return communicator


async def receive_until(communicator, msg_type, predicate=None, timeout=2):
    while True:
        message = await communicator.receive_json_from(timeout=timeout)
        if message.get("type") == msg_type and (predicate is None or predicate(message)):
            return message


@database_sync_to_async
def live_sessions():
    return list(MatchSession.objects.values_list("session_id", flat=True))


@database_sync_to_async
def entry_count(user):
    return AvailabilityEntry.objects.filter(user=user).count()


@pytest.fixture
def alice(make_user, token_for):
    user = make_user("alice@example.com")
    return user, token_for(user)


@pytest.fixture
def bob(make_user, token_for):
    user = make_user("bob@example.com")
    return user, token_for(user)


# ---- lobby ----


async def test_lobby_rejects_missing_token():
    communicator = WebsocketCommunicator(application, "/ws/lobby/")
    connected, code = await communicator.connect()

    assert not connected
    assert code == 4401


async def test_lobby_rejects_bad_token():
    communicator = WebsocketCommunicator(application, "/ws/lobby/?token=not-a-jwt")
    connected, code = await communicator.connect()

    assert not connected
    assert code == 4401


async def test_lobby_ping(alice):
    _, token = alice
    lobby = await open_socket("/ws/lobby/", token)

    await lobby.send_json_to({"type": "ping"})
    assert await lobby.receive_json_from() == {"type": "pong"}

    await lobby.send_json_to({"type": "dance"})
    error = await lobby.receive_json_from()
    assert error["type"] == "error"
    assert error["code"] == "VALIDATION_ERROR"
    await lobby.disconnect()


async def test_two_finders_are_paired_once(alice, bob):
    (a, a_token), (b, b_token) = alice, bob
    lobby_a = await open_socket("/ws/lobby/", a_token)
    lobby_b = await open_socket("/ws/lobby/", b_token)

    await lobby_a.send_json_to({"type": "find", "mode": "VIDEO"})
    await lobby_b.send_json_to({"type": "find", "mode": "VIDEO"})

    matched_a = await receive_until(lobby_a, "matched")
    matched_b = await receive_until(lobby_b, "matched")

    assert matched_a["sessionId"] == matched_b["sessionId"]
    assert matched_a["peerUserId"] == str(b.id)
    assert matched_b["peerUserId"] == str(a.id)
    assert {matched_a["role"], matched_b["role"]} == {"initiator", "responder"}
    assert await live_sessions() == [matched_a["sessionId"]]

    # 한쪽이 끊기면 서버가 세션 정리
    await lobby_a.disconnect()
    ended = await receive_until(lobby_b, "session-ended")
    assert ended["sessionId"] == matched_a["sessionId"]
    assert await live_sessions() == []
    assert await entry_count(b) == 0
    await lobby_b.disconnect()


async def test_search_times_out(alice, settings):
    settings.MATCH_SEARCH_TIMEOUT_SEC = 0.1
    a, token = alice
    lobby = await open_socket("/ws/lobby/", token)

    await lobby.send_json_to({"type": "find", "mode": "TEXT"})
    assert await lobby.receive_json_from() == {"type": "searching", "mode": "TEXT"}

    no_match = await lobby.receive_json_from(timeout=2)
    assert no_match == {"type": "no-match", "code": "NO_MATCH", "message": "No match found, try again."}
    assert await entry_count(a) == 0
    await lobby.disconnect()


async def test_cancel_search(alice):
    a, token = alice
    lobby = await open_socket("/ws/lobby/", token)

    await lobby.send_json_to({"type": "find", "mode": "VIDEO"})
    await receive_until(lobby, "searching")
    await lobby.send_json_to({"type": "cancel"})

    assert await lobby.receive_json_from() == {"type": "search-cancelled"}
    assert await entry_count(a) == 0
    await lobby.disconnect()


async def test_end_unknown_session_still_acknowledged(alice):
    _, token = alice
    lobby = await open_socket("/ws/lobby/", token)

    await lobby.send_json_to({"type": "end", "sessionId": "1_2"})

    ended = await lobby.receive_json_from()
    assert ended["type"] == "session-ended"
    assert ended["sessionId"] == "1_2"
    await lobby.disconnect()


# ---- signaling ----


async def test_signaling_rejects_outsider(alice, bob, make_user, token_for, pair):
    (a, _), (b, _) = alice, bob
    session = await database_sync_to_async(pair)(a, b)
    outsider = await database_sync_to_async(make_user)()

    communicator = WebsocketCommunicator(
        application, f"/ws/signaling/{session.session_id}/?token={token_for(outsider)}"
    )
    connected, code = await communicator.connect()

    assert not connected
    assert code == 4403


async def test_signaling_unknown_session(alice):
    _, token = alice
    communicator = WebsocketCommunicator(application, f"/ws/signaling/1_2/?token={token}")
    connected, code = await communicator.connect()

    assert not connected
    assert code == 4404


async def test_signaling_relay_and_snapshot(alice, bob, pair):
    (a, a_token), (b, b_token) = alice, bob
    session = await database_sync_to_async(pair)(a, b)
    sid = session.session_id
    path = f"/ws/signaling/{sid}/"

    initiator = await open_socket(path, b_token)
    joined = await initiator.receive_json_from()
    assert joined["type"] == "joined"
    assert joined["payload"] == {"peerCount": 1}
    snapshot = await receive_until(initiator, "snapshot")
    assert snapshot["payload"]["offer"] is None
    assert snapshot["payload"]["initiatorId"] == str(b.id)

    await initiator.send_json_to({"type": "offer", "payload": OFFER})
    echo = await receive_until(initiator, "offer")
    assert echo["fromUserId"] == str(b.id)

    # 늦게 들어온 responder 는 snapshot 으로 offer 를 받음
    responder = await open_socket(path, a_token)
    snapshot = await receive_until(responder, "snapshot")
    assert snapshot["payload"]["offer"] == OFFER
    await receive_until(initiator, "peer-joined")

    await responder.send_json_to({"type": "answer", "payload": ANSWER})
    answer = await receive_until(initiator, "answer")
    assert answer["payload"] == ANSWER
    assert answer["fromUserId"] == str(a.id)

    candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"}
    await responder.send_json_to({"type": "ice", "payload": candidate})
    ice = await receive_until(initiator, "ice")
    assert ice["payload"] == candidate

    await responder.send_json_to({"type": "offer", "payload": OFFER})
    error = await receive_until(responder, "error")
    assert error["payload"]["code"] == "SIGNALING_ORDER"

    await initiator.send_json_to({"type": "leave"})
    await receive_until(initiator, "session-ended")
    await receive_until(responder, "session-ended")
    assert await live_sessions() == []

    await initiator.disconnect()
    await responder.disconnect()


# ---- chat ----


async def test_chat_messages_and_typing(alice, bob, pair, settings):
    settings.CHAT_TYPING_QUIET_MS = 50
    (a, a_token), (b, b_token) = alice, bob
    session = await database_sync_to_async(pair)(a, b, "TEXT")
    path = f"/ws/chat/{session.session_id}/"

    chat_a = await open_socket(path, a_token)
    assert await chat_a.receive_json_from() == {"type": "messages", "messages": []}
    chat_b = await open_socket(path, b_token)
    await receive_until(chat_b, "messages")

    await chat_a.send_json_to({"type": "message", "text": "second", "timestamp": 2000})
    await chat_b.send_json_to({"type": "message", "text": "first", "timestamp": 1000})
    log = await receive_until(chat_b, "messages", lambda m: len(m["messages"]) == 2)
    assert [m["text"] for m in log["messages"]] == ["first", "second"]
    assert log["messages"][1]["senderId"] == str(a.id)

    await chat_a.send_json_to({"type": "typing", "typing": True})
    await receive_until(chat_b, "typing", lambda m: m["typing"][str(a.id)] is True)
    await receive_until(chat_b, "typing", lambda m: m["typing"][str(a.id)] is False)

    await chat_b.send_json_to({"type": "end"})
    assert (await receive_until(chat_a, "chat-ended"))["sessionId"] == session.session_id
    await receive_until(chat_b, "chat-ended")
    assert await live_sessions() == []

    await chat_a.disconnect()
    await chat_b.disconnect()


async def test_chat_rejects_video_session(alice, bob, pair):
    (a, a_token), (b, _) = alice, bob
    session = await database_sync_to_async(pair)(a, b, "VIDEO")

    communicator = WebsocketCommunicator(
        application, f"/ws/chat/{session.session_id}/?token={a_token}"
    )
    connected, code = await communicator.connect()

    assert not connected
    assert code == 4403


async def test_repeated_find_while_matched_repeats_match(alice, bob):
    (a, a_token), (b, b_token) = alice, bob
    lobby_a = await open_socket("/ws/lobby/", a_token)
    lobby_b = await open_socket("/ws/lobby/", b_token)

    await lobby_a.send_json_to({"type": "find", "mode": "TEXT"})
    await receive_until(lobby_a, "searching")
    await lobby_b.send_json_to({"type": "find", "mode": "TEXT"})
    first = await receive_until(lobby_a, "matched")

    await lobby_a.send_json_to({"type": "find", "mode": "TEXT"})
    again = await receive_until(lobby_a, "matched")

    assert again == first
    assert again["role"] == "responder"
    await lobby_a.disconnect()
    await lobby_b.disconnect()


async def test_signaling_non_object_frame(alice, bob, pair):
    (a, a_token), (b, _) = alice, bob
    session = await database_sync_to_async(pair)(a, b)
    socket = await open_socket(f"/ws/signaling/{session.session_id}/", a_token)
    await receive_until(socket, "snapshot")

    await socket.send_to(text_data="[1, 2]")
    error = await receive_until(socket, "error")
    assert error["payload"]["code"] == "VALIDATION_ERROR"

    # 소켓은 계속 살아 있음
    await socket.send_json_to({"type": "join"})
    assert (await receive_until(socket, "joined"))["payload"] == {"peerCount": 1}
    await socket.disconnect()


async def test_signaling_session_gone_during_connect(alice, bob, pair, monkeypatch):
    (a, a_token), (b, _) = alice, bob
    session = await database_sync_to_async(pair)(a, b)

    def session_vanished(session_id, user_id):
        raise SessionNotFound()

    monkeypatch.setattr(signaling_consumers, "signaling_snapshot", session_vanished)
    socket = await open_socket(f"/ws/signaling/{session.session_id}/", a_token)

    while True:
        output = await socket.receive_output(timeout=2)
        if output["type"] == "websocket.close":
            break
    assert output["code"] == 4404
    await socket.disconnect()


async def test_chat_typing_needs_a_real_boolean(alice, bob, pair):
    (a, a_token), (b, _) = alice, bob
    session = await database_sync_to_async(pair)(a, b, "TEXT")
    chat = await open_socket(f"/ws/chat/{session.session_id}/", a_token)
    await receive_until(chat, "typing")

    await chat.send_json_to({"type": "typing", "typing": "false"})
    state = await receive_until(chat, "typing")
    assert state["typing"][str(a.id)] is False

    await chat.send_json_to({"type": "typing", "typing": True})
    state = await receive_until(chat, "typing")
    assert state["typing"][str(a.id)] is True
    await chat.disconnect()
