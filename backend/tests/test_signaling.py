import pytest

from app.common.errors import (
    InvalidMessage,
    NotSessionParticipant,
    SessionNotFound,
    SignalingOrderError,
)
from app.matches.signaling import (
    append_candidate,
    publish_answer,
    publish_offer,
    signaling_snapshot,
)

pytestmark = pytest.mark.django_db

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}
CANDIDATE = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}


@pytest.fixture
def call(make_user, pair):
    waiting, initiator = make_user(), make_user()
    session = pair(waiting, initiator)
    return session, initiator, waiting


def test_offer_is_written_once(call):
    session, initiator, _ = call

    assert publish_offer(session.session_id, initiator.id, OFFER) is True
    assert publish_offer(session.session_id, initiator.id, {"type": "offer", "sdp": "v=0 other"}) is False

    session.refresh_from_db()
    assert session.offer == OFFER


def test_only_initiator_offers(call):
    session, _, responder = call

    with pytest.raises(SignalingOrderError):
        publish_offer(session.session_id, responder.id, OFFER)


def test_answer_needs_an_offer(call):
    session, _, responder = call

    with pytest.raises(SignalingOrderError):
        publish_answer(session.session_id, responder.id, ANSWER)


def test_answer_is_written_once(call):
    session, initiator, responder = call
    publish_offer(session.session_id, initiator.id, OFFER)

    assert publish_answer(session.session_id, responder.id, ANSWER) is True
    assert publish_answer(session.session_id, responder.id, ANSWER) is False
    with pytest.raises(SignalingOrderError):
        publish_answer(session.session_id, initiator.id, ANSWER)


def test_description_without_sdp_is_rejected(call):
    session, initiator, _ = call

    with pytest.raises(InvalidMessage):
        publish_offer(session.session_id, initiator.id, {"type": "offer"})
    with pytest.raises(InvalidMessage):
        publish_offer(session.session_id, initiator.id, {"type": "answer", "sdp": "x"})


def test_candidates_accumulate_per_participant(call):
    session, initiator, responder = call
    second = dict(CANDIDATE, candidate="candidate:2 1 udp 1 10.0.0.2 5001 typ host")

    append_candidate(session.session_id, initiator.id, CANDIDATE)
    append_candidate(session.session_id, initiator.id, second)
    append_candidate(session.session_id, responder.id, CANDIDATE)

    snapshot = signaling_snapshot(session.session_id, responder.id)
    assert snapshot["candidates"][str(initiator.id)] == [CANDIDATE, second]
    assert snapshot["candidates"][str(responder.id)] == [CANDIDATE]


def test_malformed_candidate_is_rejected(call):
    session, initiator, _ = call

    with pytest.raises(InvalidMessage):
        append_candidate(session.session_id, initiator.id, "candidate:1")


def test_snapshot_contents(call):
    session, initiator, responder = call
    publish_offer(session.session_id, initiator.id, OFFER)

    snapshot = signaling_snapshot(session.session_id, initiator.id)

    assert snapshot["sessionId"] == session.session_id
    assert snapshot["initiatorId"] == str(initiator.id)
    assert set(snapshot["participants"]) == {str(initiator.id), str(responder.id)}
    assert snapshot["offer"] == OFFER
    assert snapshot["answer"] is None


def test_outsider_cannot_signal(call, make_user):
    session, _, _ = call
    outsider = make_user()

    with pytest.raises(NotSessionParticipant):
        append_candidate(session.session_id, outsider.id, CANDIDATE)


def test_unknown_session(make_user):
    with pytest.raises(SessionNotFound):
        signaling_snapshot("1_2", make_user().id)
