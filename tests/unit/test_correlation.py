import pytest

from trust_analytics.models.event import Event
from trust_analytics.services.correlation import (
    CorrelationService,
    TurnSignal,
    VoteSignal,
    coerce_turn_sequence,
    coerce_vote_value,
    extract,
    is_completion_step,
    normalize_relationships,
    read_event,
    resolve_vote_turn_id,
    turns_with_feedback,
)

NOW_MS = 1_700_000_000_000


@pytest.mark.parametrize("raw,expected", [
    ("", None),
    ("abc", None),
    ("0", None),
    ("-5", None),
    ("  123  ", 123),
    ("1.5", None),
    ("2147483648", None),
    (7, 7),
    (0, None),
    (5.0, None),
    (True, None),
    (None, None),
])
def test_coerce_turn_sequence(raw, expected):
    assert coerce_turn_sequence(raw) == expected


def test_extract_fails_closed():
    assert extract(None, "turn_id") is None
    assert extract("not a mapping", "turn_id") is None
    assert extract({"turn_id": ""}, "turn_id") is None
    assert extract({"turn_id": None, "turnId": "t2"}, "turn_id", "turnId") == "t2"


@pytest.mark.parametrize("properties,expected", [
    ({"turn_id": "t1", "turnId": "t2", "promptId": "p1"}, "t1"),
    ({"turnId": "t2", "promptId": "p1"}, "t2"),
    ({"promptId": "p1", "prompt_id": "p2"}, "p1"),
    ({"prompt_id": "p2"}, "p2"),
    ({"turn_id": "   ", "promptId": "p1"}, "p1"),
    ({}, "unknown_turn_evt_1"),
    (None, "unknown_turn_evt_1"),
])
def test_vote_turn_id_precedence(properties, expected):
    assert resolve_vote_turn_id("evt_1", properties) == expected


def test_vote_values():
    assert coerce_vote_value(True) == 1
    assert coerce_vote_value(False) == -1
    assert coerce_vote_value("-1") == -1
    assert coerce_vote_value(1) == 1
    assert coerce_vote_value(0) == 0
    assert coerce_vote_value("up") is None
    assert coerce_vote_value(None) is None


def test_oversized_numbers_are_unreadable():
    assert coerce_vote_value(10 ** 400) is None
    assert coerce_vote_value(-(10 ** 400)) is None
    assert coerce_turn_sequence(10 ** 400) is None
    assert coerce_turn_sequence("9" * 5000) is None

    turn = Event(event_id="e1", user_id="u1", event_type="turn_completed", timestamp=NOW_MS,
                 properties={"turn_id": "t1", "responseTime": 10 ** 400})
    assert read_event(turn).response_time is None

    ended = Event(event_id="e2", user_id="u1", event_type="conversation_ended", timestamp=NOW_MS,
                  properties={"conversationId": "c1", "messageCount": 10 ** 400})
    assert read_event(ended).message_count is None


def test_completion_flags():
    assert is_completion_step({"completed": True})
    assert is_completion_step({"isCompleted": "true"})
    assert is_completion_step({"journeyCompleted": 1})
    assert not is_completion_step({"completed": False})
    assert not is_completion_step({})


def test_normalize_relationships_for_vote():
    relationships = normalize_relationships(
        "vote_cast",
        "evt_9",
        {"promptId": "p1", "conversationId": "c1", "turnSequence": " 4 "}
    )
    assert relationships == {
        "journey_id": None,
        "conversation_id": "c1",
        "turn_sequence": 4,
        "turn_id": "p1",
    }


def test_normalize_relationships_prefers_explicit_columns():
    relationships = normalize_relationships(
        "turn_completed",
        "evt_1",
        {"turn_id": "t1", "conversationId": "from_props", "turn_sequence": "2"},
        conversation_id="explicit",
        turn_sequence=3
    )
    assert relationships["conversation_id"] == "explicit"
    assert relationships["turn_sequence"] == 3
    assert relationships["turn_id"] == "t1"


def test_journey_step_name_goes_to_journey_id():
    relationships = normalize_relationships("journey_step", "e", {"journeyName": "onboarding"})
    assert relationships["journey_id"] == "onboarding"
    assert relationships["turn_id"] is None


def test_read_event_without_structured_reading():
    event = Event(event_id="e1", user_id="u1", event_type="user_action", timestamp=NOW_MS, properties={})
    assert read_event(event) is None


def test_read_event_handles_non_mapping_properties():
    event = Event(event_id="e1", user_id="u1", event_type="vote_cast", timestamp=NOW_MS, properties=None)
    vote = read_event(event)
    assert isinstance(vote, VoteSignal)
    assert vote.turn_id == "unknown_turn_e1"
    assert vote.value is None
    assert not vote.positive


def test_turns_with_feedback_counts_distinct_turns():
    turns = [
        TurnSignal("a", "u", 1, "turn_completed", "t1", None, None, None),
        TurnSignal("b", "u", 2, "turn_completed", "t2", None, None, None),
        TurnSignal("c", "u", 3, "turn_created", "t1", None, None, None),
    ]
    votes = [
        VoteSignal("v1", "u", 4, "t1", 1, None),
        VoteSignal("v2", "u", 5, "t1", -1, None),
        VoteSignal("v3", "u", 6, "t9", 1, None),
    ]
    assert turns_with_feedback(turns, votes) == 1


class TestTurnVoteCorrelation:
    def test_turn_and_legacy_vote(self, store, db_session, make_event):
        store.insert_batch([
            make_event("turn_completed", NOW_MS, event_id="turn_evt", turn_id="t1",
                       conversationId="c1", turnSequence=2),
            make_event("vote_cast", NOW_MS + 10, event_id="vote_evt", promptId="t1", value=1, comment="great"),
        ])

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("t1")

        assert correlation.turn_event_id == "turn_evt"
        assert correlation.vote_event_id == "vote_evt"
        assert correlation.vote_value == 1
        assert correlation.vote_comment == "great"
        assert correlation.conversation_id == "c1"
        assert correlation.turn_sequence == 2

    def test_vote_without_turn(self, store, db_session, make_event):
        store.insert(make_event("vote_cast", NOW_MS, event_id="vote_evt", turn_id="t2", value=-1))

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("t2")

        assert correlation.turn_event_id is None
        assert correlation.turn_timestamp is None
        assert correlation.vote_event_id == "vote_evt"
        assert correlation.vote_value == -1

    def test_turn_without_vote(self, store, db_session, make_event):
        store.insert(make_event("turn_completed", NOW_MS, event_id="turn_evt", turnId="t3"))

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("t3")

        assert correlation.turn_event_id == "turn_evt"
        assert correlation.vote_event_id is None

    def test_neither_side(self, db_session):
        assert CorrelationService(db_session).resolve_turn_vote_correlation("missing") is None

    def test_latest_vote_wins(self, store, db_session, make_event):
        store.insert_batch([
            make_event("vote_cast", NOW_MS, event_id="old", turn_id="t4", value=-1),
            make_event("vote_cast", NOW_MS + 1000, event_id="new", turn_id="t4", value=1),
        ])

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("t4")

        assert correlation.vote_event_id == "new"

    def test_rows_without_normalized_column(self, db_session):
        db_session.add_all([
            Event(event_id="turn_evt", user_id="u1", event_type="turn_completed", timestamp=NOW_MS,
                  properties={"turnId": "t5"}),
            Event(event_id="vote_evt", user_id="u1", event_type="vote_cast", timestamp=NOW_MS + 1,
                  properties={"prompt_id": "t5", "value": 1}),
        ])
        db_session.commit()

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("t5")

        assert correlation.turn_event_id == "turn_evt"
        assert correlation.vote_event_id == "vote_evt"

    def test_synthesized_turn_id(self, db_session):
        db_session.add(Event(event_id="orphan", user_id="u1", event_type="vote_cast", timestamp=NOW_MS,
                             properties={"value": 1}))
        db_session.commit()

        correlation = CorrelationService(db_session).resolve_turn_vote_correlation("unknown_turn_orphan")

        assert correlation.vote_event_id == "orphan"
        assert correlation.turn_event_id is None

    def test_vote_with_explicit_turn_id_not_matched_by_legacy_key(self, store, db_session, make_event):
        # turn_id outranks promptId, so this vote belongs to t7 only
        store.insert(make_event("vote_cast", NOW_MS, event_id="v", turn_id="t7", promptId="t6", value=1))

        service = CorrelationService(db_session)

        assert service.resolve_turn_vote_correlation("t6") is None
        assert service.resolve_turn_vote_correlation("t7").vote_event_id == "v"
