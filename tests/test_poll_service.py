"""Unit tests for the RPC-facing poll ledger service."""

import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from modules.poll_service import PollLedgerService
from modules.poll_store import PollStore

T0 = 1_700_000_000
NODE_PUBKEY = "02" + "ab" * 32


class _MockRpc:
    """Minimal RPC mock that provides getinfo."""

    def __init__(self, pubkey: str = NODE_PUBKEY):
        self._pubkey = pubkey

    def getinfo(self):
        return {"id": self._pubkey}


def _make_service(tmp_path, current_time=None, **kwargs):
    current_time = current_time or [T0]
    store = PollStore(db_path=str(tmp_path / "poll_ledger.db"))
    kwargs.setdefault("rpc", _MockRpc())
    return PollLedgerService(store=store, time_fn=lambda: current_time[0], **kwargs)


def test_create_vote_and_get_poll(tmp_path):
    service = _make_service(tmp_path)

    create = service.create_poll("Pick a color", ["Red", "Blue"], T0, T0 + 3600, creator="A")
    assert create["ok"] is True
    assert create["poll_id"] == 0
    assert create["creator"] == "A"

    vote = service.cast_vote(0, 1, voter="B")
    assert vote["ok"] is True
    assert vote["option_index"] == 1
    assert vote["timestamp"] == T0

    poll = service.get_poll(0)
    assert poll["ok"] is True
    assert poll["poll"]["vote_counts"] == [0, 1]
    assert poll["poll"]["total_votes"] == 1
    assert poll["poll"]["is_active"] is True


def test_rejections_carry_error_kind(tmp_path):
    service = _make_service(tmp_path)
    service.create_poll("Pick a color", ["Red", "Blue"], T0, T0 + 3600, creator="A")
    service.cast_vote(0, 1, voter="B")

    dup = service.cast_vote(0, 0, voter="B")
    assert dup["error"] == "AlreadyVoted"
    assert dup["poll_id"] == 0
    assert dup["voter"] == "B"
    assert "message" in dup

    assert service.cast_vote(0, 5, voter="C")["error"] == "InvalidOption"
    assert service.close_poll(0, caller="B")["error"] == "Unauthorized"

    closed = service.close_poll(0, caller="A")
    assert closed["ok"] is True
    assert closed["is_active"] is False
    assert service.is_poll_open(0)["is_open"] is False
    assert service.cast_vote(0, 0, voter="D")["error"] == "PollNotActive"
    assert service.close_poll(0, caller="A")["error"] == "PollNotActive"


def test_create_validation_errors(tmp_path):
    service = _make_service(tmp_path)

    assert service.create_poll("Q", ["only"], T0, T0 + 1)["error"] == "InvalidOptionCount"
    assert service.create_poll("Q", ["a", "b"], T0, T0)["error"] == "InvalidTimeRange"
    assert service.create_poll("x" * 281, ["a", "b"], T0, T0 + 1)["error"] == "DescriptionTooLong"

    assert "error" in service.create_poll(42, ["a", "b"], T0, T0 + 1)
    assert "error" in service.create_poll("Q", "a,b", T0, T0 + 1)
    assert "error" in service.create_poll("Q", ["a", 2], T0, T0 + 1)
    assert "error" in service.create_poll("Q", ["a", "b"], "soon", T0 + 1)
    assert service.status()["total_polls"] == 0


def test_numeric_strings_are_accepted(tmp_path):
    service = _make_service(tmp_path)

    create = service.create_poll("Strings", ["a", "b"], str(T0), str(T0 + 60), creator="A")
    assert create["ok"] is True
    vote = service.cast_vote("0", "1", voter="B")
    assert vote["ok"] is True
    assert "error" in service.cast_vote("zero", 1, voter="C")
    assert "error" in service.cast_vote(0, True, voter="C")


def test_default_identity_is_node_pubkey(tmp_path):
    service = _make_service(tmp_path)

    create = service.create_poll("Mine", ["a", "b"], T0, T0 + 60)
    assert create["creator"] == NODE_PUBKEY
    vote = service.cast_vote(create["poll_id"], 0)
    assert vote["voter"] == NODE_PUBKEY

    polls = service.get_user_polls()
    assert polls["creator"] == NODE_PUBKEY
    assert polls["poll_ids"] == [0]
    assert service.close_poll(0)["ok"] is True


def test_default_identity_without_rpc(tmp_path):
    service = _make_service(tmp_path, rpc=None)

    create = service.create_poll("Local", ["a", "b"], T0, T0 + 60)
    assert create["creator"] == "local-node"


def test_getinfo_failure_falls_back_and_logs(tmp_path):
    rpc = MagicMock()
    rpc.getinfo.side_effect = RuntimeError("rpc gone")
    logs = []
    service = _make_service(tmp_path, rpc=rpc, logger=lambda msg, level: logs.append((level, msg)))

    create = service.create_poll("Fallback", ["a", "b"], T0, T0 + 60)
    assert create["creator"] == "local-node"
    assert any(level == "warn" and "getinfo failed" in msg for level, msg in logs)


def test_missing_poll_lookups(tmp_path):
    service = _make_service(tmp_path)

    assert service.get_poll(3)["error"] == "PollDoesNotExist"
    assert service.close_poll(3, caller="A")["error"] == "PollDoesNotExist"
    assert service.cast_vote(3, 0, voter="A")["error"] == "PollDoesNotExist"
    assert service.results(3)["error"] == "PollDoesNotExist"
    assert service.is_poll_open(3) == {"ok": True, "poll_id": 3, "is_open": False}


def test_vote_lookups(tmp_path):
    service = _make_service(tmp_path)
    service.create_poll("Lookups", ["a", "b"], T0, T0 + 60, creator="A")
    service.cast_vote(0, 1, voter="B")

    assert service.has_voted(0, voter="B")["has_voted"] is True
    assert service.has_voted(0, voter="C")["has_voted"] is False
    assert service.get_voter_choice(0, voter="B")["option_index"] == 1
    assert service.get_voter_choice(0, voter="C")["error"] == "InvalidOption"

    record = service.get_vote_record(0, voter="B")
    assert record["vote_record"] == {"voter": "B", "poll_id": 0, "option_index": 1, "timestamp": T0}
    assert service.get_vote_record(0, voter="C")["vote_record"] is None


def test_results_my_votes_and_events(tmp_path):
    service = _make_service(tmp_path)
    service.create_poll("Lunch", ["pizza", "tacos"], T0, T0 + 60, creator="A")
    service.cast_vote(0, 0, voter="B")

    results = service.results(0)
    assert results["ok"] is True
    assert results["tally"][0] == {"option_index": 0, "label": "pizza", "votes": 1}
    assert results["voters"] == ["B"]

    mine = service.my_votes(voter="B", limit=10)
    assert mine["count"] == 1
    assert mine["votes"][0]["poll_id"] == 0
    assert "error" in service.my_votes(voter="B", limit=0)

    events = service.events()
    assert [event["topic"] for event in events["events"]] == ["poll_created", "vote_cast"]
    assert service.events(poll_id=5)["count"] == 0
    assert "error" in service.events(limit=-1)


def test_status_counts(tmp_path):
    service = _make_service(tmp_path)
    service.create_poll("One", ["a", "b"], T0, T0 + 60, creator="A")
    service.create_poll("Two", ["a", "b"], T0, T0 + 60, creator="A")
    service.cast_vote(0, 0, voter="B")
    service.close_poll(1, caller="A")

    status = service.status()
    assert status["ok"] is True
    assert status["total_polls"] == 2
    assert status["active_polls"] == 1
    assert status["closed_polls"] == 1
    assert status["total_votes"] == 1
    assert status["node_identity"] == NODE_PUBKEY


def test_notifier_receives_all_topics(tmp_path):
    notifier = MagicMock()
    service = _make_service(tmp_path, notifier=notifier)

    service.create_poll("Notify", ["a", "b"], T0, T0 + 60, creator="A")
    service.cast_vote(0, 0, voter="B")
    service.close_poll(0, caller="A")
    service.cast_vote(0, 1, voter="C")

    topics = [call.args[0] for call in notifier.call_args_list]
    assert topics == ["poll_created", "vote_cast", "poll_closed"]


def test_overlong_identity_rejected(tmp_path):
    service = _make_service(tmp_path)
    service.create_poll("Ids", ["a", "b"], T0, T0 + 60, creator="A")

    result = service.cast_vote(0, 0, voter="v" * 300)
    assert result == {"error": "invalid voter identity"}
    assert service.has_voted(0, voter=123) == {"error": "invalid voter identity"}


def test_integers_beyond_sqlite_range_rejected(tmp_path):
    service = _make_service(tmp_path)
    huge = 2 ** 70

    assert service.get_poll(huge) == {"error": "poll_id must be an integer"}
    assert service.cast_vote(huge, 0, voter="B") == {"error": "poll_id must be an integer"}
    assert service.close_poll(huge, caller="A") == {"error": "poll_id must be an integer"}
    assert service.is_poll_open(str(huge)) == {"error": "poll_id must be an integer"}

    created = service.create_poll("q", ["a", "b"], 0, huge, creator="A")
    assert created == {"error": "start_time and end_time must be unix timestamps"}
    assert service.create_poll("q", ["a", "b"], -huge, 10, creator="A")["error"]

    edge = service.create_poll("q", ["a", "b"], 0, 2 ** 63 - 1, creator="A")
    assert edge["ok"] is True
    assert service.cast_vote(0, huge, voter="B") == {"error": "option_index must be an integer"}


def test_text_that_is_not_utf8_encodable_rejected(tmp_path):
    service = _make_service(tmp_path)

    bad_description = service.create_poll("\ud800", ["a", "b"], 0, 10, creator="A")
    assert bad_description == {"error": "description and options must be valid UTF-8 text"}
    bad_option = service.create_poll("q", ["a", "\udfff"], 0, 10, creator="A")
    assert bad_option == {"error": "description and options must be valid UTF-8 text"}
    assert service.create_poll("q", ["a", "b"], 0, 10, creator="\ud800") == {
        "error": "invalid creator identity"
    }
    assert service.status()["total_polls"] == 0

    service.create_poll("q", ["a", "b"], T0, T0 + 10, creator="A")
    assert service.cast_vote(0, 0, voter="\ud800") == {"error": "invalid voter identity"}
