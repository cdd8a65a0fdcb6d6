"""Vote admission, tallies and the append-only vote record index."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from modules.poll_errors import (
    AlreadyVoted,
    InvalidOption,
    PollEnded,
    PollNotActive,
    PollNotStarted,
)
from modules.poll_models import PollEvent, VoteRecord
from modules.poll_registry import TOPIC_VOTE_CAST, PollRegistry

MAX_HISTORY_LIMIT = 500
MAX_EVENTS_LIMIT = 1_000


class VoteLedger:
    """Admits at most one vote per identity per poll and keeps tallies in step."""

    def __init__(
        self,
        registry: PollRegistry,
        logger: Optional[Callable[[str, str], None]] = None,
    ):
        self.registry = registry
        self.store = registry.store
        self._logger = logger

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def cast_vote(self, poll_id: int, option_index: int, voter: str) -> VoteRecord:
        with self.registry.lock:
            now_ts = self.registry.now()
            # Checks and writes share one write transaction.
            with self.store.transaction():
                poll = self.registry.require_poll(poll_id)
                if not poll.is_active:
                    raise PollNotActive(f"poll {poll_id} is closed")
                if now_ts < poll.start_time:
                    raise PollNotStarted(f"poll {poll_id} opens at {poll.start_time}")
                if now_ts > poll.end_time:
                    raise PollEnded(f"poll {poll_id} ended at {poll.end_time}")
                if option_index < 0 or option_index >= len(poll.options):
                    raise InvalidOption(
                        f"option {option_index} out of range for poll {poll_id} "
                        f"({len(poll.options)} options)"
                    )
                if self.store.get_vote(poll_id, voter) is not None:
                    raise AlreadyVoted(f"{voter} already voted on poll {poll_id}")

                vote_counts = list(poll.vote_counts)
                vote_counts[option_index] += 1
                record = VoteRecord(
                    voter=voter,
                    poll_id=poll_id,
                    option_index=option_index,
                    timestamp=now_ts,
                )
                payload = record.to_dict()
                if not self.store.add_vote(poll_id, voter, option_index, now_ts):
                    raise AlreadyVoted(f"{voter} already voted on poll {poll_id}")
                self.store.update_tally(poll_id, vote_counts, poll.total_votes + 1, now_ts)
                self.store.append_event(TOPIC_VOTE_CAST, poll_id, payload, now_ts)

        self._log(f"poll-ledger: {voter} voted option {option_index} on poll {poll_id}")
        self.registry.publish(TOPIC_VOTE_CAST, payload)
        return record

    def has_voted(self, poll_id: int, voter: str) -> bool:
        return self.store.get_vote(poll_id, voter) is not None

    def get_voter_choice(self, poll_id: int, voter: str) -> int:
        row = self.store.get_vote(poll_id, voter)
        if row is None:
            # Not having voted reuses the out-of-range option rejection.
            raise InvalidOption(f"{voter} has not voted on poll {poll_id}")
        return int(row["option_index"])

    def get_vote_record(self, voter: str, poll_id: int) -> Optional[VoteRecord]:
        row = self.store.get_vote(poll_id, voter)
        return VoteRecord.from_row(row) if row else None

    def get_results(self, poll_id: int) -> Dict[str, Any]:
        poll = self.registry.require_poll(poll_id)
        votes = self.store.list_votes_for_poll(poll_id)
        tally = [
            {"option_index": index, "label": label, "votes": poll.vote_counts[index]}
            for index, label in enumerate(poll.options)
        ]
        return {
            "poll_id": poll.poll_id,
            "description": poll.description,
            "is_open": poll.is_open_at(self.registry.now()),
            "tally": tally,
            "total_votes": poll.total_votes,
            "voters": [str(vote["voter"]) for vote in votes],
        }

    def list_voter_history(self, voter: str, limit: int = 50) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        history: List[Dict[str, Any]] = []
        for row in self.store.list_votes_for_voter(voter, limit):
            entry = VoteRecord.from_row(row).to_dict()
            entry["description"] = row.get("description")
            entry["is_active"] = bool(row.get("is_active"))
            history.append(entry)
        return history

    def list_events(self, poll_id: Optional[int] = None, limit: int = 100) -> List[PollEvent]:
        limit = max(1, min(int(limit), MAX_EVENTS_LIMIT))
        return [PollEvent.from_row(row) for row in self.store.list_events(poll_id, limit)]

    def vote_count(self) -> int:
        return self.store.count_total_votes()
