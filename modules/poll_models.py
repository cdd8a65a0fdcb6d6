"""Poll, vote record and audit event shapes shared by the registry and ledger."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

MIN_OPTIONS = 2
MAX_OPTIONS = 10
MAX_DESCRIPTION_BYTES = 280


@dataclass
class Poll:
    poll_id: int
    creator: str
    description: str
    options: Tuple[str, ...]
    vote_counts: List[int]
    start_time: int
    end_time: int
    total_votes: int = 0
    is_active: bool = True

    def is_open_at(self, now_ts: int) -> bool:
        return self.is_active and self.start_time <= now_ts <= self.end_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "creator": self.creator,
            "description": self.description,
            "options": list(self.options),
            "vote_counts": list(self.vote_counts),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_votes": self.total_votes,
            "is_active": self.is_active,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Poll":
        return cls(
            poll_id=int(row["poll_id"]),
            creator=str(row["creator"]),
            description=str(row["description"]),
            options=tuple(json.loads(row["options_json"])),
            vote_counts=[int(count) for count in json.loads(row["vote_counts_json"])],
            start_time=int(row["start_time"]),
            end_time=int(row["end_time"]),
            total_votes=int(row["total_votes"]),
            is_active=bool(row["is_active"]),
        )


@dataclass(frozen=True)
class VoteRecord:
    """Immutable proof that ``voter`` chose ``option_index`` on ``poll_id``."""

    voter: str
    poll_id: int
    option_index: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voter": self.voter,
            "poll_id": self.poll_id,
            "option_index": self.option_index,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VoteRecord":
        return cls(
            voter=str(row["voter"]),
            poll_id=int(row["poll_id"]),
            option_index=int(row["option_index"]),
            timestamp=int(row["cast_at"]),
        )


@dataclass(frozen=True)
class PollEvent:
    event_id: int
    topic: str
    poll_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "topic": self.topic,
            "poll_id": self.poll_id,
            "payload": dict(self.payload),
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PollEvent":
        try:
            payload = json.loads(row["payload_json"] or "{}")
        except (json.JSONDecodeError, TypeError):
            payload = {}
        return cls(
            event_id=int(row["event_id"]),
            topic=str(row["topic"]),
            poll_id=int(row["poll_id"]),
            payload=payload if isinstance(payload, dict) else {},
            created_at=int(row["created_at"]),
        )
