"""Poll creation and lifecycle: the registry owns every poll record."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from modules.poll_errors import (
    DescriptionTooLong,
    InvalidOptionCount,
    InvalidTimeRange,
    PollDoesNotExist,
    PollNotActive,
    Unauthorized,
)
from modules.poll_models import MAX_DESCRIPTION_BYTES, MAX_OPTIONS, MIN_OPTIONS, Poll
from modules.poll_store import PollStore

TOPIC_POLL_CREATED = "poll_created"
TOPIC_VOTE_CAST = "vote_cast"
TOPIC_POLL_CLOSED = "poll_closed"
NOTIFICATION_TOPICS = (TOPIC_POLL_CREATED, TOPIC_VOTE_CAST, TOPIC_POLL_CLOSED)


class PollRegistry:
    """Creates, closes and looks up polls.

    All mutations, including those made by the vote ledger, hold ``lock`` for
    the whole validate-then-commit section, so poll ids are handed out strictly
    in sequence and no caller can observe a half-written poll.
    """

    def __init__(
        self,
        store: PollStore,
        logger: Optional[Callable[[str, str], None]] = None,
        notifier: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self._logger = logger
        self._notifier = notifier
        self._time_fn = time_fn
        self.lock = threading.RLock()
        self.store.initialize()

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def now(self) -> int:
        return int(self._time_fn())

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        """Hand a committed event to the external notifier; failures are only logged."""
        if not self._notifier:
            return
        try:
            self._notifier(topic, payload)
        except Exception as exc:
            self._log(f"poll-ledger: notification {topic} failed: {exc}", "warn")

    def create_poll(
        self,
        description: str,
        options: Sequence[str],
        start_time: int,
        end_time: int,
        creator: str,
    ) -> int:
        options = list(options)
        if len(options) < MIN_OPTIONS or len(options) > MAX_OPTIONS:
            raise InvalidOptionCount(
                f"polls need {MIN_OPTIONS}-{MAX_OPTIONS} options, got {len(options)}"
            )
        if start_time >= end_time:
            raise InvalidTimeRange(f"start_time {start_time} must be before end_time {end_time}")
        description_bytes = len(description.encode("utf-8"))
        if description_bytes > MAX_DESCRIPTION_BYTES:
            raise DescriptionTooLong(
                f"description is {description_bytes} bytes (max {MAX_DESCRIPTION_BYTES})"
            )

        with self.lock:
            now_ts = self.now()
            payload: Dict[str, Any] = {
                "creator": creator,
                "description": description,
                "start_time": start_time,
                "end_time": end_time,
            }
            with self.store.transaction():
                poll_id = self.store.allocate_poll_id()
                self.store.insert_poll(
                    poll_id=poll_id,
                    creator=creator,
                    description=description,
                    options=options,
                    start_time=start_time,
                    end_time=end_time,
                    now_ts=now_ts,
                )
                payload["poll_id"] = poll_id
                self.store.append_event(TOPIC_POLL_CREATED, poll_id, payload, now_ts)

        self._log(f"poll-ledger: poll {poll_id} created by {creator} ({len(options)} options)")
        self.publish(TOPIC_POLL_CREATED, payload)
        return poll_id

    def close_poll(self, poll_id: int, caller: str) -> None:
        with self.lock:
            now_ts = self.now()
            payload = {"poll_id": poll_id, "closer": caller}
            with self.store.transaction():
                poll = self.get_poll(poll_id)
                if poll is None:
                    raise PollDoesNotExist(f"poll {poll_id} does not exist")
                if poll.creator != caller:
                    raise Unauthorized(f"only the creator of poll {poll_id} may close it")
                if not poll.is_active:
                    raise PollNotActive(f"poll {poll_id} is already closed")

                self.store.deactivate_poll(poll_id, now_ts)
                self.store.append_event(TOPIC_POLL_CLOSED, poll_id, payload, now_ts)

        self._log(f"poll-ledger: poll {poll_id} closed by {caller}")
        self.publish(TOPIC_POLL_CLOSED, payload)

    def get_poll(self, poll_id: int) -> Optional[Poll]:
        row = self.store.get_poll(poll_id)
        return Poll.from_row(row) if row else None

    def require_poll(self, poll_id: int) -> Poll:
        poll = self.get_poll(poll_id)
        if poll is None:
            raise PollDoesNotExist(f"poll {poll_id} does not exist")
        return poll

    def get_user_polls(self, creator: str) -> List[int]:
        return self.store.list_poll_ids_for_creator(creator)

    def is_poll_open(self, poll_id: int) -> bool:
        poll = self.get_poll(poll_id)
        if poll is None:
            return False
        return poll.is_open_at(self.now())

    def poll_count(self) -> int:
        return self.store.count_total_polls()

    def active_poll_count(self) -> int:
        return self.store.count_active_polls()
