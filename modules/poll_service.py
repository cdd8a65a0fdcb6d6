"""Service API used by the cl-poll-ledger RPC methods."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from modules.poll_errors import PollDoesNotExist, PollLedgerError
from modules.poll_registry import PollRegistry
from modules.poll_store import PollStore
from modules.vote_ledger import VoteLedger

MAX_IDENTITY_LEN = 256
SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1


def _is_hex(value: str, expected_len: int) -> bool:
    if not isinstance(value, str) or len(value) != expected_len:
        return False
    try:
        int(value, 16)
        return True
    except ValueError:
        return False


def _is_valid_cln_pubkey(value: str) -> bool:
    if not isinstance(value, str):
        return False
    if len(value) != 66 or value[:2] not in ("02", "03"):
        return False
    return _is_hex(value, 66)


def _as_int(value: Any) -> Optional[int]:
    """Coerce an RPC argument to an integer that fits a SQLite INTEGER column."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int):
        return None
    if value < SQLITE_INT_MIN or value > SQLITE_INT_MAX:
        return None
    return value


def _is_utf8(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


class PollLedgerService:
    """Wraps the registry and ledger, turning rejections into RPC error objects."""

    def __init__(
        self,
        store: PollStore,
        rpc: Any = None,
        logger: Optional[Callable[[str, str], None]] = None,
        notifier: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self.rpc = rpc
        self._logger = logger
        self.registry = PollRegistry(store, logger=logger, notifier=notifier, time_fn=time_fn)
        self.ledger = VoteLedger(self.registry, logger=logger)

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _our_node_pubkey(self) -> str:
        if not self.rpc:
            return ""
        try:
            info = self.rpc.getinfo()
            if isinstance(info, dict):
                pubkey = str(info.get("id", ""))
                if _is_valid_cln_pubkey(pubkey):
                    return pubkey
        except Exception as exc:
            self._log(f"poll-ledger: getinfo failed: {exc}", "warn")
        return ""

    def _resolve_identity(self, identity: Any) -> Optional[str]:
        """Explicit identity if given, else this node's pubkey, else ``local-node``."""
        if identity is None:
            identity = ""
        if not isinstance(identity, str):
            return None
        identity = identity.strip()
        if len(identity) > MAX_IDENTITY_LEN or not _is_utf8(identity):
            return None
        if identity:
            return identity
        return self._our_node_pubkey() or "local-node"

    def _rejected(self, exc: PollLedgerError, **context: Any) -> Dict[str, Any]:
        self._log(f"poll-ledger: rejected {exc.code}: {exc}", "debug")
        result = exc.to_dict()
        result.update(context)
        return result

    def create_poll(
        self,
        description: Any,
        options: Any,
        start_time: Any,
        end_time: Any,
        creator: Any = "",
    ) -> Dict[str, Any]:
        if not isinstance(description, str):
            return {"error": "description must be a string"}
        if not isinstance(options, list) or not all(isinstance(opt, str) for opt in options):
            return {"error": "options must be a list of strings"}
        if not _is_utf8(description) or not all(_is_utf8(opt) for opt in options):
            return {"error": "description and options must be valid UTF-8 text"}
        start_ts = _as_int(start_time)
        end_ts = _as_int(end_time)
        if start_ts is None or end_ts is None:
            return {"error": "start_time and end_time must be unix timestamps"}
        resolved = self._resolve_identity(creator)
        if resolved is None:
            return {"error": "invalid creator identity"}

        try:
            poll_id = self.registry.create_poll(
                description=description,
                options=options,
                start_time=start_ts,
                end_time=end_ts,
                creator=resolved,
            )
        except PollLedgerError as exc:
            return self._rejected(exc)

        return {
            "ok": True,
            "poll_id": poll_id,
            "creator": resolved,
            "start_time": start_ts,
            "end_time": end_ts,
        }

    def cast_vote(self, poll_id: Any, option_index: Any, voter: Any = "") -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        index = _as_int(option_index)
        if index is None:
            return {"error": "option_index must be an integer"}
        resolved = self._resolve_identity(voter)
        if resolved is None:
            return {"error": "invalid voter identity"}

        try:
            record = self.ledger.cast_vote(pid, index, resolved)
        except PollLedgerError as exc:
            return self._rejected(exc, poll_id=pid, voter=resolved)

        result: Dict[str, Any] = {"ok": True}
        result.update(record.to_dict())
        return result

    def close_poll(self, poll_id: Any, caller: Any = "") -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        resolved = self._resolve_identity(caller)
        if resolved is None:
            return {"error": "invalid caller identity"}

        try:
            self.registry.close_poll(pid, resolved)
        except PollLedgerError as exc:
            return self._rejected(exc, poll_id=pid)

        return {"ok": True, "poll_id": pid, "closer": resolved, "is_active": False}

    def get_poll(self, poll_id: Any) -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        poll = self.registry.get_poll(pid)
        if poll is None:
            return self._rejected(PollDoesNotExist(f"poll {pid} does not exist"), poll_id=pid)
        return {"ok": True, "poll": poll.to_dict()}

    def is_poll_open(self, poll_id: Any) -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        return {"ok": True, "poll_id": pid, "is_open": self.registry.is_poll_open(pid)}

    def get_user_polls(self, creator: Any = "") -> Dict[str, Any]:
        resolved = self._resolve_identity(creator)
        if resolved is None:
            return {"error": "invalid creator identity"}
        poll_ids = self.registry.get_user_polls(resolved)
        return {"ok": True, "creator": resolved, "count": len(poll_ids), "poll_ids": poll_ids}

    def has_voted(self, poll_id: Any, voter: Any = "") -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        resolved = self._resolve_identity(voter)
        if resolved is None:
            return {"error": "invalid voter identity"}
        return {
            "ok": True,
            "poll_id": pid,
            "voter": resolved,
            "has_voted": self.ledger.has_voted(pid, resolved),
        }

    def get_voter_choice(self, poll_id: Any, voter: Any = "") -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        resolved = self._resolve_identity(voter)
        if resolved is None:
            return {"error": "invalid voter identity"}
        try:
            choice = self.ledger.get_voter_choice(pid, resolved)
        except PollLedgerError as exc:
            return self._rejected(exc, poll_id=pid, voter=resolved)
        return {"ok": True, "poll_id": pid, "voter": resolved, "option_index": choice}

    def get_vote_record(self, poll_id: Any, voter: Any = "") -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        resolved = self._resolve_identity(voter)
        if resolved is None:
            return {"error": "invalid voter identity"}
        record = self.ledger.get_vote_record(resolved, pid)
        return {
            "ok": True,
            "poll_id": pid,
            "voter": resolved,
            "vote_record": record.to_dict() if record else None,
        }

    def results(self, poll_id: Any) -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        try:
            summary = self.ledger.get_results(pid)
        except PollLedgerError as exc:
            return self._rejected(exc, poll_id=pid)
        result: Dict[str, Any] = {"ok": True}
        result.update(summary)
        return result

    def my_votes(self, voter: Any = "", limit: Any = 50) -> Dict[str, Any]:
        count = _as_int(limit)
        if count is None or count <= 0:
            return {"error": "limit must be positive"}
        resolved = self._resolve_identity(voter)
        if resolved is None:
            return {"error": "invalid voter identity"}
        votes: List[Dict[str, Any]] = self.ledger.list_voter_history(resolved, count)
        return {"ok": True, "voter": resolved, "count": len(votes), "votes": votes}

    def events(self, poll_id: Any = -1, limit: Any = 100) -> Dict[str, Any]:
        pid = _as_int(poll_id)
        if pid is None:
            return {"error": "poll_id must be an integer"}
        count = _as_int(limit)
        if count is None or count <= 0:
            return {"error": "limit must be positive"}
        events = self.ledger.list_events(None if pid < 0 else pid, count)
        return {"ok": True, "count": len(events), "events": [event.to_dict() for event in events]}

    def status(self) -> Dict[str, Any]:
        total_polls = self.registry.poll_count()
        active_polls = self.registry.active_poll_count()
        return {
            "ok": True,
            "node_identity": self._resolve_identity(""),
            "total_polls": total_polls,
            "active_polls": active_polls,
            "closed_polls": total_polls - active_polls,
            "total_votes": self.ledger.vote_count(),
            "db_path": self.store.db_path,
        }
