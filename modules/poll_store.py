"""SQLite persistence for polls, votes, and the poll audit log."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class PollStore:
    """Durable key-value layout: polls by id, votes by (poll, voter), polls by creator."""

    def __init__(self, db_path: str, logger: Optional[Callable[[str, str], None]] = None):
        self.db_path = os.path.expanduser(db_path)
        self._logger = logger
        self._local = threading.local()

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,
                timeout=30.0,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            self._local.conn = conn
        return conn

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def initialize(self) -> None:
        conn = self._get_connection()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS poll_sequence (
                singleton_id INTEGER PRIMARY KEY CHECK(singleton_id = 1),
                next_poll_id INTEGER NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT OR IGNORE INTO poll_sequence (singleton_id, next_poll_id) VALUES (1, 0)"
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS polls (
                poll_id INTEGER PRIMARY KEY,
                creator TEXT NOT NULL,
                description TEXT NOT NULL,
                options_json TEXT NOT NULL,
                vote_counts_json TEXT NOT NULL,
                start_time INTEGER NOT NULL,
                end_time INTEGER NOT NULL,
                total_votes INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                CHECK(start_time < end_time)
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_polls_creator
            ON polls(creator, poll_id)
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS poll_votes (
                poll_id INTEGER NOT NULL,
                voter TEXT NOT NULL,
                option_index INTEGER NOT NULL,
                cast_at INTEGER NOT NULL,
                PRIMARY KEY(poll_id, voter),
                FOREIGN KEY(poll_id) REFERENCES polls(poll_id)
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_poll_votes_voter
            ON poll_votes(voter, cast_at DESC)
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS poll_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic TEXT NOT NULL,
                poll_id INTEGER NOT NULL,
                payload_json TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_poll_events_poll
            ON poll_events(poll_id, event_id)
            """
        )

        conn.execute("PRAGMA optimize;")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed writes as one all-or-nothing unit."""
        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            self._log(f"poll-ledger: transaction rolled back: {exc!r}", "debug")
            raise

    def allocate_poll_id(self) -> int:
        """Reserve the next poll id. Call inside ``transaction()``."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT next_poll_id FROM poll_sequence WHERE singleton_id = 1"
        ).fetchone()
        poll_id = int(row["next_poll_id"])
        conn.execute(
            "UPDATE poll_sequence SET next_poll_id = ? WHERE singleton_id = 1",
            (poll_id + 1,),
        )
        return poll_id

    def insert_poll(
        self,
        poll_id: int,
        creator: str,
        description: str,
        options: List[str],
        start_time: int,
        end_time: int,
        now_ts: int,
    ) -> None:
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO polls (
                poll_id, creator, description, options_json, vote_counts_json,
                start_time, end_time, total_votes, is_active, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 1, ?, ?)
            """,
            (
                poll_id,
                creator,
                description,
                json.dumps(list(options), separators=(",", ":")),
                json.dumps([0] * len(options), separators=(",", ":")),
                start_time,
                end_time,
                now_ts,
                now_ts,
            ),
        )

    def get_poll(self, poll_id: int) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM polls WHERE poll_id = ?",
            (poll_id,),
        ).fetchone()
        return dict(row) if row else None

    def deactivate_poll(self, poll_id: int, now_ts: int) -> None:
        conn = self._get_connection()
        conn.execute(
            "UPDATE polls SET is_active = 0, updated_at = ? WHERE poll_id = ? AND is_active = 1",
            (now_ts, poll_id),
        )

    def update_tally(self, poll_id: int, vote_counts: List[int], total_votes: int, now_ts: int) -> None:
        conn = self._get_connection()
        conn.execute(
            """
            UPDATE polls
            SET vote_counts_json = ?, total_votes = ?, updated_at = ?
            WHERE poll_id = ?
            """,
            (json.dumps(list(vote_counts), separators=(",", ":")), total_votes, now_ts, poll_id),
        )

    def list_poll_ids_for_creator(self, creator: str) -> List[int]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT poll_id FROM polls WHERE creator = ? ORDER BY poll_id ASC",
            (creator,),
        ).fetchall()
        return [int(row["poll_id"]) for row in rows]

    def count_total_polls(self) -> int:
        conn = self._get_connection()
        row = conn.execute("SELECT COUNT(*) AS cnt FROM polls").fetchone()
        return int(row["cnt"] or 0)

    def count_active_polls(self) -> int:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM polls WHERE is_active = 1"
        ).fetchone()
        return int(row["cnt"] or 0)

    def add_vote(self, poll_id: int, voter: str, option_index: int, cast_at: int) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO poll_votes (poll_id, voter, option_index, cast_at)
                VALUES (?, ?, ?, ?)
                """,
                (poll_id, voter, option_index, cast_at),
            )
            return cursor.rowcount > 0
        except sqlite3.IntegrityError:
            return False

    def get_vote(self, poll_id: int, voter: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM poll_votes WHERE poll_id = ? AND voter = ?",
            (poll_id, voter),
        ).fetchone()
        return dict(row) if row else None

    def list_votes_for_poll(self, poll_id: int) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM poll_votes WHERE poll_id = ? ORDER BY cast_at ASC, rowid ASC",
            (poll_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_votes_for_voter(self, voter: str, limit: int) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        rows = conn.execute(
            """
            SELECT v.*, p.description, p.is_active, p.end_time
            FROM poll_votes v
            JOIN polls p ON p.poll_id = v.poll_id
            WHERE v.voter = ?
            ORDER BY v.cast_at DESC, v.poll_id DESC
            LIMIT ?
            """,
            (voter, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def count_total_votes(self) -> int:
        conn = self._get_connection()
        row = conn.execute("SELECT COUNT(*) AS cnt FROM poll_votes").fetchone()
        return int(row["cnt"] or 0)

    def append_event(self, topic: str, poll_id: int, payload: Dict[str, Any], now_ts: int) -> int:
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT INTO poll_events (topic, poll_id, payload_json, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (topic, poll_id, _canonical_json(payload), now_ts),
        )
        return int(cursor.lastrowid)

    def list_events(self, poll_id: Optional[int], limit: int) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        if poll_id is None:
            rows = conn.execute(
                "SELECT * FROM poll_events ORDER BY event_id ASC LIMIT ?",
                (limit,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM poll_events WHERE poll_id = ? ORDER BY event_id ASC LIMIT ?",
                (poll_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]
