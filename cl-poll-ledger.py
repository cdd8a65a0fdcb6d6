#!/usr/bin/env python3
"""cl-poll-ledger: time-bounded polls with one vote per identity."""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict

# Ensure this script's real directory is on sys.path so that `from modules.X`
# works even when CLN loads the plugin via a symlink in the plugins directory.
sys.path.insert(0, os.path.dirname(os.path.realpath(__file__)))

from pyln.client import Plugin

from modules.poll_registry import NOTIFICATION_TOPICS
from modules.poll_service import PollLedgerService
from modules.poll_store import PollStore

plugin = Plugin()
service: PollLedgerService | None = None
notifications_enabled = True


plugin.add_option(
    name="poll-ledger-db-path",
    default="~/.lightning/cl_poll_ledger.db",
    description="SQLite path for cl-poll-ledger state",
)

plugin.add_option(
    name="poll-ledger-notifications",
    default="true",
    description="Emit poll_created, vote_cast and poll_closed notifications",
)

for _topic in NOTIFICATION_TOPICS:
    plugin.add_notification_topic(_topic)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _logger(message: str, level: str = "info") -> None:
    plugin.log(message, level=level)


def _notifier(topic: str, payload: Dict[str, Any]) -> None:
    if notifications_enabled:
        plugin.notify(topic, payload)


def _require_service() -> PollLedgerService:
    if service is None:
        raise RuntimeError("service not initialized")
    return service


@plugin.init()
def init(options: Dict[str, Any], configuration: Dict[str, Any], plugin: Plugin, **kwargs: Any) -> None:
    del kwargs

    db_path_opt = str(options.get("poll-ledger-db-path") or "~/.lightning/cl_poll_ledger.db")
    db_path = os.path.expanduser(db_path_opt)
    if not os.path.isabs(db_path):
        lightning_dir = str(configuration.get("lightning-dir") or os.path.expanduser("~/.lightning"))
        db_path = os.path.join(lightning_dir, db_path)

    global notifications_enabled
    notifications_enabled = _parse_bool(options.get("poll-ledger-notifications", "true"))

    store = PollStore(db_path=db_path, logger=_logger)

    global service
    service = PollLedgerService(
        store=store,
        rpc=plugin.rpc,
        logger=_logger,
        notifier=_notifier,
    )

    plugin.log(
        "cl-poll-ledger initialized "
        f"(db_path={db_path}, notifications={notifications_enabled})"
    )


@plugin.method("poll-create")
def poll_create(
    plugin: Plugin,
    description: str,
    options_json: str,
    start_time: int,
    end_time: int,
    creator: str = "",
) -> Dict[str, Any]:
    del plugin

    try:
        options = json.loads(options_json) if isinstance(options_json, str) else options_json
    except (json.JSONDecodeError, TypeError):
        return {"error": "invalid options_json"}

    return _require_service().create_poll(
        description=description,
        options=options,
        start_time=start_time,
        end_time=end_time,
        creator=creator,
    )


@plugin.method("poll-vote")
def poll_vote(plugin: Plugin, poll_id: int, option_index: int, voter: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().cast_vote(poll_id=poll_id, option_index=option_index, voter=voter)


@plugin.method("poll-close")
def poll_close(plugin: Plugin, poll_id: int, caller: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().close_poll(poll_id=poll_id, caller=caller)


@plugin.method("poll-get")
def poll_get(plugin: Plugin, poll_id: int) -> Dict[str, Any]:
    del plugin
    return _require_service().get_poll(poll_id=poll_id)


@plugin.method("poll-is-open")
def poll_is_open(plugin: Plugin, poll_id: int) -> Dict[str, Any]:
    del plugin
    return _require_service().is_poll_open(poll_id=poll_id)


@plugin.method("poll-user-polls")
def poll_user_polls(plugin: Plugin, creator: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().get_user_polls(creator=creator)


@plugin.method("poll-has-voted")
def poll_has_voted(plugin: Plugin, poll_id: int, voter: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().has_voted(poll_id=poll_id, voter=voter)


@plugin.method("poll-voter-choice")
def poll_voter_choice(plugin: Plugin, poll_id: int, voter: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().get_voter_choice(poll_id=poll_id, voter=voter)


@plugin.method("poll-vote-record")
def poll_vote_record(plugin: Plugin, poll_id: int, voter: str = "") -> Dict[str, Any]:
    del plugin
    return _require_service().get_vote_record(poll_id=poll_id, voter=voter)


@plugin.method("poll-results")
def poll_results(plugin: Plugin, poll_id: int) -> Dict[str, Any]:
    del plugin
    return _require_service().results(poll_id=poll_id)


@plugin.method("poll-my-votes")
def poll_my_votes(plugin: Plugin, voter: str = "", limit: int = 50) -> Dict[str, Any]:
    del plugin
    return _require_service().my_votes(voter=voter, limit=limit)


@plugin.method("poll-events")
def poll_events(plugin: Plugin, poll_id: int = -1, limit: int = 100) -> Dict[str, Any]:
    del plugin
    return _require_service().events(poll_id=poll_id, limit=limit)


@plugin.method("poll-ledger-status")
def poll_ledger_status(plugin: Plugin) -> Dict[str, Any]:
    del plugin
    return _require_service().status()


if __name__ == "__main__":
    plugin.run()
