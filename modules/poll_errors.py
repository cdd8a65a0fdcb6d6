"""Rejection kinds raised by the poll registry and vote ledger."""

from __future__ import annotations


class PollLedgerError(Exception):
    """Base class for every rejected ledger operation."""

    code = "PollLedgerError"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class InvalidOptionCount(PollLedgerError):
    """Raised when a poll is created with fewer than 2 or more than 10 options"""
    code = "InvalidOptionCount"


class InvalidTimeRange(PollLedgerError):
    """Raised when a poll's start time is not before its end time"""
    code = "InvalidTimeRange"


class DescriptionTooLong(PollLedgerError):
    """Raised when a poll description exceeds the byte limit"""
    code = "DescriptionTooLong"


class PollDoesNotExist(PollLedgerError):
    """Raised when operating on a poll id that was never created"""
    code = "PollDoesNotExist"


class PollNotActive(PollLedgerError):
    """Raised when voting on or closing a poll that has been closed"""
    code = "PollNotActive"


class PollNotStarted(PollLedgerError):
    """Raised when voting before the poll's start time"""
    code = "PollNotStarted"


class PollEnded(PollLedgerError):
    """Raised when voting after the poll's end time"""
    code = "PollEnded"


class InvalidOption(PollLedgerError):
    """Raised for an out-of-range option index, or a choice lookup for a non-voter"""
    code = "InvalidOption"


class AlreadyVoted(PollLedgerError):
    """Raised when an identity votes twice on the same poll"""
    code = "AlreadyVoted"


class Unauthorized(PollLedgerError):
    """Raised when someone other than the creator tries to close a poll"""
    code = "Unauthorized"
