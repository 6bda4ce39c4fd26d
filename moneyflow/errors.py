from __future__ import annotations


class LedgerError(Exception):
    """Base class for caller-facing ledger errors.

    Every subclass is recoverable: it is raised before any write, or inside
    the database transaction that is then rolled back.
    """

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    """Referenced record is missing or owned by someone else."""

    status_code = 404


class InvalidArgument(LedgerError):
    status_code = 400


class Conflict(LedgerError):
    """Duplicate active budget, bill already paid, and similar clashes."""

    status_code = 409


class InsufficientBalance(LedgerError):
    status_code = 422


class UpstreamUnavailable(LedgerError):
    """The text-generation collaborator failed and no fallback exists."""

    status_code = 503
