"""Errors raised by the ordering core"""
from __future__ import annotations


class OrderingError(Exception):
    """Base for every error the ordering core reports to its caller."""


class OrderValidationError(OrderingError):
    """Missing input, nothing selected, or a disambiguation left unresolved.

    Blocks the operation; never retried automatically.
    """


class LookupFailed(OrderingError):
    """A suggestion, match or count lookup failed.

    Selection state is untouched; the caller may retry the lookup.
    """

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind} lookup failed: {message}")
        self.kind = kind


class FlowStateError(OrderingError):
    """An action was sent to a confirmation flow in a step that does not accept it."""


class SubmissionError(OrderingError):
    """A report request failed part way through a submission.

    Artifacts produced before the failure stay with the collector; the
    remaining requests are not resumed.
    """

    def __init__(self, message: str, report_type: str = "", submitted: int = 0,
                 artifacts: list[str] | None = None):
        super().__init__(message)
        self.report_type = report_type
        self.submitted = submitted
        self.artifacts = list(artifacts or [])
