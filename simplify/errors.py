"""
Errors shared across the job pipeline.
"""

from __future__ import annotations


class SimplifyError(Exception):
    """Base error for the translation pipeline."""

    pass


class NotFoundError(SimplifyError):
    """A job, page, or configuration document does not exist (non-retryable)."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier
