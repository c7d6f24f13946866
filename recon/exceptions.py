# recon/exceptions.py
"""
Shared exception classes used across the pipeline.

Precondition errors are reported to the caller and never retried; I/O and
parse errors are recorded on the owning row before they propagate as a
job failure.
"""

from __future__ import annotations


class ReconError(Exception):
    """Base class for pipeline errors."""


class PreconditionError(ReconError):
    """
    Raised when a stage is asked to work on an entity in the wrong state.

    Examples:
        - Target not found
        - Target status is not 'enriched' (profile) or 'complete' (pretext)
        - Prompt not found
    """


class NoSourcesError(PreconditionError):
    """Raised when a target has no mined sources to build a profile from."""


class IllegalTransitionError(ReconError):
    """Raised when a status change is not allowed by the transition table."""

    def __init__(self, entity: str, current: str, new: str) -> None:
        super().__init__(f"Illegal {entity} status transition: {current} -> {new}")
        self.entity = entity
        self.current = current
        self.new = new


class SourceFetchError(ReconError):
    """
    Raised when fetching a source fails (timeout, non-2xx, network error).

    The source row has already been marked 'failed' when this propagates.
    """


class PretextParseError(ReconError):
    """Raised when the completion output cannot be parsed as a pretext object."""


class CompletionError(ReconError):
    """Raised when the completion service is unavailable or returns nothing usable."""


class AutodiscoverError(ReconError):
    """Raised when federation discovery answers with an error code or bad XML."""


class EmailDiscoveryError(ReconError):
    """Raised when the email-discovery service rejects a request or stays unavailable."""


__all__ = [
    "ReconError",
    "PreconditionError",
    "NoSourcesError",
    "IllegalTransitionError",
    "SourceFetchError",
    "PretextParseError",
    "CompletionError",
    "AutodiscoverError",
    "EmailDiscoveryError",
]
