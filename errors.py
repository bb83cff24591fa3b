"""
Failure types for the social-link pipeline.

Every error raised inside a pipeline run carries the atoms that run already
created and, when a write was submitted, its transaction hash. The pipeline
converts them into a LinkOutcome; they do not escape `ClaimPipeline.link`.
"""

from __future__ import annotations

from typing import Dict, Optional


class LinkError(Exception):
    """Base class for a failed link run."""

    def __init__(
        self,
        message: str,
        *,
        tx_hash: Optional[str] = None,
        created: Optional[Dict[str, bool]] = None,
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.created = dict(created or {})

    @property
    def kind(self) -> str:
        return type(self).__name__


class InputError(LinkError):
    """Missing or malformed wallet address, platform or token."""


class VerificationError(LinkError):
    """OAuth provider rejected the token or returned no user id."""


class PinError(LinkError):
    """Pinning the social atom label failed or returned no uri."""


class LedgerError(LinkError):
    """A ledger read failed before any write decision could be made."""


class NodeCreationError(LinkError):
    """An atom write failed at submission or confirmation."""


class EdgeCreationError(LinkError):
    """The triple write failed at submission or confirmation."""


class AlreadyLinkedError(EdgeCreationError):
    """The triple already exists; callers treat this as success."""
