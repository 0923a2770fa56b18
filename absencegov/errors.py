"""
Typed failures raised by the governance engine.

Each failure condition has its own exception class and a stable ``kind``
string so the presentation layer can map it to a response without parsing
messages.  The engine never retries and never substitutes a fallback state.
"""

from __future__ import annotations


class GovernanceError(Exception):
    """Base class for every failure raised by ``absencegov``."""

    kind = "GOVERNANCE_ERROR"


class InvalidTransitionError(GovernanceError):
    """Raised when a target state is not reachable from the current state."""

    kind = "INVALID_TRANSITION"


class AlreadyResolvedError(GovernanceError):
    """Raised when a milestone is no longer PENDING."""

    kind = "ALREADY_RESOLVED"


class ReasonRequiredError(GovernanceError):
    """Raised when a milestone is skipped without a reason."""

    kind = "REASON_REQUIRED"


class UnauthorizedError(GovernanceError, PermissionError):
    """Raised when the actor lacks the capability an operation requires."""

    kind = "UNAUTHORIZED"


class ConcurrentModificationError(GovernanceError):
    """Raised when the stored state no longer matches the state the caller read."""

    kind = "CONCURRENT_MODIFICATION"


class InvalidInputError(GovernanceError, ValueError):
    """Raised for malformed values from a misbehaving caller, such as negative
    counts or a case passed in for the wrong employee."""

    kind = "INVALID_INPUT"


class OrgMismatchError(GovernanceError):
    """Raised when a record belongs to a different organisation than the policy."""

    kind = "ORG_MISMATCH"
