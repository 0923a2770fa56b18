"""
Append-Only Governance Audit Log (Hash-Chained).

Every accepted or rejected governance decision -- referral transitions,
case transitions, milestone completions and skips, authorization denials,
risk assessments -- is recorded as an append-only entry.  Entries are
linked by a SHA-256 hash chain so that editing any entry after the fact is
detected by ``verify_chain()``.

Free-text notes are never copied into the log; entries record only that
notes were provided.  ``export_for_review()`` additionally redacts
personal identifiers from metadata before anything leaves the process.

**Multi-tenant isolation:**  queries and exports are always scoped by
``org_id``.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Audit event types
# ---------------------------------------------------------------------------

class AuditEventType(str, enum.Enum):
    """Auditable governance events."""

    REFERRAL_TRANSITIONED = "REFERRAL_TRANSITIONED"
    CASE_TRANSITIONED = "CASE_TRANSITIONED"
    MILESTONE_COMPLETED = "MILESTONE_COMPLETED"
    MILESTONE_SKIPPED = "MILESTONE_SKIPPED"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    RISK_ASSESSED = "RISK_ASSESSED"
    AUDIT_EXPORTED = "AUDIT_EXPORTED"


# ---------------------------------------------------------------------------
# Audit entry model
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """A single audit log entry: who did what, to which record, when."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    org_id: str = Field(..., description="Organisation that owns the affected record.")
    actor_id: str = Field(..., description="User ID of the actor, or 'SYSTEM'.")
    actor_role: str = Field(
        ...,
        description="Effective role of the actor at the time, 'SUPER_ADMIN', or 'NONE'.",
    )
    event_type: AuditEventType
    target_entity: str = Field(
        default="",
        description="Identifier of the affected referral, case, milestone or employee.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic byte representation used for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "org_id": self.org_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "event_type": self.event_type.value,
            "target_entity": self.target_entity,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# Personal data redaction
# ---------------------------------------------------------------------------

_PII_PATTERNS: dict[str, re.Pattern] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "ni_number": re.compile(r"\b[A-CEGHJ-PR-TW-Z]{2}\s?\d{2}\s?\d{2}\s?\d{2}\s?[A-D]\b"),
    "phone": re.compile(r"(?<!\w)(?:\+44\s?|0)\d{3,4}\s?\d{3}\s?\d{3,4}\b"),
}

_PII_KEYS = {"name", "full_name", "first_name", "last_name", "email", "phone",
             "address", "postcode", "date_of_birth", "dob", "ni_number",
             "diagnosis", "report_notes"}


def redact_pii_from_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``metadata`` with personal identifiers redacted.

    Keys that name personal fields are replaced wholesale; string values
    are scrubbed of email addresses, National Insurance numbers and UK
    phone numbers.  Nested dictionaries are handled recursively.
    """
    redacted = {}
    for key, value in metadata.items():
        if key.lower() in _PII_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, str):
            scrubbed = value
            for pattern_name, pattern in _PII_PATTERNS.items():
                scrubbed = pattern.sub(f"[REDACTED-{pattern_name.upper()}]", scrubbed)
            redacted[key] = scrubbed
        elif isinstance(value, dict):
            redacted[key] = redact_pii_from_metadata(value)
        else:
            redacted[key] = value
    return redacted


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only, tamper-evident audit log with SHA-256 hash chaining.

    There are no update or delete methods.  ``verify_chain()`` walks the
    log and reports the first broken link.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Link ``entry`` to the chain and append it."""
        entry.previous_hash = self._hashes[-1] if self._hashes else ""
        self._entries.append(entry)
        self._hashes.append(entry.compute_hash())
        return entry

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Validate every hash link.

        Returns:
            ``(valid, broken_at)`` where ``broken_at`` is the index of the
            first broken entry, or None when the chain is intact.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = self._entries[i - 1].compute_hash() if i else ""
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        org_id: str,
        event_type: Optional[AuditEventType] = None,
        target_entity: Optional[str] = None,
        actor_id: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[AuditEntry]:
        """Return copies of the entries for ``org_id`` matching all filters."""
        results = []
        for entry in self._entries:
            if entry.org_id != org_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if target_entity is not None and entry.target_entity != target_entity:
                continue
            if actor_id is not None and entry.actor_id != actor_id:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(
        self,
        org_id: str,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Produce a JSON-serializable, redacted export for one organisation."""
        entries = []
        for entry in self.query(org_id, time_start=time_start, time_end=time_end):
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_pii_from_metadata(entry.metadata)
            entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()
        return {
            "export_metadata": {
                "org_id": org_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
