"""
Tests for absencegov.audit -- Append-Only, Hash-Chained Audit Log.

Covers: append + chain verification, tamper detection, query filtering,
multi-tenant isolation, personal data redaction, and export format.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from absencegov.audit import (
    AuditEntry,
    AuditEventType,
    AuditLog,
    redact_pii_from_metadata,
)


def _make_entry(
    org_id: str = "org_a",
    actor_id: str = "hr_1",
    actor_role: str = "HR",
    event_type: AuditEventType = AuditEventType.CASE_TRANSITIONED,
    target_entity: str = "case_1",
    metadata: dict | None = None,
) -> AuditEntry:
    return AuditEntry(
        org_id=org_id,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        target_entity=target_entity,
        metadata=metadata or {},
    )


# ---------------------------------------------------------------------------
# 1. Append + chain verification
# ---------------------------------------------------------------------------

class TestAppendAndChainVerification:
    def test_first_entry_has_empty_previous_hash(self):
        log = AuditLog()
        appended = log.append(_make_entry())
        assert appended.previous_hash == ""
        assert len(log) == 1

    def test_entries_are_linked(self):
        log = AuditLog()
        e1 = log.append(_make_entry(actor_id="a1"))
        e2 = log.append(_make_entry(actor_id="a2"))
        e3 = log.append(_make_entry(actor_id="a3"))
        assert e2.previous_hash == e1.compute_hash()
        assert e3.previous_hash == e2.compute_hash()

    def test_valid_log_verifies(self):
        log = AuditLog()
        for i in range(5):
            log.append(_make_entry(actor_id=f"a{i}"))
        assert log.verify_chain() == (True, None)

    def test_empty_log_verifies(self):
        assert AuditLog().verify_chain() == (True, None)


# ---------------------------------------------------------------------------
# 2. Tamper detection
# ---------------------------------------------------------------------------

class TestTamperDetection:
    def test_modified_entry_breaks_chain(self):
        log = AuditLog()
        for i in range(3):
            log.append(_make_entry(actor_id=f"a{i}"))
        log._entries[1].metadata = {"to_status": "CLOSED"}

        valid, broken_at = log.verify_chain()
        assert valid is False
        assert broken_at in (1, 2)

    def test_modified_first_entry_detected(self):
        log = AuditLog()
        log.append(_make_entry(actor_id="a1"))
        log.append(_make_entry(actor_id="a2"))
        log._entries[0].actor_id = "TAMPERED"
        assert log.verify_chain()[0] is False

    def test_query_returns_copies(self):
        log = AuditLog()
        log.append(_make_entry())
        log.query(org_id="org_a")[0].actor_id = "TAMPERED"
        assert log.verify_chain() == (True, None)


# ---------------------------------------------------------------------------
# 3. Query filtering
# ---------------------------------------------------------------------------

class TestQueryFiltering:
    def test_query_by_event_type(self):
        log = AuditLog()
        log.append(_make_entry(event_type=AuditEventType.CASE_TRANSITIONED))
        log.append(_make_entry(event_type=AuditEventType.AUTHORIZATION_DENIED))
        results = log.query(org_id="org_a", event_type=AuditEventType.AUTHORIZATION_DENIED)
        assert len(results) == 1

    def test_query_by_target_and_actor(self):
        log = AuditLog()
        log.append(_make_entry(target_entity="case_1", actor_id="hr_1"))
        log.append(_make_entry(target_entity="case_2", actor_id="hr_1"))
        log.append(_make_entry(target_entity="case_2", actor_id="hr_2"))
        assert len(log.query(org_id="org_a", target_entity="case_2")) == 2
        assert len(log.query(org_id="org_a", target_entity="case_2", actor_id="hr_2")) == 1

    def test_query_by_time_range(self):
        log = AuditLog()
        now = datetime.now(timezone.utc)
        for hours in (2, 1, 0):
            entry = _make_entry()
            entry.timestamp = now - timedelta(hours=hours)
            log.append(entry)
        results = log.query(
            org_id="org_a",
            time_start=now - timedelta(hours=1, minutes=30),
            time_end=now - timedelta(minutes=30),
        )
        assert len(results) == 1

    def test_insertion_order_preserved(self):
        log = AuditLog()
        ids = [log.append(_make_entry(actor_id=f"a{i}")).entry_id for i in range(10)]
        assert [e.entry_id for e in log.query(org_id="org_a")] == ids


# ---------------------------------------------------------------------------
# 4. Multi-tenant isolation
# ---------------------------------------------------------------------------

class TestMultiTenantIsolation:
    def test_org_a_entries_not_visible_to_org_b(self):
        log = AuditLog()
        log.append(_make_entry(org_id="org_a"))
        log.append(_make_entry(org_id="org_b"))
        log.append(_make_entry(org_id="org_a"))
        assert len(log.query(org_id="org_a")) == 2
        assert [e.org_id for e in log.query(org_id="org_b")] == ["org_b"]

    def test_export_scoped_by_org(self):
        log = AuditLog()
        log.append(_make_entry(org_id="org_a"))
        log.append(_make_entry(org_id="org_b"))
        export = log.export_for_review(org_id="org_a")
        assert export["export_metadata"]["entry_count"] == 1
        assert all(e["org_id"] == "org_a" for e in export["entries"])


# ---------------------------------------------------------------------------
# 5. Personal data redaction
# ---------------------------------------------------------------------------

class TestPIIRedaction:
    def test_redact_known_keys(self):
        redacted = redact_pii_from_metadata({
            "full_name": "Sam Example",
            "email": "sam@example.test",
            "diagnosis": "back pain",
            "to_status": "TRACKING",
        })
        assert redacted["full_name"] == "[REDACTED]"
        assert redacted["email"] == "[REDACTED]"
        assert redacted["diagnosis"] == "[REDACTED]"
        assert redacted["to_status"] == "TRACKING"

    def test_redact_patterns_in_values(self):
        redacted = redact_pii_from_metadata({
            "comment": "Contact sam@example.test or 07700 900123, NI AB 12 34 56 C",
        })
        assert "sam@example.test" not in redacted["comment"]
        assert "[REDACTED-EMAIL]" in redacted["comment"]
        assert "[REDACTED-PHONE]" in redacted["comment"]
        assert "[REDACTED-NI_NUMBER]" in redacted["comment"]

    def test_redact_nested(self):
        redacted = redact_pii_from_metadata({"outer": {"name": "Sam", "score": 90}})
        assert redacted["outer"] == {"name": "[REDACTED]", "score": 90}

    def test_input_not_mutated(self):
        metadata = {"name": "Sam"}
        redact_pii_from_metadata(metadata)
        assert metadata == {"name": "Sam"}


# ---------------------------------------------------------------------------
# 6. Export format
# ---------------------------------------------------------------------------

class TestExportFormat:
    def test_export_contains_required_fields(self):
        log = AuditLog()
        log.append(_make_entry(metadata={"name": "Sam", "to_status": "TRACKING"}))
        export = log.export_for_review(org_id="org_a")

        meta = export["export_metadata"]
        assert set(meta) == {"org_id", "exported_at", "entry_count", "chain_integrity"}
        assert meta["chain_integrity"] == "VALID"
        entry = export["entries"][0]
        assert entry["event_type"] == "CASE_TRANSITIONED"
        assert entry["metadata"] == {"name": "[REDACTED]", "to_status": "TRACKING"}

    def test_export_reports_broken_chain(self):
        log = AuditLog()
        log.append(_make_entry())
        log.append(_make_entry())
        log._entries[0].target_entity = "case_999"
        chain = log.export_for_review(org_id="org_a")["export_metadata"]["chain_integrity"]
        assert chain.startswith("BROKEN_AT_INDEX_")
