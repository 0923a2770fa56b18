"""
absencegov -- Absence Case Governance Engine
============================================

A Python library that enforces the governance rules of an employee
sickness-absence system: who may act (role precedence, permissions and a
configurable super-admin allow-list), what they may do (referral and case
lifecycle state machines, milestone completion with mandatory skip
reasons), and how absence risk is scored (Bradford Factor with
per-organisation risk tiers).

The engine holds no state and performs no I/O.  Callers hand in record
snapshots and receive updated copies, typed exceptions, and entries on an
append-only, hash-chained audit log.
"""

__version__ = "0.1.0"
