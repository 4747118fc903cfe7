"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the paper-trading engine.

The tests are organized by invariant:
1. conservation.py - Cash and share conservation against the ledger
2. atomicity.py - Rejected operations change nothing
3. idempotency.py - Settlement runs at most once per position
4. determinism.py - Reproducible ledgers and Monte Carlo results
5. rounding.py - Cent rounding never drifts
6. temporal.py - Time ordering of ledger entries

These tests use hypothesis for property-based testing.
"""
