"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the option ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting invariants
2. atomicity.py - All-or-nothing create and exercise
3. exactly_once.py - Monotonic exercise, also under concurrent callers
4. determinism.py - Reproducible premiums and contract ids

These tests use hypothesis for property-based testing.
"""
