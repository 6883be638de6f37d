"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Supply conservation and escrow backing
2. atomicity.py - All-or-nothing lending operations
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. canonicalization.py - Content-addressable identity
6. temporal.py - Logical clock and loan timing
7. concurrency.py - Racing operations on one record

These tests use hypothesis for property-based testing.
"""
