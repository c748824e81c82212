"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the point-transfer ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Balances sum to zero; members never go negative
2. atomicity.py - All-or-nothing transfer semantics
3. reconstruction.py - Balances derive from the transfer log alone
4. concurrency.py - Serialized access to shared accounts, no deadlock

These tests use hypothesis for property-based testing.
"""
