"""
conftest.py - Shared pytest fixtures for pointledger tests

Provides common fixtures used across unit and conformance tests:
- Deterministic clock
- Basic services (empty, two members, funded)
- Services with a failing log or a low balance ceiling
"""

import pytest

from pointledger import LedgerService, AccountStore

from tests.fake_view import StepClock, FlakyLog, make_service


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def empty_service(clock):
    """Fresh service with only the system account."""
    return LedgerService(clock=clock, verbose=False)


@pytest.fixture
def basic_service(clock):
    """Service with alice and bob, both at zero."""
    return make_service("alice", "bob", clock=clock)


@pytest.fixture
def funded_service(clock):
    """alice has 100 points, bob has 0."""
    return make_service("alice", "bob", funds={"alice": 100}, clock=clock)


# =============================================================================
# FAILURE FIXTURES
# =============================================================================

@pytest.fixture
def flaky_service(clock):
    """alice has 100 points; appends fail while flaky_service.log.failing is True."""
    return make_service("alice", "bob", funds={"alice": 100}, clock=clock, log=FlakyLog())


@pytest.fixture
def capped_service(clock):
    """Balances capped at 1000; alice holds 100, bob holds 990."""
    return make_service(
        "alice", "bob",
        funds={"alice": 100, "bob": 990},
        clock=clock,
        accounts=AccountStore(max_balance=1000),
    )
