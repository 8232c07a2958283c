"""
conftest.py - Shared pytest fixtures for optledger tests

Provides common fixtures used across unit and conformance tests:
- Basic ledgers (empty, funded)
- Option lifecycle engine setups
- Scenario terms for a one-year at-the-money call
- Conservation utilities
"""

import pytest
from typing import Dict, Tuple

from optledger import (
    Ledger, OptionLifecycleEngine,
    Signature, ExecuteResult,
    token,
    SYSTEM_WALLET,
)

from tests.fake_view import FakeView


UNDERLYING = "SOL"
STRIKE_ASSET = "USDC"
ONE_YEAR = 31_536_000

# Scenario A: one-year at-the-money call, 5% rate, 20% volatility
ATM_TERMS = dict(
    underlying_asset_id=UNDERLYING,
    strike_asset_id=STRIKE_ASSET,
    strike_price=100_000000,
    expiration=ONE_YEAR,
    spot=100_000000,
    risk_free_rate=50_000,
    volatility=200_000,
    amount=10,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(ledger: Ledger, wallet: str, unit_symbol: str, quantity: int) -> None:
    """Issue ``quantity`` of a unit to a wallet from SYSTEM_WALLET."""
    result = ledger.transfer(
        unit_symbol, SYSTEM_WALLET, wallet, quantity,
        Signature(SYSTEM_WALLET), f"fund_{wallet}_{unit_symbol}",
    )
    assert result == ExecuteResult.APPLIED


def snapshot_balances(ledger: Ledger) -> Dict[Tuple[str, str], int]:
    """All (wallet, unit) balances, zeros included, for before/after comparisons."""
    return {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in sorted(ledger.list_wallets())
        for unit in (UNDERLYING, STRIKE_ASSET)
    }


def verify_conservation(ledger: Ledger) -> bool:
    """Every token issued from SYSTEM_WALLET nets to zero across all wallets."""
    report = ledger.verify_double_entry({UNDERLYING: 0, STRIKE_ASSET: 0})
    return report['valid']


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False)


@pytest.fixture
def basic_ledger():
    """Ledger with the underlying, the strike asset and three parties."""
    ledger = Ledger("test", verbose=False)
    ledger.register_unit(token(UNDERLYING, "Solana"))
    ledger.register_unit(token(STRIKE_ASSET, "USD Coin"))
    for wallet in ("alice", "bob", "carol"):
        ledger.register_wallet(wallet)
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Alice holds underlying to write calls; bob and carol hold strike asset."""
    fund(basic_ledger, "alice", UNDERLYING, 100)
    fund(basic_ledger, "bob", STRIKE_ASSET, 1_000_000000)
    fund(basic_ledger, "carol", STRIKE_ASSET, 1_000_000000)
    return basic_ledger


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine(funded_ledger):
    """Lifecycle engine on the funded ledger, using the ledger's clock."""
    return OptionLifecycleEngine(funded_ledger)


@pytest.fixture
def atm_option(engine):
    """Scenario A call written by alice at time 0."""
    return engine.create(creator="alice", **ATM_TERMS)


@pytest.fixture
def empty_view():
    """FakeView at time 0 with no balances or units."""
    return FakeView(balances={}, time=0)
