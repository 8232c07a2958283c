"""
test_engine.py - Tests for OptionLifecycleEngine

Tests:
- Scenarios A-D end to end against the custody ledger
- Clock handling (ledger clock, external clock)
- Failed creation leaves no record and no escrow behind
- Protocol bootstrap through the engine
- Queries and verbose output
"""

import pytest

from optledger import (
    Ledger, OptionLifecycleEngine, OptionContract, OptionStatus,
    SystemClock, option_contract_id,
    InvalidExpiration, OptionExpired, OptionAlreadyExercised,
    ContractAlreadyExists, ContractNotFound, InsufficientFunds,
    ArithmeticFault, Unauthorized, LedgerError, UnitNotRegistered,
    DISCOUNT_RECIPROCAL, price_option, token,
)
from tests.conftest import (
    ATM_TERMS, UNDERLYING, STRIKE_ASSET, ONE_YEAR,
    fund, snapshot_balances, verify_conservation,
)


class FixedClock:
    """Clock returning a settable time."""

    def __init__(self, t: int = 0):
        self.t = t

    def now(self) -> int:
        return self.t


class SteppingClock:
    """Clock that moves forward by a fixed step after every reading."""

    def __init__(self, step: int):
        self.step = step
        self.t = 0
        self.reads = 0

    def now(self) -> int:
        t = self.t
        self.t += self.step
        self.reads += 1
        return t


def short_terms(**overrides):
    """Scenario C terms: expiry at t=100, spot well above strike."""
    terms = dict(ATM_TERMS, spot=300_000000, expiration=100)
    terms.update(overrides)
    return terms


class TestScenarioA:
    """Create a one-year at-the-money call at time 0."""

    def test_create_succeeds(self, engine, funded_ledger):
        contract = engine.create(creator="alice", **ATM_TERMS)

        assert isinstance(contract, OptionContract)
        assert contract.contract_id == option_contract_id("alice")
        assert contract.option_price >= 0
        assert contract.is_exercised is False
        assert contract.created_at == 0
        assert funded_ledger.get_balance("alice", UNDERLYING) == 90
        assert funded_ledger.get_balance(contract.escrow_wallet, UNDERLYING) == 10

    def test_legacy_premium(self, engine):
        contract = engine.create(creator="alice", **ATM_TERMS)
        assert contract.option_price == 0

    def test_reciprocal_premium(self, funded_ledger):
        engine = OptionLifecycleEngine(funded_ledger, discount=DISCOUNT_RECIPROCAL)
        contract = engine.create(creator="alice", **ATM_TERMS)
        assert contract.option_price == 10_709_144

    def test_quote_matches_stored_premium(self, funded_ledger):
        engine = OptionLifecycleEngine(funded_ledger, discount=DISCOUNT_RECIPROCAL)
        quoted = engine.quote(100_000000, 100_000000, ONE_YEAR, 50_000, 200_000)
        contract = engine.create(creator="alice", **ATM_TERMS)
        assert quoted == contract.option_price

    def test_status_active(self, engine, atm_option):
        assert engine.status(atm_option.contract_id) == OptionStatus.ACTIVE


class TestScenarioB:
    """Expiration must be strictly in the future."""

    def test_expiration_equal_to_now(self, engine, funded_ledger):
        funded_ledger.advance_time(500)
        with pytest.raises(InvalidExpiration):
            engine.create(creator="alice", **short_terms(expiration=500))
        assert funded_ledger.get_balance("alice", UNDERLYING) == 100

    def test_expiration_in_past(self, engine, funded_ledger):
        funded_ledger.advance_time(500)
        with pytest.raises(InvalidExpiration):
            engine.create(creator="alice", **short_terms(expiration=10))


class TestScenarioC:
    """Expiry at 100, exercise attempted at 101."""

    def test_exercise_after_expiry(self, engine, funded_ledger):
        contract = engine.create(creator="alice", **short_terms())
        funded_ledger.advance_time(101)
        before = snapshot_balances(funded_ledger)

        with pytest.raises(OptionExpired):
            engine.exercise("bob", contract)

        assert engine.get_contract(contract.contract_id).is_exercised is False
        assert snapshot_balances(funded_ledger) == before
        assert engine.status(contract.contract_id) == OptionStatus.EXPIRED

    def test_exercise_at_expiry_allowed(self, engine, funded_ledger):
        contract = engine.create(creator="alice", **short_terms())
        funded_ledger.advance_time(100)
        assert engine.exercise("bob", contract).is_exercised is True


class TestScenarioD:
    """Valid exercise, then a second attempt."""

    def test_exercise_settles_both_legs(self, engine, funded_ledger, atm_option):
        funded_ledger.advance_time(1_000)
        exercised = engine.exercise("bob", atm_option)

        assert exercised.is_exercised is True
        assert exercised.exercised_by == "bob"
        assert exercised.exercised_at == 1_000
        assert funded_ledger.get_balance("bob", STRIKE_ASSET) == 900_000000
        assert funded_ledger.get_balance("alice", STRIKE_ASSET) == 100_000000
        assert funded_ledger.get_balance("bob", UNDERLYING) == 10
        assert funded_ledger.get_balance(atm_option.escrow_wallet, UNDERLYING) == 0
        assert verify_conservation(funded_ledger)

    def test_second_exercise_rejected(self, engine, funded_ledger, atm_option):
        engine.exercise("bob", atm_option)
        before = snapshot_balances(funded_ledger)

        with pytest.raises(OptionAlreadyExercised):
            engine.exercise("carol", atm_option.contract_id)

        assert snapshot_balances(funded_ledger) == before
        assert engine.get_contract(atm_option.contract_id).exercised_by == "bob"

    def test_status_exercised(self, engine, atm_option):
        engine.exercise("bob", atm_option)
        assert engine.status(atm_option.contract_id) == OptionStatus.EXERCISED


class TestFailedOperations:

    def test_insufficient_strike_funds(self, engine, funded_ledger, atm_option):
        funded_ledger.register_wallet("dave")
        before = snapshot_balances(funded_ledger)

        with pytest.raises(InsufficientFunds):
            engine.exercise("dave", atm_option)

        assert engine.get_contract(atm_option.contract_id).is_exercised is False
        assert snapshot_balances(funded_ledger) == before

    def test_creator_cannot_fund_escrow(self, engine, funded_ledger):
        with pytest.raises(InsufficientFunds):
            engine.create(creator="alice", **dict(ATM_TERMS, amount=1_000))

        cid = option_contract_id("alice")
        assert not funded_ledger.has_unit(cid)
        assert not funded_ledger.is_registered(f"escrow:{cid}")
        assert funded_ledger.get_balance("alice", UNDERLYING) == 100

    def test_failed_create_can_be_retried(self, engine, funded_ledger):
        with pytest.raises(InsufficientFunds):
            engine.create(creator="alice", **dict(ATM_TERMS, amount=1_000))
        contract = engine.create(creator="alice", **ATM_TERMS)
        assert contract.amount == 10

    def test_pricing_fault_leaves_no_trace(self, engine, funded_ledger):
        with pytest.raises(ArithmeticFault):
            engine.create(creator="alice", **dict(ATM_TERMS, spot=90_000000))
        assert not funded_ledger.has_unit(option_contract_id("alice"))

    def test_short_dated_at_the_money_faults(self, engine, funded_ledger):
        # t=100s: sigma*sqrt(t) = 346 exceeds d1 = 0, so d2 underflows
        with pytest.raises(ArithmeticFault):
            engine.create(creator="alice", **dict(ATM_TERMS, expiration=100))

        cid = option_contract_id("alice")
        assert not funded_ledger.has_unit(cid)
        assert not funded_ledger.is_registered(f"escrow:{cid}")
        assert funded_ledger.get_balance("alice", UNDERLYING) == 100

    def test_unregistered_strike_asset(self, engine, funded_ledger):
        with pytest.raises(UnitNotRegistered):
            engine.create(creator="alice", **dict(ATM_TERMS, strike_asset_id="EUR"))

        cid = option_contract_id("alice")
        assert not funded_ledger.has_unit(cid)
        assert not funded_ledger.is_registered(f"escrow:{cid}")
        assert funded_ledger.get_balance("alice", UNDERLYING) == 100
        assert engine.list_contracts() == []

    def test_duplicate_contract(self, engine, atm_option):
        with pytest.raises(ContractAlreadyExists):
            engine.create(creator="alice", **ATM_TERMS)

    def test_nonce_allows_second_contract(self, engine, atm_option):
        second = engine.create(creator="alice", nonce=1, **ATM_TERMS)
        assert second.contract_id != atm_option.contract_id
        assert [c.contract_id for c in engine.list_contracts()] == sorted(
            [atm_option.contract_id, second.contract_id]
        )

    def test_unknown_contract(self, engine):
        with pytest.raises(ContractNotFound):
            engine.exercise("bob", "OPT-0000000000000000")
        with pytest.raises(ContractNotFound):
            engine.get_contract("OPT-0000000000000000")

    def test_other_engine_has_no_escrow_authority(self, funded_ledger, atm_option):
        stranger = OptionLifecycleEngine(funded_ledger)
        with pytest.raises(Unauthorized):
            stranger.exercise("bob", atm_option)

    def test_creator_self_exercise_rejected(self, engine, atm_option):
        with pytest.raises(ValueError):
            engine.exercise("alice", atm_option)


class TestClock:

    def test_external_clock_gates_expiry(self, funded_ledger):
        clock = FixedClock(0)
        engine = OptionLifecycleEngine(funded_ledger, clock=clock)
        contract = engine.create(creator="alice", **short_terms())
        clock.t = 101
        with pytest.raises(OptionExpired):
            engine.exercise("bob", contract)
        assert engine.status(contract.contract_id) == OptionStatus.EXPIRED

    def test_create_prices_at_recorded_time(self, funded_ledger):
        clock = SteppingClock(step=1_000)
        engine = OptionLifecycleEngine(funded_ledger, clock=clock, discount=DISCOUNT_RECIPROCAL)
        contract = engine.create(creator="alice", **ATM_TERMS)

        assert clock.reads == 1
        assert contract.created_at == 0
        assert contract.option_price == price_option(
            ATM_TERMS['spot'], ATM_TERMS['strike_price'], ONE_YEAR,
            ATM_TERMS['risk_free_rate'], ATM_TERMS['volatility'], DISCOUNT_RECIPROCAL,
        )

    def test_system_clock_rejects_past_expiration(self, funded_ledger):
        engine = OptionLifecycleEngine(funded_ledger, clock=SystemClock())
        with pytest.raises(InvalidExpiration):
            engine.create(creator="alice", **ATM_TERMS)

    def test_system_clock_is_monotonic(self):
        clock = SystemClock()
        first = clock.now()
        assert clock.now() >= first > 0

    def test_unknown_discount_mode(self, funded_ledger):
        with pytest.raises(ValueError):
            OptionLifecycleEngine(funded_ledger, discount="continuous")


class TestContractLocks:

    def test_same_contract_same_lock(self, engine):
        cid = option_contract_id("alice")
        assert engine._lock_for(cid) is engine._lock_for(cid)

    def test_lock_pool_does_not_grow(self, engine):
        pool_size = len(engine._locks)
        for i in range(500):
            with pytest.raises(ContractNotFound):
                engine.exercise("bob", f"OPT-{i:016x}")
        assert len(engine._locks) == pool_size


class TestBootstrap:

    def test_initialize_sets_admin(self, engine):
        assert engine.admin is None
        engine.initialize("root")
        assert engine.admin == "root"

    def test_initialize_once(self, engine):
        engine.initialize("root")
        with pytest.raises(LedgerError):
            engine.initialize("mallory")
        assert engine.admin == "root"


class TestVerbose:

    def test_verbose_prints_transitions(self, funded_ledger, capsys):
        engine = OptionLifecycleEngine(funded_ledger, verbose=True)
        contract = engine.create(creator="alice", **ATM_TERMS)
        engine.exercise("bob", contract)
        out = capsys.readouterr().out
        assert f"[CREATE] {contract.contract_id}" in out
        assert f"[EXERCISE] {contract.contract_id} by bob" in out

    def test_verbose_prints_rejections(self, funded_ledger, capsys):
        engine = OptionLifecycleEngine(funded_ledger, verbose=True)
        contract = engine.create(creator="alice", **short_terms())
        funded_ledger.advance_time(101)
        with pytest.raises(OptionExpired):
            engine.exercise("bob", contract)
        assert "[REJECTED] exercise" in capsys.readouterr().out

    def test_quiet_by_default_on_quiet_ledger(self, engine, capsys):
        engine.create(creator="alice", **ATM_TERMS)
        assert capsys.readouterr().out == ""


def test_full_lifecycle_on_fresh_ledger():
    """Issue tokens, write, exercise, and check conservation."""
    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token(UNDERLYING, "Solana"))
    ledger.register_unit(token(STRIKE_ASSET, "USD Coin"))
    ledger.register_wallet("writer")
    ledger.register_wallet("holder")
    fund(ledger, "writer", UNDERLYING, 10)
    fund(ledger, "holder", STRIKE_ASSET, 100_000000)

    engine = OptionLifecycleEngine(ledger)
    engine.initialize("writer")
    contract = engine.create(creator="writer", **ATM_TERMS)
    ledger.advance_time(ONE_YEAR)
    engine.exercise("holder", contract)

    assert ledger.get_balance("holder", UNDERLYING) == 10
    assert ledger.get_balance("writer", STRIKE_ASSET) == 100_000000
    assert ledger.get_balance("holder", STRIKE_ASSET) == 0
    assert verify_conservation(ledger)
