"""
Exactly-Once Exercise Conformance Tests

INVARIANT: is_exercised moves from false to true at most once.

    ∀ contract C:
        at most one exercise(C) succeeds, whatever the number of callers
        once exercised, C stays exercised

The check of is_exercised and its update happen under the engine's
per-contract lock, and the ledger rejects a state change built from an
outdated snapshot.
"""

import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from optledger import (
    Ledger, OptionLifecycleEngine, OptionAlreadyExercised, StaleState, InsufficientFunds,
    Signature, ExecuteResult, token,
)
from optledger.units.option import compute_option_exercise
from tests.conftest import ATM_TERMS, UNDERLYING, STRIKE_ASSET, fund, verify_conservation


def _market(num_holders: int) -> Ledger:
    ledger = Ledger("test", verbose=False)
    ledger.register_unit(token(UNDERLYING, "Solana"))
    ledger.register_unit(token(STRIKE_ASSET, "USD Coin"))
    ledger.register_wallet("writer")
    fund(ledger, "writer", UNDERLYING, 10)
    for i in range(num_holders):
        holder = f"holder_{i}"
        ledger.register_wallet(holder)
        fund(ledger, holder, STRIKE_ASSET, 100_000000)
    return ledger


class TestConcurrentExercise:

    @pytest.mark.parametrize("num_threads", [2, 8, 32])
    def test_one_winner_among_threads(self, num_threads):
        ledger = _market(num_threads)
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(creator="writer", **ATM_TERMS)

        barrier = threading.Barrier(num_threads)
        winners, losers, errors = [], [], []

        def attempt(holder):
            barrier.wait()
            try:
                engine.exercise(holder, contract)
                winners.append(holder)
            except OptionAlreadyExercised:
                losers.append(holder)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=attempt, args=(f"holder_{i}",))
            for i in range(num_threads)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(winners) == 1
        assert len(losers) == num_threads - 1

        winner = winners[0]
        assert engine.get_contract(contract.contract_id).exercised_by == winner
        assert ledger.get_balance(winner, UNDERLYING) == 10
        assert ledger.get_balance("writer", STRIKE_ASSET) == 100_000000
        for loser in losers:
            assert ledger.get_balance(loser, STRIKE_ASSET) == 100_000000
        assert verify_conservation(ledger)


class TestSequentialExercise:

    @given(st.integers(min_value=2, max_value=6))
    @settings(max_examples=20, deadline=None)
    def test_flag_is_monotonic(self, attempts):
        """PROPERTY: after the first success every further exercise fails."""
        ledger = _market(attempts)
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(creator="writer", **ATM_TERMS)

        engine.exercise("holder_0", contract)
        for i in range(1, attempts):
            with pytest.raises(OptionAlreadyExercised):
                engine.exercise(f"holder_{i}", contract)
            assert engine.get_contract(contract.contract_id).is_exercised is True


class TestStaleExercise:

    def test_exercise_built_from_old_snapshot_is_rejected(self):
        """Two exercise transactions computed before either runs: only one applies."""
        ledger = _market(2)
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(creator="writer", **ATM_TERMS)
        escrow = engine._capabilities[contract.contract_id]

        first = compute_option_exercise(ledger, contract.contract_id, "holder_0", escrow)
        second = compute_option_exercise(ledger, contract.contract_id, "holder_1", escrow)

        ledger.execute_or_raise(first)
        # The drained escrow or the changed record rejects it, whichever is checked first
        with pytest.raises((InsufficientFunds, StaleState)):
            ledger.execute_or_raise(second)

        assert ledger.get_balance("holder_1", STRIKE_ASSET) == 100_000000
        assert ledger.get_balance("holder_1", UNDERLYING) == 0

    def test_escrow_cannot_be_drained_twice(self):
        ledger = _market(1)
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(creator="writer", **ATM_TERMS)
        engine.exercise("holder_0", contract)

        escrow = engine._capabilities[contract.contract_id]
        result = ledger.transfer(UNDERLYING, escrow.escrow_wallet, "holder_0", 10, escrow, "drain")
        assert ledger.get_balance("holder_0", UNDERLYING) == 10
        assert result == ExecuteResult.REJECTED

    def test_signature_cannot_release_escrow(self):
        ledger = _market(1)
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(creator="writer", **ATM_TERMS)
        result = ledger.transfer(
            UNDERLYING, contract.escrow_wallet, "holder_0", 10,
            Signature("writer"), "release",
        )
        assert result == ExecuteResult.REJECTED
        assert ledger.get_balance(contract.escrow_wallet, UNDERLYING) == 10
