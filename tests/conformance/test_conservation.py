"""
Conservation Conformance Tests

INVARIANT: Value is neither created nor destroyed by option operations.

    ∀ unit U, ∀ successful or failed operation:
        Σ balance(w, U) over all wallets w (system and escrow included) is unchanged

Option creation only moves underlying into escrow; exercise only swaps
strike asset for the escrowed underlying.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from optledger import (
    Ledger, OptionLifecycleEngine, LedgerError, token,
)
from tests.conftest import ATM_TERMS, UNDERLYING, STRIKE_ASSET, fund, verify_conservation


operation = st.tuples(
    st.sampled_from(["create", "exercise", "advance"]),
    st.integers(min_value=0, max_value=3),
    st.integers(min_value=1, max_value=20),
)


class TestConservationProperties:

    @given(st.lists(operation, min_size=1, max_size=15))
    @settings(max_examples=50, deadline=None)
    def test_random_operation_sequence_conserves_supply(self, ops):
        """
        PROPERTY: after any sequence of creates, exercises and clock moves,
        accepted or rejected, every token still nets to zero.
        """
        ledger = Ledger("test", verbose=False)
        ledger.register_unit(token(UNDERLYING, "Solana"))
        ledger.register_unit(token(STRIKE_ASSET, "USD Coin"))
        for party in ("writer", "holder"):
            ledger.register_wallet(party)
        fund(ledger, "writer", UNDERLYING, 40)
        fund(ledger, "holder", STRIKE_ASSET, 250_000000)

        engine = OptionLifecycleEngine(ledger)
        issued = []

        for kind, index, size in ops:
            try:
                if kind == "create":
                    issued.append(engine.create(
                        creator="writer", nonce=index, **dict(ATM_TERMS, amount=size)
                    ))
                elif kind == "exercise" and issued:
                    engine.exercise("holder", issued[index % len(issued)])
                elif kind == "advance":
                    ledger.advance_time(ledger.current_time + size * 3_000_000)
            except LedgerError:
                pass
            assert verify_conservation(ledger)

        escrowed = sum(
            ledger.get_balance(c.escrow_wallet, UNDERLYING)
            for c in issued
        )
        outstanding = sum(
            c.amount for c in (engine.get_contract(c.contract_id) for c in issued)
            if not c.is_exercised
        )
        assert escrowed == outstanding


class TestConservationExamples:

    def test_exercise_swaps_without_leak(self, engine, funded_ledger, atm_option):
        supply_before = {
            u: funded_ledger.total_supply(u) for u in (UNDERLYING, STRIKE_ASSET)
        }
        engine.exercise("bob", atm_option)
        for unit, supply in supply_before.items():
            assert funded_ledger.total_supply(unit) == supply
