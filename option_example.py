"""
option_example.py - Step-by-Step Escrowed Call Option Example

Demonstrates the complete lifecycle of an escrowed call option:
1. Setup: Create ledger, register assets, fund wallets
2. Creation: Price the option and escrow the underlying in one transaction
3. Monitoring: Check status and the premium against the float reference
4. Exercise: Strike payment and escrow release in one transaction
5. Rejections: Second exercise and exercise after expiry

Run this file directly:
    python option_example.py
"""

from optledger import (
    # Core
    Ledger, Signature, token, SYSTEM_WALLET,

    # Errors
    OptionAlreadyExercised, OptionExpired,

    # Pricing
    pricing_gap, SECONDS_PER_YEAR, DISCOUNT_RECIPROCAL,

    # Engine
    OptionLifecycleEngine,
)


def section(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def main():
    print("=" * 70)
    print("ESCROWED CALL OPTION - COMPLETE LIFECYCLE EXAMPLE")
    print("=" * 70)

    # =========================================================================
    # STEP 1: SETUP
    # =========================================================================
    section("STEP 1: SETUP")
    print("""
    We create a ledger and register:
    - SOL (underlying, escrowed by the writer)
    - USDC (strike asset, paid by the holder on exercise)
    - Two wallets: Alice (writer) and Bob (holder)
    """)

    ledger = Ledger(name="options_demo", initial_time=0, verbose=False)
    ledger.register_unit(token("SOL", "Solana"))
    ledger.register_unit(token("USDC", "USD Coin"))
    alice = ledger.register_wallet("alice")
    bob = ledger.register_wallet("bob")

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.transfer("SOL", SYSTEM_WALLET, alice, 10, Signature(SYSTEM_WALLET), "fund_alice")
    ledger.transfer("USDC", SYSTEM_WALLET, bob, 150_000000, Signature(SYSTEM_WALLET), "fund_bob")

    print(f"Alice: {ledger.get_balance(alice, 'SOL')} SOL")
    print(f"Bob:   {ledger.get_balance(bob, 'USDC'):,} USDC (raw units)")

    # =========================================================================
    # STEP 2: CREATE THE OPTION
    # =========================================================================
    section("STEP 2: CREATE THE OPTION")

    engine = OptionLifecycleEngine(ledger, discount=DISCOUNT_RECIPROCAL, verbose=True)
    engine.initialize(alice)

    terms = dict(
        underlying_asset_id="SOL",
        strike_asset_id="USDC",
        strike_price=100_000000,
        expiration=SECONDS_PER_YEAR,
        spot=100_000000,
        risk_free_rate=50_000,
        volatility=200_000,
        amount=10,
    )
    contract = engine.create(creator=alice, **terms)

    print(f"\n  Contract:     {contract.contract_id}")
    print(f"  Escrow:       {contract.escrow_wallet} holds "
          f"{ledger.get_balance(contract.escrow_wallet, 'SOL')} SOL")
    print(f"  Premium:      {contract.option_price:,}")

    # =========================================================================
    # STEP 3: MONITORING
    # =========================================================================
    section("STEP 3: MONITORING")

    gap = pricing_gap(
        terms['spot'], terms['strike_price'], SECONDS_PER_YEAR,
        terms['risk_free_rate'], terms['volatility'], DISCOUNT_RECIPROCAL,
    )
    print(f"  Status:            {engine.status(contract.contract_id).value}")
    print(f"  Fixed-point price: {gap['fixed_point']:,}")
    print(f"  Float reference:   {gap['reference']:,.0f}")
    print(f"  Relative error:    {gap['relative_error']:.2%}")

    # =========================================================================
    # STEP 4: EXERCISE
    # =========================================================================
    section("STEP 4: EXERCISE")

    ledger.advance_time(SECONDS_PER_YEAR // 2)
    engine.exercise(bob, contract)

    print(f"\n  Bob:   {ledger.get_balance(bob, 'SOL')} SOL, "
          f"{ledger.get_balance(bob, 'USDC'):,} USDC")
    print(f"  Alice: {ledger.get_balance(alice, 'SOL')} SOL, "
          f"{ledger.get_balance(alice, 'USDC'):,} USDC")
    print(f"  Status: {engine.status(contract.contract_id).value}")

    # =========================================================================
    # STEP 5: REJECTIONS
    # =========================================================================
    section("STEP 5: REJECTIONS")

    try:
        engine.exercise(bob, contract)
    except OptionAlreadyExercised as e:
        print(f"  Second exercise rejected: {e}")

    ledger.transfer("SOL", SYSTEM_WALLET, alice, 5, Signature(SYSTEM_WALLET), "fund_alice_again")
    short = engine.create(creator=alice, nonce=1, **dict(terms, amount=5))
    ledger.advance_time(SECONDS_PER_YEAR + 1)
    try:
        engine.exercise(bob, short)
    except OptionExpired as e:
        print(f"  Late exercise rejected: {e}")
    print(f"  Escrow still holds {ledger.get_balance(short.escrow_wallet, 'SOL')} SOL")

    report = ledger.verify_double_entry({"SOL": 0, "USDC": 0})
    print(f"\nConservation holds: {report['valid']}")


if __name__ == "__main__":
    main()
