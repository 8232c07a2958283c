"""
optledger - Escrowed Option Ledger

Issuance, pricing and exactly-once exercise of bilateral call options whose
underlying is held in custody escrow.

Usage:
    from optledger import Ledger, OptionLifecycleEngine, token, SYSTEM_WALLET, Signature

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("SOL", "Solana"))
    ledger.register_unit(token("USDC", "USD Coin"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.transfer("SOL", SYSTEM_WALLET, "alice", 10,
                    Signature(SYSTEM_WALLET), "fund_alice")
    ledger.transfer("USDC", SYSTEM_WALLET, "bob", 500_000000,
                    Signature(SYSTEM_WALLET), "fund_bob")

    engine = OptionLifecycleEngine(ledger)
    contract = engine.create(
        creator="alice", underlying_asset_id="SOL", strike_asset_id="USDC",
        strike_price=100_000000, expiration=31_536_000,
        spot=100_000000, risk_free_rate=50_000, volatility=200_000, amount=10,
    )
    engine.exercise("bob", contract)
"""

# Core types
from .core import (
    LedgerView,
    CustodyService,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    Signature,
    EscrowCapability,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    Unauthorized,
    StaleState,
    ArithmeticFault,
    InvalidExpiration,
    OptionAlreadyExercised,
    OptionExpired,
    ContractAlreadyExists,
    ContractNotFound,
    non_transferable_rule,
    token,
    SYSTEM_WALLET,
    ESCROW_WALLET_PREFIX,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_OPTION_CONTRACT,
    UNIT_TYPE_PROTOCOL_STATE,
    U64_MAX,
)

# Ledger and clock
from .ledger import Ledger
from .clock import Clock, SystemClock

# Fixed-point arithmetic
from .fixed_point import (
    SCALE,
    scale_in, scale_out,
    ln_approx, exp_approx, sqrt_approx, normal_cdf_approx,
)

# Pricing
from .black_scholes import (
    price_option,
    reference_call_price,
    pricing_gap,
    SECONDS_PER_YEAR,
    DISCOUNT_LEGACY,
    DISCOUNT_RECIPROCAL,
)

# Option contracts
from .units.option import (
    OptionContract,
    OptionStatus,
    option_contract_id,
    create_option_contract_unit,
    load_option_contract,
    get_option_status,
    compute_option_creation,
    compute_option_exercise,
)

# Protocol bootstrap
from .units.protocol import (
    create_protocol_state_unit,
    compute_protocol_initialization,
    get_admin,
)

# Engine
from .lifecycle_engine import OptionLifecycleEngine


__version__ = "1.0.0"

__all__ = [
    # Core
    'LedgerView', 'CustodyService', 'Move', 'Transaction', 'PendingTransaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'Signature', 'EscrowCapability',
    'non_transferable_rule', 'token',
    'SYSTEM_WALLET', 'ESCROW_WALLET_PREFIX',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_OPTION_CONTRACT', 'UNIT_TYPE_PROTOCOL_STATE', 'U64_MAX',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'Unauthorized', 'StaleState', 'ArithmeticFault', 'InvalidExpiration',
    'OptionAlreadyExercised', 'OptionExpired', 'ContractAlreadyExists', 'ContractNotFound',
    # Ledger and clock
    'Ledger', 'Clock', 'SystemClock',
    # Fixed point
    'SCALE', 'scale_in', 'scale_out',
    'ln_approx', 'exp_approx', 'sqrt_approx', 'normal_cdf_approx',
    # Pricing
    'price_option', 'reference_call_price', 'pricing_gap',
    'SECONDS_PER_YEAR', 'DISCOUNT_LEGACY', 'DISCOUNT_RECIPROCAL',
    # Options
    'OptionContract', 'OptionStatus', 'option_contract_id', 'create_option_contract_unit',
    'load_option_contract', 'get_option_status',
    'compute_option_creation', 'compute_option_exercise',
    # Protocol
    'create_protocol_state_unit', 'compute_protocol_initialization', 'get_admin',
    # Engine
    'OptionLifecycleEngine',
]
