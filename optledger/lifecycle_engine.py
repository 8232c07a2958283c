"""
lifecycle_engine.py - Option Lifecycle Engine

Owns the issuance / exercise / expiry state machine of escrowed call options.

Transitions:
    (none)  --create-->   ACTIVE      record + escrow deposit, one transaction
    ACTIVE  --exercise--> EXERCISED   strike payment + escrow release + flag, one transaction
    ACTIVE  --time-->     EXPIRED     derived from the clock, never stored

The engine prices each contract once at creation, holds the escrow
capabilities custody issues, reads time only from its clock, and serializes
requests per contract so the is_exercised check and its update cannot
interleave.
"""

from __future__ import annotations
import threading
from typing import Dict, List, Optional, Union

from .core import (
    CustodyService, EscrowCapability, Transaction,
    LedgerError, InvalidExpiration, ContractAlreadyExists, ContractNotFound,
    Unauthorized,
)
from .clock import Clock
from .black_scholes import price_option, DISCOUNT_LEGACY, DISCOUNT_MODES
from .units.option import (
    OptionContract, OptionStatus,
    option_contract_id,
    compute_option_creation, compute_option_exercise,
    load_option_contract,
)
from .units.protocol import compute_protocol_initialization, get_admin


# Contracts hash onto a fixed pool of locks; two ids sharing a stripe only
# serialize against each other.
LOCK_STRIPES = 64


class OptionLifecycleEngine:
    """
    Lifecycle engine for bilateral escrowed call options.

    Features:
    - Premium computed once at creation with the fixed-point pricer
    - Escrow funded atomically with the contract record
    - Exactly-once exercise, gated by expiration
    - Typed errors; a failed operation leaves no trace in the ledger

    Example:
        engine = OptionLifecycleEngine(ledger)
        contract = engine.create(
            creator="alice", underlying_asset_id="SOL", strike_asset_id="USDC",
            strike_price=100_000000, expiration=31_536_000,
            spot=100_000000, risk_free_rate=50_000, volatility=200_000, amount=10,
        )
        engine.exercise("bob", contract)
    """

    def __init__(
        self,
        custody: CustodyService,
        clock: Optional[Clock] = None,
        discount: str = DISCOUNT_LEGACY,
        verbose: Optional[bool] = None,
    ):
        """
        Initialize lifecycle engine.

        Args:
            custody: Custody service holding balances, escrows and contract records
            clock: Time source for expiration checks (defaults to the custody's clock)
            discount: Discount factor mode passed to price_option
            verbose: Print one line per operation (defaults to the custody's setting)
        """
        if discount not in DISCOUNT_MODES:
            raise ValueError(f"discount must be one of {DISCOUNT_MODES}, got {discount!r}")
        if clock is None:
            if not isinstance(custody, Clock):
                raise ValueError("custody has no clock; pass clock explicitly")
            clock = custody

        self.custody = custody
        self.clock = clock
        self.discount = discount
        self.verbose = getattr(custody, 'verbose', False) if verbose is None else verbose

        self._capabilities: Dict[str, EscrowCapability] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, contract_id: str) -> threading.Lock:
        return self._locks[hash(contract_id) % LOCK_STRIPES]

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    # ========================================================================
    # BOOTSTRAP
    # ========================================================================

    def initialize(self, admin: str) -> Transaction:
        """
        Write the protocol bootstrap record naming the admin.

        Raises:
            LedgerError: If the protocol has already been initialized
        """
        tx = self.custody.execute_or_raise(compute_protocol_initialization(self.custody, admin))
        self._log(f"[INITIALIZE] admin={admin}")
        return tx

    @property
    def admin(self) -> Optional[str]:
        """Admin identity from the bootstrap record, None before initialize()."""
        return get_admin(self.custody)

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def quote(
        self,
        spot: int,
        strike_price: int,
        expiration: int,
        risk_free_rate: int,
        volatility: int,
    ) -> int:
        """
        Premium a contract with these terms would be created with now.

        Raises:
            InvalidExpiration: If expiration is not after the current time
            ArithmeticFault: If the terms leave the pricer's domain
        """
        return self._price(self.clock.now(), spot, strike_price, expiration, risk_free_rate, volatility)

    def _price(self, now, spot, strike_price, expiration, risk_free_rate, volatility) -> int:
        if expiration <= now:
            raise InvalidExpiration(f"expiration {expiration} is not after {now}")
        return price_option(
            spot, strike_price, expiration - now, risk_free_rate, volatility, self.discount
        )

    def create(
        self,
        creator: str,
        underlying_asset_id: str,
        strike_asset_id: str,
        strike_price: int,
        expiration: int,
        spot: int,
        risk_free_rate: int,
        volatility: int,
        amount: int,
        nonce: int = 0,
    ) -> OptionContract:
        """
        Issue an option contract and escrow its underlying.

        Args:
            creator: Issuing party; signs the escrow deposit
            underlying_asset_id: Asset escrowed and delivered on exercise
            strike_asset_id: Asset the exerciser pays in
            strike_price: Amount of strike asset owed on exercise
            expiration: Last second at which exercise is allowed
            spot: Current price of the underlying (raw units)
            risk_free_rate: Rate scaled by SCALE (5% -> 50_000)
            volatility: Volatility scaled by SCALE (20% -> 200_000)
            amount: Quantity of underlying to escrow
            nonce: Distinguishes several contracts of the same creator

        Returns:
            Snapshot of the new contract (status ACTIVE)

        Raises:
            InvalidExpiration: If expiration <= now
            ContractAlreadyExists: If (creator, nonce) already has a contract
            UnitNotRegistered: If the underlying or strike asset is not registered
            ArithmeticFault: If the terms leave the pricer's domain
            InsufficientFunds: If the creator cannot fund the escrow
            LedgerError: Any other custody rejection
        """
        contract_id = option_contract_id(creator, nonce)
        with self._lock_for(contract_id):
            if self.custody.has_unit(contract_id):
                raise ContractAlreadyExists(f"Option contract {contract_id} already exists")
            now = self.clock.now()
            option_price = self._price(now, spot, strike_price, expiration, risk_free_rate, volatility)

            escrow = self.custody.open_escrow(contract_id)
            try:
                pending = compute_option_creation(
                    self.custody,
                    creator=creator,
                    underlying_asset_id=underlying_asset_id,
                    strike_asset_id=strike_asset_id,
                    strike_price=strike_price,
                    expiration=expiration,
                    option_price=option_price,
                    amount=amount,
                    escrow=escrow,
                    now=now,
                )
                self.custody.execute_or_raise(pending)
            except (LedgerError, ValueError) as e:
                self.custody.close_escrow(escrow)
                self._log(f"[REJECTED] create {contract_id}: {e}")
                raise
            self._capabilities[contract_id] = escrow

        self._log(f"[CREATE] {contract_id} by {creator}: premium={option_price} expiration={expiration}")
        return load_option_contract(self.custody, contract_id)

    def exercise(
        self,
        exerciser: str,
        contract: Union[OptionContract, str],
    ) -> OptionContract:
        """
        Exercise an option contract.

        Args:
            exerciser: Party paying the strike and receiving the underlying
            contract: Contract snapshot or contract id

        Returns:
            Snapshot of the exercised contract

        Raises:
            ContractNotFound: If the contract does not exist
            OptionExpired: If now > expiration
            OptionAlreadyExercised: If already exercised
            InsufficientFunds: If the exerciser cannot pay the strike
            Unauthorized: If this engine does not hold the contract's escrow authority
        """
        contract_id = contract.contract_id if isinstance(contract, OptionContract) else contract
        with self._lock_for(contract_id):
            now = self.clock.now()
            escrow = self._capabilities.get(contract_id)
            if escrow is None:
                if not self.custody.has_unit(contract_id):
                    raise ContractNotFound(f"Option contract {contract_id} not found")
                raise Unauthorized(f"No escrow authority held for {contract_id}")
            try:
                pending = compute_option_exercise(self.custody, contract_id, exerciser, escrow, now=now)
                self.custody.execute_or_raise(pending)
            except LedgerError as e:
                self._log(f"[REJECTED] exercise {contract_id} by {exerciser}: {e}")
                raise

        self._log(f"[EXERCISE] {contract_id} by {exerciser} at {now}")
        return load_option_contract(self.custody, contract_id)

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def get_contract(self, contract_id: str) -> OptionContract:
        """Current snapshot of a contract."""
        return load_option_contract(self.custody, contract_id)

    def status(self, contract_id: str) -> OptionStatus:
        """Status of a contract at the clock's current time."""
        return self.get_contract(contract_id).status_at(self.clock.now())

    def list_contracts(self) -> List[OptionContract]:
        """Snapshots of the contracts issued through this engine, ordered by id."""
        return [self.get_contract(cid) for cid in sorted(self._capabilities)]
