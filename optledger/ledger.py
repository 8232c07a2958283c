"""
ledger.py - Stateful Double-Entry Custody Ledger

The Ledger class is the central state manager and the custody service of the
option lifecycle. It is the only module that mutates state, ensuring
controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Implements CustodyService: escrow accounts guarded by capabilities
    - Executes transactions atomically (all moves succeed or all fail)
    - Checks the authorization of every move against its source wallet
    - Tracks a monotonic logical clock (integer seconds) and serves it via now()
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import secrets
import threading

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Signature, EscrowCapability, Authorization,
    Positions, UnitState,
    # Constants
    SYSTEM_WALLET, ESCROW_WALLET_PREFIX,
    # Exceptions
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    Unauthorized, StaleState,
    # Helper functions
    build_transaction, _freeze_state,
)


class Ledger:
    """
    Double-entry custody ledger with full validation and audit trail.

    Implements the LedgerView and CustodyService protocols, allowing the
    ledger to be passed to pure functions that only read, and to the option
    lifecycle engine as its custody collaborator.

    Design Principles:
        - Always validates: every transaction is checked for registration,
          authorization, transfer rules, balance constraints and stale state
          before anything is applied.
        - Always logs: every applied transaction is recorded in the audit
          trail, and verify_double_entry() audits conservation per unit.

    Thread Safety:
        execute() and the registration methods are serialized by an internal
        re-entrant lock; a state change built from an outdated snapshot is
        rejected with StaleState rather than applied.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.transfer("USDC", SYSTEM_WALLET, "alice", 1_000,
                        Signature(SYSTEM_WALLET), "funding_alice")
        result = ledger.transfer("USDC", "alice", "bob", 100,
                                 Signature("alice"), "payment_001")
    """

    def __init__(
        self,
        name: str,
        initial_time: int = 0,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting clock reading in seconds (default: 0)
            verbose: Enable debug output (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self._current_time: int = initial_time
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)
        # Escrow wallet -> the only capability allowed to move funds out of it
        self._escrows: Dict[str, EscrowCapability] = {}
        self._lock = threading.RLock()

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> int:
        """Current logical time of the ledger."""
        return self._current_time

    def now(self) -> int:
        """Clock protocol: current logical time in seconds."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def has_unit(self, unit_symbol: str) -> bool:
        return unit_symbol in self.units

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a specific unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def total_supply(self, unit_symbol: str) -> int:
        """
        Total supply of a unit across all wallets, system wallet included.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(self.balances[w].get(unit_symbol, 0) for w in sorted(self.registered_wallets))

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        For every unit the sum of all balances (system wallet included) is
        invariant under moves. Quantities are integers, so the comparison is
        exact.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Current total supply for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                if current_supply != expected:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': current_supply - expected,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': 0,
                        'difference': -expected,
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def is_escrow(self, wallet_id: str) -> bool:
        """Check if a wallet is an escrow account controlled by a capability."""
        return wallet_id in self._escrows

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: int) -> None:
        """
        Advance the ledger's logical clock.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered or uses the escrow prefix
        """
        if wallet_id.startswith(ESCROW_WALLET_PREFIX):
            raise ValueError(f"Wallet ids starting with {ESCROW_WALLET_PREFIX!r} are reserved")
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (asset type) in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        with self._lock:
            if unit.symbol in self.units:
                raise ValueError(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This method bypasses double-entry accounting and is only
        available in test mode. For production use, issue from SYSTEM_WALLET
        with transfer() or execute().

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use transfer() or execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValueError(f"quantity must be int, got {type(quantity).__name__}")
        with self._lock:
            self.balances[wallet_id][unit_symbol] = quantity
            self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # ESCROW (Mutating)
    # ========================================================================

    def open_escrow(self, contract_id: str) -> EscrowCapability:
        """
        Open the escrow wallet of a contract and issue its capability.

        The returned capability is the only authorization the ledger accepts
        for moves out of the escrow wallet. The caller must keep it.

        Raises:
            ValueError: If an escrow for this contract is already open
        """
        wallet_id = f"{ESCROW_WALLET_PREFIX}{contract_id}"
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Escrow for {contract_id} already open")
            capability = EscrowCapability(
                contract_id=contract_id,
                escrow_wallet=wallet_id,
                token=secrets.token_hex(16),
            )
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(int)
            self._escrows[wallet_id] = capability
        return capability

    def close_escrow(self, capability: EscrowCapability) -> None:
        """
        Remove an escrow wallet that holds nothing.

        Used to undo open_escrow() when the contract creation that needed it
        was rejected.

        Raises:
            Unauthorized: If the capability was not issued for this escrow
            LedgerError: If the escrow still holds a balance
        """
        with self._lock:
            wallet_id = capability.escrow_wallet
            if self._escrows.get(wallet_id) != capability:
                raise Unauthorized(f"Capability does not control {wallet_id}")
            if any(qty != 0 for qty in self.balances[wallet_id].values()):
                raise LedgerError(f"Escrow {wallet_id} is not empty")
            del self._escrows[wallet_id]
            del self.balances[wallet_id]
            self.registered_wallets.discard(wallet_id)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{time}
        """
        return f"exec:{self.name}:{sequence:012d}:{self._current_time}"

    def transfer(
        self,
        asset_id: str,
        source: str,
        dest: str,
        amount: int,
        authorization: Authorization,
        contract_id: str,
    ) -> ExecuteResult:
        """
        Single-leg transfer as its own atomic transaction.

        Args:
            asset_id: Unit symbol to move
            source: Wallet debited
            dest: Wallet credited
            amount: Positive integer amount
            authorization: Signature of the source owner or the escrow capability
            contract_id: Identifier of the business operation (part of the intent)

        Returns:
            ExecuteResult of the underlying execute()
        """
        move = Move(amount, asset_id, source, dest, contract_id, authorization)
        return self.execute(build_transaction(self, [move]))

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves, unit registrations and state changes succeed together or
        none is applied. Execution is idempotent: a pending transaction with
        the same intent_id will not be applied twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        try:
            tx = self._execute(pending)
        except LedgerError as e:
            if self.verbose:
                print(f"✗ REJECTED: {e}")
            return ExecuteResult.REJECTED
        if tx is None:
            return ExecuteResult.ALREADY_APPLIED
        return ExecuteResult.APPLIED

    def execute_or_raise(self, pending: PendingTransaction) -> Optional[Transaction]:
        """
        Execute a PendingTransaction atomically, raising on rejection.

        Returns:
            The logged Transaction, or None for an empty pending transaction
            or one whose intent was already applied

        Raises:
            LedgerError: The typed reason the transaction was rejected
                (InsufficientFunds, Unauthorized, StaleState, ...)
        """
        return self._execute(pending)

    def _execute(self, pending: PendingTransaction) -> Optional[Transaction]:
        if pending.is_empty():
            return None

        with self._lock:
            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return None

            # Validation raises before anything is touched, so no rollback is needed
            self._validate_pending(pending)

            sequence = self._next_sequence
            self._next_sequence += 1

            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
            )

            for unit in tx.units_to_create:
                self.units[unit.symbol] = unit
            self._execute_moves(tx.moves)
            for sc in tx.state_changes:
                new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
                self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _check_authorization(self, move: Move) -> None:
        """
        Ensure the move's authorization controls its source wallet.

        Escrow wallets accept only the capability issued for them; every other
        wallet accepts only its owner's signature.
        """
        auth = move.authorization
        issued = self._escrows.get(move.source)
        if issued is not None:
            if not isinstance(auth, EscrowCapability) or auth != issued:
                raise Unauthorized(f"{move.source}: escrow release requires its contract capability")
            return
        if isinstance(auth, EscrowCapability):
            raise Unauthorized(
                f"Capability for {auth.escrow_wallet} cannot move funds out of {move.source}"
            )
        if not isinstance(auth, Signature) or auth.party != move.source:
            raise Unauthorized(f"{move.source}: move not signed by wallet owner")

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Units to create must be new
        3. Unit and wallet registration
        4. Authorization of each move
        5. Transfer rule enforcement
        6. Balance constraint validation (min/max balance limits)
        7. State changes must start from the stored state

        Raises:
            LedgerError subclass describing the first failure
        """
        if pending.timestamp > self._current_time:
            raise LedgerError("future timestamp")

        new_units: Dict[str, Unit] = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in new_units:
                raise LedgerError(f"Unit {unit.symbol} already registered")
            new_units[unit.symbol] = unit

        for move in pending.moves:
            unit = self.units.get(move.unit_symbol) or new_units.get(move.unit_symbol)
            if unit is None:
                raise UnitNotRegistered(f"unit not registered: {move.unit_symbol}")
            if not self.is_registered(move.source):
                raise WalletNotRegistered(f"wallet not registered: {move.source}")
            if not self.is_registered(move.dest):
                raise WalletNotRegistered(f"wallet not registered: {move.dest}")
            self._check_authorization(move)
            if unit.transfer_rule:
                unit.transfer_rule(self, move)

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.unit_symbol)] -= move.quantity
            net[(move.dest, move.unit_symbol)] += move.quantity

        # SYSTEM_WALLET is exempt: it is the issuance counterparty
        for (wallet, unit_sym), delta in sorted(net.items()):
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units.get(unit_sym) or new_units[unit_sym]
            proposed = self.balances[wallet].get(unit_sym, 0) + delta
            if proposed < unit.min_balance:
                raise InsufficientFunds(f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}")
            if proposed > unit.max_balance:
                raise BalanceConstraintViolation(f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}")

        for sc in pending.state_changes:
            unit = self.units.get(sc.unit) or new_units.get(sc.unit)
            if unit is None:
                raise UnitNotRegistered(f"unit not registered: {sc.unit}")
            if sc.old_state is not None and sc.old_state != unit.state:
                raise StaleState(f"{sc.unit}: state changed since transaction was built")

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """Update the inverted position index; zero balances are removed."""
        if quantity != 0:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            new_src_balance = self.balances[move.source][move.unit_symbol] - move.quantity
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = self.balances[move.dest][move.unit_symbol] + move.quantity
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)
