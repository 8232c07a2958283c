"""
option.py - Pure Functions for Escrowed Option Contracts

A contract is a ledger unit of type OPTION_CONTRACT whose state is the term
sheet plus the is_exercised flag. It never carries balances; the escrowed
underlying sits in a custody escrow wallet controlled by an
EscrowCapability.

All functions take a LedgerView (read-only) and return immutable results.
Creation and exercise are each expressed as ONE PendingTransaction so the
ledger applies record, moves and flag together or not at all.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import hashlib
from typing import Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    EscrowCapability, Signature,
    TransactionOrigin, OriginType,
    UNIT_TYPE_OPTION_CONTRACT, U64_MAX,
    InvalidExpiration, OptionAlreadyExercised, OptionExpired,
    ContractAlreadyExists, ContractNotFound, UnitNotRegistered,
    build_transaction, non_transferable_rule,
    _freeze_state,
)


OPTION_CONTRACT_SEED = "option_contract"


class OptionStatus(Enum):
    """
    Lifecycle status of an option contract.

    EXPIRED is never stored: it is an ACTIVE contract observed after its
    expiration.
    """
    ACTIVE = "active"
    EXPIRED = "expired"
    EXERCISED = "exercised"


@dataclass(frozen=True, slots=True)
class OptionContract:
    """
    Snapshot of an option contract record.

    Attributes:
        contract_id: Ledger symbol of the record
        creator: Issuing party, receives the strike payment
        underlying_asset_id: Asset escrowed and delivered on exercise
        strike_asset_id: Asset the exerciser pays in
        strike_price: Amount of strike asset owed on exercise
        expiration: Last second at which exercise is allowed
        is_exercised: Set exactly once by a successful exercise
        option_price: Premium computed at creation (informational)
        amount: Quantity of underlying held in escrow
        escrow_wallet: Custody wallet holding the underlying
        created_at: Clock reading at creation
        exercised_by: Exerciser, once exercised
        exercised_at: Clock reading at exercise, once exercised
    """
    contract_id: str
    creator: str
    underlying_asset_id: str
    strike_asset_id: str
    strike_price: int
    expiration: int
    is_exercised: bool
    option_price: int
    amount: int
    escrow_wallet: str
    created_at: int
    exercised_by: Optional[str] = None
    exercised_at: Optional[int] = None

    def status_at(self, now: int) -> OptionStatus:
        if self.is_exercised:
            return OptionStatus.EXERCISED
        if now > self.expiration:
            return OptionStatus.EXPIRED
        return OptionStatus.ACTIVE


def option_contract_id(creator: str, nonce: int = 0) -> str:
    """
    Deterministic contract id derived from the creator and a nonce.

    With the default nonce a creator holds at most one contract.
    """
    if nonce < 0:
        raise ValueError(f"nonce must be non-negative, got {nonce}")
    digest = hashlib.sha256(f"{OPTION_CONTRACT_SEED}|{creator}|{nonce}".encode()).hexdigest()
    return f"OPT-{digest[:16]}"


def _require_amount(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value <= 0 or value > U64_MAX:
        raise ValueError(f"{name} must be positive and fit in 64 bits, got {value}")


def create_option_contract_unit(
    contract_id: str,
    creator: str,
    underlying_asset_id: str,
    strike_asset_id: str,
    strike_price: int,
    expiration: int,
    option_price: int,
    amount: int,
    escrow_wallet: str,
    created_at: int,
) -> Unit:
    """
    Create the record unit of an option contract.

    Returns:
        Non-transferable Unit whose state is the contract term sheet.
    """
    _require_amount(strike_price, "strike_price")
    _require_amount(amount, "amount")
    if underlying_asset_id == strike_asset_id:
        raise ValueError("underlying and strike assets must differ")

    return Unit(
        symbol=contract_id,
        name=f"Call {amount} {underlying_asset_id} @ {strike_price} {strike_asset_id}",
        unit_type=UNIT_TYPE_OPTION_CONTRACT,
        min_balance=0,
        max_balance=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state({
            'unit_type': UNIT_TYPE_OPTION_CONTRACT,
            'creator': creator,
            'underlying_asset_id': underlying_asset_id,
            'strike_asset_id': strike_asset_id,
            'strike_price': strike_price,
            'expiration': expiration,
            'is_exercised': False,
            'option_price': option_price,
            'amount': amount,
            'escrow_wallet': escrow_wallet,
            'created_at': created_at,
            'exercised_by': None,
            'exercised_at': None,
        })
    )


def load_option_contract(view: LedgerView, contract_id: str) -> OptionContract:
    """
    Load a contract snapshot from ledger state.

    Raises:
        ContractNotFound: If no option contract record has this id
    """
    if not view.has_unit(contract_id):
        raise ContractNotFound(f"Option contract {contract_id} not found")
    state = view.get_unit_state(contract_id)
    if state.get('unit_type') != UNIT_TYPE_OPTION_CONTRACT:
        raise ContractNotFound(f"{contract_id} is not an option contract")
    return OptionContract(
        contract_id=contract_id,
        creator=state['creator'],
        underlying_asset_id=state['underlying_asset_id'],
        strike_asset_id=state['strike_asset_id'],
        strike_price=state['strike_price'],
        expiration=state['expiration'],
        is_exercised=state['is_exercised'],
        option_price=state['option_price'],
        amount=state['amount'],
        escrow_wallet=state['escrow_wallet'],
        created_at=state['created_at'],
        exercised_by=state.get('exercised_by'),
        exercised_at=state.get('exercised_at'),
    )


def get_option_status(
    view: LedgerView,
    contract_id: str,
    now: Optional[int] = None,
) -> OptionStatus:
    """Status of a contract at ``now`` (defaults to the view's clock)."""
    now = view.current_time if now is None else now
    return load_option_contract(view, contract_id).status_at(now)


def compute_option_creation(
    view: LedgerView,
    creator: str,
    underlying_asset_id: str,
    strike_asset_id: str,
    strike_price: int,
    expiration: int,
    option_price: int,
    amount: int,
    escrow: EscrowCapability,
    now: Optional[int] = None,
) -> PendingTransaction:
    """
    Compute the creation of an option contract.

    The transaction registers the contract record and moves ``amount`` of
    the underlying from the creator to the escrow wallet, signed by the
    creator.

    Args:
        view: Read-only ledger view
        creator: Issuing party
        underlying_asset_id: Asset to escrow
        strike_asset_id: Asset owed on exercise
        strike_price: Amount of strike asset owed on exercise
        expiration: Last second at which exercise is allowed
        option_price: Premium already computed for these terms
        amount: Quantity of underlying to escrow
        escrow: Capability of the escrow opened for this contract
        now: Clock reading (defaults to the view's clock)

    Raises:
        InvalidExpiration: If expiration <= now
        ContractAlreadyExists: If the escrow's contract id is already in use
        UnitNotRegistered: If the underlying or strike asset is not registered
        ValueError: If amounts are not positive 64-bit integers
    """
    now = view.current_time if now is None else now
    if expiration <= now:
        raise InvalidExpiration(f"expiration {expiration} is not after {now}")

    contract_id = escrow.contract_id
    if view.has_unit(contract_id):
        raise ContractAlreadyExists(f"Option contract {contract_id} already exists")
    for asset_id in (underlying_asset_id, strike_asset_id):
        if not view.has_unit(asset_id):
            raise UnitNotRegistered(f"Unit {asset_id} not registered")

    unit = create_option_contract_unit(
        contract_id=contract_id,
        creator=creator,
        underlying_asset_id=underlying_asset_id,
        strike_asset_id=strike_asset_id,
        strike_price=strike_price,
        expiration=expiration,
        option_price=option_price,
        amount=amount,
        escrow_wallet=escrow.escrow_wallet,
        created_at=now,
    )

    deposit = Move(
        quantity=amount,
        unit_symbol=underlying_asset_id,
        source=creator,
        dest=escrow.escrow_wallet,
        contract_id=f'create_{contract_id}_escrow',
        authorization=Signature(creator),
    )

    origin = TransactionOrigin(
        origin_type=OriginType.CONTRACT,
        source_id=creator,
        unit_symbol=contract_id,
        event_type="CREATE",
    )
    return build_transaction(view, [deposit], origin=origin, units_to_create=(unit,))


def compute_option_exercise(
    view: LedgerView,
    contract_id: str,
    exerciser: str,
    escrow: EscrowCapability,
    now: Optional[int] = None,
) -> PendingTransaction:
    """
    Compute the exercise of an option contract.

    Exercise logic:
        - Exerciser pays strike_price of the strike asset to the creator
        - Escrow releases amount of the underlying to the exerciser
        - is_exercised flips to True

    The consideration move comes first in the transaction; the ledger applies
    all three effects together or rejects the whole transaction.

    Args:
        view: Read-only ledger view
        contract_id: Contract to exercise
        exerciser: Party exercising, signs the strike payment
        escrow: Capability of the contract's escrow
        now: Clock reading (defaults to the view's clock)

    Raises:
        ContractNotFound: If the contract does not exist
        OptionExpired: If now > expiration, whether or not already exercised
        OptionAlreadyExercised: If the contract was already exercised
        ValueError: If the creator tries to exercise its own contract
    """
    now = view.current_time if now is None else now
    state = view.get_unit_state(contract_id) if view.has_unit(contract_id) else {}
    if state.get('unit_type') != UNIT_TYPE_OPTION_CONTRACT:
        raise ContractNotFound(f"Option contract {contract_id} not found")

    if now > state['expiration']:
        raise OptionExpired(f"{contract_id} expired at {state['expiration']}, now {now}")
    if state['is_exercised']:
        raise OptionAlreadyExercised(f"{contract_id} already exercised by {state['exercised_by']}")

    creator = state['creator']
    if exerciser == creator:
        raise ValueError(f"creator {creator} cannot exercise its own option")

    moves = [
        Move(
            quantity=state['strike_price'],
            unit_symbol=state['strike_asset_id'],
            source=exerciser,
            dest=creator,
            contract_id=f'exercise_{contract_id}_strike',
            authorization=Signature(exerciser),
        ),
        Move(
            quantity=state['amount'],
            unit_symbol=state['underlying_asset_id'],
            source=state['escrow_wallet'],
            dest=exerciser,
            contract_id=f'exercise_{contract_id}_delivery',
            authorization=escrow,
        ),
    ]

    new_state = {
        **state,
        'is_exercised': True,
        'exercised_by': exerciser,
        'exercised_at': now,
    }
    state_changes = [UnitStateChange(unit=contract_id, old_state=state, new_state=new_state)]

    origin = TransactionOrigin(
        origin_type=OriginType.CONTRACT,
        source_id=exerciser,
        unit_symbol=contract_id,
        event_type="EXERCISE",
    )
    return build_transaction(view, moves, state_changes, origin=origin)
