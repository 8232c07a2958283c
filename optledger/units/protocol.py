"""
protocol.py - Protocol Bootstrap Record

The protocol's administrative identity lives in a single record unit written
once by an initialization transaction, instead of in process-wide state.
"""

from __future__ import annotations
from typing import Optional

from ..core import (
    LedgerView, PendingTransaction, Unit,
    TransactionOrigin, OriginType,
    UNIT_TYPE_PROTOCOL_STATE,
    LedgerError,
    build_transaction, non_transferable_rule,
    _freeze_state,
)


PROTOCOL_STATE_SYMBOL = "PROTOCOL"


def create_protocol_state_unit(admin: str, initialized_at: int) -> Unit:
    """Create the bootstrap record holding the admin identity."""
    if not admin or not admin.strip():
        raise ValueError("admin cannot be empty")
    return Unit(
        symbol=PROTOCOL_STATE_SYMBOL,
        name="Protocol State",
        unit_type=UNIT_TYPE_PROTOCOL_STATE,
        min_balance=0,
        max_balance=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state({
            'unit_type': UNIT_TYPE_PROTOCOL_STATE,
            'admin': admin,
            'initialized_at': initialized_at,
        }),
    )


def compute_protocol_initialization(view: LedgerView, admin: str) -> PendingTransaction:
    """
    Compute the one-time protocol initialization.

    Raises:
        LedgerError: If the protocol has already been initialized
    """
    if view.has_unit(PROTOCOL_STATE_SYMBOL):
        raise LedgerError("Protocol already initialized")
    origin = TransactionOrigin(
        origin_type=OriginType.SYSTEM,
        source_id=admin,
        unit_symbol=PROTOCOL_STATE_SYMBOL,
        event_type="INITIALIZE",
    )
    unit = create_protocol_state_unit(admin, view.current_time)
    return build_transaction(view, [], origin=origin, units_to_create=(unit,))


def get_admin(view: LedgerView) -> Optional[str]:
    """Admin identity, or None before initialization."""
    if not view.has_unit(PROTOCOL_STATE_SYMBOL):
        return None
    return view.get_unit_state(PROTOCOL_STATE_SYMBOL).get('admin')
