"""
Units module - Record units stored in the ledger.

- Option contracts: escrowed call options with exactly-once exercise
- Protocol state: bootstrap record holding the admin identity

All unit factories and related functions are re-exported here for convenience.
"""

# Option contracts
from .option import (
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
from .protocol import (
    PROTOCOL_STATE_SYMBOL,
    create_protocol_state_unit,
    compute_protocol_initialization,
    get_admin,
)

__all__ = [
    'OptionContract', 'OptionStatus', 'option_contract_id',
    'create_option_contract_unit', 'load_option_contract', 'get_option_status',
    'compute_option_creation', 'compute_option_exercise',
    'PROTOCOL_STATE_SYMBOL', 'create_protocol_state_unit',
    'compute_protocol_initialization', 'get_admin',
]
