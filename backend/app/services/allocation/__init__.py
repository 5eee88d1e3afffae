"""
Lead Allocation & Cadence Services

Buy-Box Filter -> Scoring -> Cadence/Cooldown -> Allocation -> Settlement

- SignalCatalog: distress-signal weights and default lanes
- BuyBoxFilter: per-account property eligibility
- CadenceStateMachine: Active / CoolingDown lifecycle and event log
- AllocationEngine: candidate selection, owner dedup, capacity, batches
- SkipTraceLedgerService: estimates, wallet settlement, batch execution
- StatusSignalService: suppression and removal feeds
- LeadEngine: facade used by routers and the scheduler
"""

from .errors import (
    LeadEngineError, ValidationError, NotFound, NoEligibleRecords,
    InsufficientFunds, InvalidTransition,
)
from .signal_catalog import SignalCatalog, seed_default_signals, update_signal
from .buy_box import BuyBoxFilter
from .scoring import score_signals, effective_score, allocation_points
from .cadence import CadenceStateMachine
from .allocation_engine import AllocationEngine, select_records
from .settlement_ledger import SkipTraceLedgerService
from .skip_trace import SkipTraceProvider, UnconfiguredSkipTraceProvider
from .status_sync import StatusSignalService
from .account_locks import AccountLockRegistry
from .account_config import (
    resolve_account_config, seed_system_defaults, update_system_default,
)
from .lead_engine import LeadEngine
from .cycle_scheduler import WeeklyCycleScheduler

__all__ = [
    'LeadEngineError',
    'ValidationError',
    'NotFound',
    'NoEligibleRecords',
    'InsufficientFunds',
    'InvalidTransition',
    'SignalCatalog',
    'seed_default_signals',
    'update_signal',
    'BuyBoxFilter',
    'score_signals',
    'effective_score',
    'allocation_points',
    'CadenceStateMachine',
    'AllocationEngine',
    'select_records',
    'SkipTraceLedgerService',
    'SkipTraceProvider',
    'UnconfiguredSkipTraceProvider',
    'StatusSignalService',
    'AccountLockRegistry',
    'resolve_account_config',
    'seed_system_defaults',
    'update_system_default',
    'LeadEngine',
    'WeeklyCycleScheduler',
]
