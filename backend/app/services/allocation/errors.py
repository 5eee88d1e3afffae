"""
Allocation engine error taxonomy.

Every failure is raised before any mutation is committed. Callers map
these onto their own transport (see app/dependencies.py for HTTP).
"""
from decimal import Decimal
from typing import Optional


class LeadEngineError(Exception):
    """Base class for all engine failures."""


class ValidationError(LeadEngineError, ValueError):
    """Bad or missing account, buy-box or cadence configuration."""


class NotFound(LeadEngineError, LookupError):
    """Unknown account, property, batch or signal reference."""

    def __init__(self, kind: str, ref: Optional[str]):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class NoEligibleRecords(LeadEngineError):
    """Selection produced zero tracking entities. No batch is created."""

    def __init__(self, account_id: str, candidate_count: int = 0):
        self.account_id = account_id
        self.candidate_count = candidate_count
        super().__init__(f"No eligible records found for account {account_id}")


class InsufficientFunds(LeadEngineError):
    """Wallet balance is below the skip-trace estimate. Nothing was debited."""

    def __init__(self, account_id: str, balance: Decimal, required: Decimal):
        self.account_id = account_id
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient wallet balance for skip trace enrichment: {balance} < {required}"
        )


class InvalidTransition(LeadEngineError):
    """Status transition not permitted by the tracking state table."""
