"""
Skip-trace provider contract.

The settlement ledger bills per eligible record and asks a provider for
contact fields. Concrete vendor clients live outside the engine; they
only need to implement `trace`.
"""
from typing import Optional

from ...models.allocation_models import TraceResult


class SkipTraceProvider:
    """Looks up phone/email contact data for a property owner."""

    name = "base"

    def trace(self, prop, owner) -> Optional[TraceResult]:
        """Return contact fields, or None when the provider found nothing."""
        raise NotImplementedError


class UnconfiguredSkipTraceProvider(SkipTraceProvider):
    """Default when no vendor is wired in: records are stamped, no contact data stored."""

    name = "unconfigured"

    def trace(self, prop, owner) -> Optional[TraceResult]:
        return None
