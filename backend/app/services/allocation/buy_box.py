"""
Buy-Box Filter

Pure eligibility predicate over property attributes. No side effects;
safe to call at any rate and from any thread.
"""
import re
from typing import FrozenSet, Iterable, List, TypeVar

from ...models.allocation_models import BuyBox

P = TypeVar("P")

_ZIP_DELIMITERS = re.compile(r"[,;\s]+")


def parse_excluded_zips(raw: str) -> FrozenSet[str]:
    """Split a delimited exclusion string ("60621, 60636") into exact tokens."""
    if not raw:
        return frozenset()
    return frozenset(token for token in _ZIP_DELIMITERS.split(raw) if token)


class BuyBoxFilter:
    """
    Evaluates one account's buy-box against candidate properties.

    Empty county and property-type lists mean "no restriction".
    A property without a recorded type is not rejected by the type list.
    """

    def __init__(self, buy_box: BuyBox):
        self.buy_box = buy_box
        self._counties = frozenset(buy_box.counties)
        self._types = frozenset(buy_box.property_types)
        self._excluded_zips = parse_excluded_zips(buy_box.excluded_zips)

    def is_eligible(self, prop) -> bool:
        if self._counties and prop.fips not in self._counties:
            return False
        if self.buy_box.max_price is not None and (prop.estimated_value or 0) > self.buy_box.max_price:
            return False
        if (prop.equity_percent or 0) < self.buy_box.min_equity:
            return False
        if self._types and prop.property_type and prop.property_type not in self._types:
            return False
        if prop.address_postal_code and prop.address_postal_code.strip() in self._excluded_zips:
            return False
        return True

    def filter(self, properties: Iterable[P]) -> List[P]:
        """Eligible properties, input order preserved."""
        return [p for p in properties if self.is_eligible(p)]
