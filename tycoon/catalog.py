from dataclasses import dataclass


@dataclass(frozen=True)
class Business:
    id: str
    name: str
    cost: int
    income: int


BUSINESSES = [
    Business("DAPP", "DAPP", 1000, 1),
    Business("TOTO_VAULT", "TOTO VAULT", 1000, 1),
    Business("CIFCI_STABLE", "CIFCI STABLE COIN", 1000, 1),
    Business("TYPOGRAM", "TYPOGRAM", 1000, 1),
    Business("APPLE", "APPLE", 1000, 1),
    Business("BITCOIN", "BITCOIN", 1000, 1),
]

_BY_ID = {b.id: b for b in BUSINESSES}


class UnknownBusiness(ValueError):
    def __init__(self, business_id):
        super().__init__(f"unknown business: {business_id!r}")
        self.business_id = business_id


def get_business(business_id) -> Business:
    """Look up a catalog entry; purchases must never guess a price."""
    business = _BY_ID.get(business_id)
    if business is None:
        raise UnknownBusiness(business_id)
    return business


def _quantity(value) -> int:
    if isinstance(value, bool):
        return 0
    try:
        qty = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return qty if qty > 0 else 0


def calculate_passive_income(businesses=None) -> int:
    """
    Income per mine for a holdings mapping {business_id: quantity}.

    Ids missing from the catalog contribute nothing so that holdings written
    by a newer catalog still read cleanly.
    """
    total = 0
    for business_id, qty in (businesses or {}).items():
        b = _BY_ID.get(business_id)
        if b:
            total += b.income * _quantity(qty)
    return total
