"""
Credit ledger: per-class credit costs and the balance carried on a profile.
"""
from typing import Dict, Optional

from ..core.tier_limits import CREDIT_COSTS
from ..schemas.identity import OperationClass
from ..schemas.usage import Profile


class CreditLedger:
    """Holds the cost table; deduction itself happens in the usage accountant."""

    def __init__(self, costs: Optional[Dict[OperationClass, int]] = None):
        self.costs = dict(costs or CREDIT_COSTS)

    def cost(self, operation_class: OperationClass) -> int:
        return self.costs[OperationClass(operation_class)]

    def balance_of(self, profile: Optional[Profile]) -> int:
        """Credit balance of a profile; a missing profile or field is zero."""
        if profile is None:
            return 0
        return profile.credit_balance or 0

    def can_afford(self, profile: Optional[Profile], operation_class: OperationClass) -> bool:
        return self.balance_of(profile) >= self.cost(operation_class)


# Global ledger instance
credit_ledger = CreditLedger()
