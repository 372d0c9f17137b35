"""Entity store models targeted by bulk imports."""

from coop_kernel.models.contribution import Contribution, ContributionStatus
from coop_kernel.models.loan import Loan, LoanStatus
from coop_kernel.models.user import User, UserRole

__all__ = [
    "User",
    "UserRole",
    "Loan",
    "LoanStatus",
    "Contribution",
    "ContributionStatus",
]
