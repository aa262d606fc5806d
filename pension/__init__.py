"""
Pension Contribution & Benefit Accrual Engine

This package provides:
- Validated contribution postings, one Monthly contribution per member per month
- Monthly interest accrual over every stored contribution
- Threshold-based retirement benefit eligibility
- Append-only transaction history for every mutation
- A calendar scheduler running the recurring jobs
"""

from .models import (
    ContributionType,
    BenefitType,
    EligibilityStatus,
    ChangeType,
    EntityType,
    Contribution,
    ContributionRequest,
    Benefit,
    TransactionHistory,
    BatchOutcome,
    Member,
)
from .service import PensionService, register_default_jobs
from .scheduler import Scheduler

__all__ = [
    "ContributionType",
    "BenefitType",
    "EligibilityStatus",
    "ChangeType",
    "EntityType",
    "Contribution",
    "ContributionRequest",
    "Benefit",
    "TransactionHistory",
    "BatchOutcome",
    "Member",
    "PensionService",
    "register_default_jobs",
    "Scheduler",
]
