from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class ContributionType(str, Enum):
    MONTHLY = "Monthly"
    VOLUNTARY = "Voluntary"


class BenefitType(str, Enum):
    RETIREMENT = "Retirement"


class EligibilityStatus(str, Enum):
    ELIGIBLE = "Eligible"
    NOT_ELIGIBLE = "NotEligible"


class ChangeType(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"


class EntityType(str, Enum):
    CONTRIBUTION = "Contribution"
    BENEFIT = "Benefit"


class ContributionRequest(BaseModel):
    member_id: str = Field(..., min_length=1)
    contribution_type: ContributionType
    amount: Decimal
    contribution_date: date = Field(..., description="Accrual period the posting belongs to")
    reference_number: str = Field(..., min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "member_id": "M-1001",
            "contribution_type": "Monthly",
            "amount": "120000.00",
            "contribution_date": "2024-01-15",
            "reference_number": "REF1",
        }
    })


class Member(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    employer_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Contribution(BaseModel):
    id: UUID
    member_id: str
    contribution_type: ContributionType
    amount: Decimal
    contribution_date: date
    reference_number: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def period(self) -> tuple[int, int]:
        return self.contribution_date.year, self.contribution_date.month

    def is_periodic(self) -> bool:
        return self.contribution_type == ContributionType.MONTHLY


class Benefit(BaseModel):
    id: UUID
    member_id: str
    # Open enumeration: BenefitType lists the rule sets in use today.
    benefit_type: str = BenefitType.RETIREMENT.value
    amount: Decimal
    eligibility_status: EligibilityStatus
    calculation_date: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionHistory(BaseModel):
    id: UUID
    entity_id: str
    entity_type: EntityType
    change_type: ChangeType
    change_details: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class BatchFailure(BaseModel):
    record_id: str
    error: str


class BatchOutcome(BaseModel):
    operation: str
    succeeded: int = 0
    failed: int = 0
    failures: list[BatchFailure] = Field(default_factory=list)
    interrupted: bool = False

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def record_success(self) -> None:
        self.succeeded += 1

    def record_failure(self, record_id, error: Exception) -> None:
        self.failed += 1
        self.failures.append(BatchFailure(record_id=str(record_id), error=str(error)))

    def summary(self) -> str:
        return f"{self.operation}: {self.succeeded} succeeded, {self.failed} failed"


class MemberStatement(BaseModel):
    member: Member
    contribution_count: int
    total_contributions: Decimal
    latest_benefit: Optional[Benefit] = None
    generated_at: datetime
