import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from .audit import AuditTrail, validate_pagination
from .errors import (
    DuplicatePeriodicContributionError,
    InvalidContributionError,
    UniqueConstraintError,
)
from .models import (
    ChangeType,
    Contribution,
    ContributionRequest,
    EntityType,
)
from .repository import InMemoryStorage, periodic_contribution_key

logger = logging.getLogger(__name__)


class ContributionLedger:
    def __init__(self, storage: InMemoryStorage, audit: AuditTrail):
        self.storage = storage
        self.audit = audit

    def post_contribution(self, request: ContributionRequest) -> Contribution:
        logger.info("Starting contribution posting for member %s", request.member_id)
        self._validate_amount(request.amount)

        now = datetime.now(timezone.utc)
        contribution = Contribution(
            id=uuid4(),
            member_id=request.member_id,
            contribution_type=request.contribution_type,
            amount=request.amount,
            contribution_date=request.contribution_date,
            reference_number=request.reference_number,
            created_at=now,
        )

        key = periodic_contribution_key(contribution)
        if key is not None and self.storage.contributions.exists(key):
            raise self._duplicate(contribution)

        try:
            with self.storage.transaction() as uow:
                uow.add(self.storage.contributions, contribution)
                self.audit.record(
                    contribution.member_id,
                    EntityType.CONTRIBUTION,
                    ChangeType.CREATED,
                    f"New {contribution.contribution_type.value} contribution added.",
                    uow=uow,
                )
        except UniqueConstraintError:
            # Lost a race with a concurrent posting for the same member-month.
            raise self._duplicate(contribution) from None

        logger.info(
            "Contribution %s saved for member %s (%s %s)",
            contribution.id, contribution.member_id,
            contribution.contribution_type.value, contribution.amount,
        )
        return contribution

    def list_contributions(self, member_id: str, page_size: int = 10, offset: int = 0) -> list[Contribution]:
        validate_pagination(page_size, offset)
        contributions = self.storage.contributions.query(
            where=lambda c: c.member_id == member_id,
            order_by=lambda c: c.contribution_date,
            descending=True,
            offset=offset,
            limit=page_size,
        )
        if not contributions:
            logger.warning("No contributions found for member %s", member_id)
        else:
            logger.info("%d contributions found for member %s", len(contributions), member_id)
        return contributions

    def total_contributions(self, member_id: str) -> Decimal:
        contributions = self.storage.contributions.query(where=lambda c: c.member_id == member_id)
        return sum((c.amount for c in contributions), Decimal("0"))

    def contribution_count(self, member_id: str) -> int:
        return self.storage.contributions.count(lambda c: c.member_id == member_id)

    def _validate_amount(self, amount: Decimal) -> None:
        if not isinstance(amount, Decimal):
            raise InvalidContributionError(f"Amount must be a fixed-point decimal, got {type(amount).__name__}")
        if not amount.is_finite():
            raise InvalidContributionError(f"Amount must be a finite number, got {amount}")
        if amount < 0:
            raise InvalidContributionError(f"Amount cannot be negative, got {amount}")

    def _duplicate(self, contribution: Contribution) -> DuplicatePeriodicContributionError:
        year, month = contribution.period()
        logger.warning(
            "Monthly contribution exists for member %s in %02d/%d",
            contribution.member_id, month, year,
        )
        return DuplicatePeriodicContributionError(contribution.member_id, year, month)
