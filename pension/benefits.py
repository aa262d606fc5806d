import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from .audit import AuditTrail
from .contributions import ContributionLedger
from .errors import BatchInProgressError, NoContributionsFoundError, PensionError
from .models import (
    BatchOutcome,
    Benefit,
    BenefitType,
    ChangeType,
    EligibilityStatus,
    EntityType,
)
from .repository import InMemoryStorage

logger = logging.getLogger(__name__)

ELIGIBILITY_THRESHOLD = Decimal("100000")
ELIGIBLE_BENEFIT_RATE = Decimal("0.1")


def assess_eligibility(
    total: Decimal,
    threshold: Decimal = ELIGIBILITY_THRESHOLD,
    rate: Decimal = ELIGIBLE_BENEFIT_RATE,
) -> tuple[EligibilityStatus, Decimal]:
    if total >= threshold:
        return EligibilityStatus.ELIGIBLE, total * rate
    return EligibilityStatus.NOT_ELIGIBLE, Decimal("0")


class BenefitEligibilityEngine:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: ContributionLedger,
        audit: AuditTrail,
        threshold: Decimal = ELIGIBILITY_THRESHOLD,
        rate: Decimal = ELIGIBLE_BENEFIT_RATE,
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit = audit
        self.threshold = threshold
        self.rate = rate
        self._refreshing = threading.Lock()

    def calculate_benefit(self, member_id: str) -> Benefit:
        logger.info("Starting benefit calculation for member %s", member_id)

        if self.ledger.contribution_count(member_id) == 0:
            logger.warning("No contributions found for member %s", member_id)
            raise NoContributionsFoundError(member_id)

        total = self.ledger.total_contributions(member_id)
        logger.info("Total contributions for member %s: %s", member_id, total)
        status, amount = assess_eligibility(total, self.threshold, self.rate)

        benefit = Benefit(
            id=uuid4(),
            member_id=member_id,
            benefit_type=BenefitType.RETIREMENT.value,
            amount=amount,
            eligibility_status=status,
            calculation_date=datetime.now(timezone.utc),
        )
        with self.storage.transaction() as uow:
            uow.add(self.storage.benefits, benefit)
            self.audit.record(
                member_id,
                EntityType.BENEFIT,
                ChangeType.CREATED,
                "Benefit calculated.",
                uow=uow,
            )

        logger.info(
            "Benefit record created for member %s: %s (%s)",
            member_id, amount, status.value,
        )
        return benefit

    def latest_benefit(self, member_id: str) -> Optional[Benefit]:
        benefits = self.storage.benefits.query(
            where=lambda b: b.member_id == member_id,
            order_by=lambda b: b.calculation_date,
            descending=True,
            limit=1,
        )
        return benefits[0] if benefits else None

    def refresh_eligibility_for_all(self, stop_event: Optional[threading.Event] = None) -> BatchOutcome:
        """
        Re-derive every stored benefit's status from its stored amount.

        Contributions are not re-summed here, unlike ``calculate_benefit``;
        only the status moves, the amount is left as calculated.
        """
        if not self._refreshing.acquire(blocking=False):
            logger.warning("Eligibility refresh already in progress, refusing a second run")
            raise BatchInProgressError("Eligibility refresh is already running")
        try:
            return self._refresh_all(stop_event)
        finally:
            self._refreshing.release()

    def _refresh_all(self, stop_event: Optional[threading.Event]) -> BatchOutcome:
        logger.info("Updating eligibility status for all benefits")
        outcome = BatchOutcome(operation="benefit_eligibility_refresh")

        for benefit in self.storage.benefits.query():
            if stop_event is not None and stop_event.is_set():
                outcome.interrupted = True
                logger.warning("Eligibility refresh interrupted after %d records", outcome.total)
                break
            try:
                self._refresh(benefit)
                outcome.record_success()
            except PensionError as e:
                logger.error("Eligibility refresh failed for benefit %s: %s", benefit.id, e)
                outcome.record_failure(benefit.id, e)
            except Exception as e:
                logger.exception("Unexpected error refreshing benefit %s", benefit.id)
                outcome.record_failure(benefit.id, e)

        logger.info("Eligibility status update completed: %s", outcome.summary())
        return outcome

    def _refresh(self, benefit: Benefit) -> Benefit:
        old_status = benefit.eligibility_status
        new_status = (
            EligibilityStatus.ELIGIBLE
            if benefit.amount >= self.threshold
            else EligibilityStatus.NOT_ELIGIBLE
        )
        updated = benefit.model_copy(update={"eligibility_status": new_status})

        with self.storage.transaction() as uow:
            uow.update(self.storage.benefits, updated, expected=benefit)
            self.audit.record(
                benefit.member_id,
                EntityType.BENEFIT,
                ChangeType.UPDATED,
                f"Benefit eligibility updated: {old_status.value} -> {new_status.value}",
                uow=uow,
            )

        logger.info(
            "Updated eligibility for member %s: %s -> %s",
            benefit.member_id, old_status.value, new_status.value,
        )
        return updated
