import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .audit import AuditTrail
from .errors import BatchInProgressError, PensionError
from .models import BatchOutcome, ChangeType, Contribution, EntityType
from .repository import InMemoryStorage

logger = logging.getLogger(__name__)

MONTHLY_INTEREST_RATE = Decimal("0.05")


class InterestAccrualEngine:
    def __init__(
        self,
        storage: InMemoryStorage,
        audit: AuditTrail,
        monthly_rate: Decimal = MONTHLY_INTEREST_RATE,
    ):
        self.storage = storage
        self.audit = audit
        self.monthly_rate = monthly_rate
        self._running = threading.Lock()

    def accrue_monthly_interest(self, stop_event: Optional[threading.Event] = None) -> BatchOutcome:
        """
        Apply one month of interest to every stored contribution.

        Each contribution is its own unit of work (amount update plus one
        ``Updated`` history entry). A failing record is collected in the
        outcome and the run moves on; setting ``stop_event`` ends the run
        between records, leaving the remainder for the next scheduled run.
        Raises ``BatchInProgressError`` while another run is in flight on this
        engine.
        """
        if not self._running.acquire(blocking=False):
            logger.warning("Monthly interest calculation already in progress, refusing a second run")
            raise BatchInProgressError("Monthly interest calculation is already running")
        try:
            return self._accrue_all(stop_event)
        finally:
            self._running.release()

    def _accrue_all(self, stop_event: Optional[threading.Event]) -> BatchOutcome:
        logger.info("Starting monthly interest calculation for all contributions")
        outcome = BatchOutcome(operation="monthly_interest")

        for contribution in self.storage.contributions.query():
            if stop_event is not None and stop_event.is_set():
                outcome.interrupted = True
                logger.warning("Interest calculation interrupted after %d records", outcome.total)
                break
            try:
                self._accrue(contribution)
                outcome.record_success()
            except PensionError as e:
                logger.error("Interest accrual failed for contribution %s: %s", contribution.id, e)
                outcome.record_failure(contribution.id, e)
            except Exception as e:
                logger.exception("Unexpected error accruing interest for contribution %s", contribution.id)
                outcome.record_failure(contribution.id, e)

        logger.info("Monthly interest calculation completed: %s", outcome.summary())
        return outcome

    def interest_for(self, amount: Decimal) -> Decimal:
        return amount * self.monthly_rate

    def _accrue(self, contribution: Contribution) -> Contribution:
        interest = self.interest_for(contribution.amount)
        updated = contribution.model_copy(update={
            "amount": contribution.amount + interest,
            "updated_at": datetime.now(timezone.utc),
        })

        with self.storage.transaction() as uow:
            uow.update(self.storage.contributions, updated, expected=contribution)
            self.audit.record(
                contribution.member_id,
                EntityType.CONTRIBUTION,
                ChangeType.UPDATED,
                f"Interest calculated: {interest:.2f} on contribution {contribution.id}",
                uow=uow,
            )

        logger.debug(
            "Calculated interest for member %s, contribution %s: %s",
            contribution.member_id, contribution.id, interest,
        )
        return updated
