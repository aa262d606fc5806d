import logging
from decimal import Decimal
from typing import Optional

from .audit import AuditTrail
from .benefits import BenefitEligibilityEngine
from .config import Settings
from .contributions import ContributionLedger
from .interest import InterestAccrualEngine
from .models import (
    Benefit,
    Contribution,
    ContributionRequest,
    Member,
    TransactionHistory,
)
from .reporting import LoggingReportSink, ReportService, ReportSink
from .repository import InMemoryStorage
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class PensionService:
    """Inbound boundary of the accrual engine; callers pass already-validated, authenticated input."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        sink: Optional[ReportSink] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.settings = settings or Settings()
        self.storage = storage or InMemoryStorage()
        self.audit = audit or AuditTrail(self.storage)
        self.ledger = ContributionLedger(self.storage, self.audit)
        self.interest = InterestAccrualEngine(
            self.storage, self.audit, monthly_rate=self.settings.monthly_interest_rate
        )
        self.benefits = BenefitEligibilityEngine(
            self.storage,
            self.ledger,
            self.audit,
            threshold=self.settings.eligibility_threshold,
            rate=self.settings.benefit_rate,
        )
        self.reports = ReportService(self.storage, self.ledger, self.benefits, sink or LoggingReportSink())

    def post_contribution(self, request: ContributionRequest) -> Contribution:
        return self.ledger.post_contribution(request)

    def list_contributions(self, member_id: str, page_size: int = 10, offset: int = 0) -> list[Contribution]:
        return self.ledger.list_contributions(member_id, page_size, offset)

    def total_contributions(self, member_id: str) -> Decimal:
        return self.ledger.total_contributions(member_id)

    def get_transaction_history(self, member_id: str, page_size: int = 10, offset: int = 0) -> list[TransactionHistory]:
        logger.info("Fetching transaction history for member %s", member_id)
        return self.audit.require_history(member_id, page_size, offset)

    def calculate_benefit(self, member_id: str) -> Benefit:
        return self.benefits.calculate_benefit(member_id)

    def register_member(self, member: Member) -> Member:
        with self.storage.transaction() as uow:
            uow.add(self.storage.members, member)
        logger.info("Registered member %s for statements", member.id)
        return member


DEFAULT_JOBS = (
    ("MonthlyContributionValidation", "0 0 1 * *", "Contribution validation report"),
    ("BenefitEligibilityUpdate", "0 0 5 * *", "Benefit eligibility refresh"),
    ("MonthlyInterestCalculation", "0 0 10 * *", "Monthly interest accrual"),
    ("GenerateMemberStatements", "0 0 15 * *", "Member statement generation"),
)


def register_default_jobs(scheduler: Scheduler, service: PensionService) -> Scheduler:
    stop = scheduler.stop_event
    handlers = {
        "MonthlyContributionValidation": service.reports.generate_contribution_validation_report,
        "BenefitEligibilityUpdate": lambda: service.benefits.refresh_eligibility_for_all(stop_event=stop),
        "MonthlyInterestCalculation": lambda: service.interest.accrue_monthly_interest(stop_event=stop),
        "GenerateMemberStatements": service.reports.generate_member_statements,
    }
    logger.info("Scheduling background jobs")
    for name, cron, description in DEFAULT_JOBS:
        scheduler.register(name, cron, handlers[name], description=description)
    return scheduler
