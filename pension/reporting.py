import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from .benefits import BenefitEligibilityEngine
from .contributions import ContributionLedger
from .models import BatchOutcome, MemberStatement
from .repository import InMemoryStorage, periodic_contribution_key

logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    def write_summary(self, text: str) -> None: ...

    def write_member_statement(self, statement: MemberStatement) -> None: ...


class LoggingReportSink:
    def __init__(self, name: str = "pension.reports"):
        self._logger = logging.getLogger(name)

    def write_summary(self, text: str) -> None:
        self._logger.info(text)

    def write_member_statement(self, statement: MemberStatement) -> None:
        self._logger.info(
            "Generated statement for %s: %d contributions totalling %s",
            statement.member.full_name,
            statement.contribution_count,
            statement.total_contributions,
        )


class ReportService:
    """Read-only reports over the ledger; sink failures never touch stored records."""

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: ContributionLedger,
        benefits: BenefitEligibilityEngine,
        sink: ReportSink,
    ):
        self.storage = storage
        self.ledger = ledger
        self.benefits = benefits
        self.sink = sink

    def generate_contribution_validation_report(self) -> BatchOutcome:
        logger.info("Initiating contribution validation report generation")
        outcome = BatchOutcome(operation="contribution_validation_report")

        contributions = self.storage.contributions.query()
        total = sum((c.amount for c in contributions), Decimal("0"))
        negative = [c for c in contributions if c.amount < 0]
        periods = Counter(
            key for key in (periodic_contribution_key(c) for c in contributions) if key is not None
        )
        duplicates = {key: n for key, n in periods.items() if n > 1}

        lines = [
            f"Generated validation report with {len(contributions)} contributions.",
            f"Total contributed: {total}",
            f"Negative amounts: {len(negative)}",
            f"Duplicate monthly periods: {len(duplicates)}",
        ]
        for (member_id, year, month), n in sorted(duplicates.items()):
            lines.append(f"  member {member_id} has {n} monthly contributions in {month:02d}/{year}")

        try:
            self.sink.write_summary("\n".join(lines))
            outcome.record_success()
        except Exception as e:
            logger.exception("Failed to write contribution validation report")
            outcome.record_failure("summary", e)

        logger.info(
            "Validation report completed with %d contributions processed", len(contributions)
        )
        return outcome

    def build_statement(self, member) -> MemberStatement:
        return MemberStatement(
            member=member,
            contribution_count=self.ledger.contribution_count(member.id),
            total_contributions=self.ledger.total_contributions(member.id),
            latest_benefit=self.benefits.latest_benefit(member.id),
            generated_at=datetime.now(timezone.utc),
        )

    def generate_member_statements(self) -> BatchOutcome:
        logger.info("Starting member statement generation process")
        outcome = BatchOutcome(operation="member_statements")

        for member in self.storage.members.query(order_by=lambda m: m.id):
            try:
                self.sink.write_member_statement(self.build_statement(member))
                outcome.record_success()
            except Exception as e:
                logger.exception("Error generating statement for member %s", member.id)
                outcome.record_failure(member.id, e)

        logger.info("Generated statements: %s", outcome.summary())
        return outcome
