"""
Unit Tests for Monthly Interest Accrual

Tests cover:
1. Amount growth by the monthly rate
2. One Updated history entry per contribution
3. Best-effort batch with per-record failures
4. Interruption between records
5. Overlapping runs and postings during a run
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from pension.audit import AuditTrail
from pension.errors import BatchInProgressError, PersistenceError
from pension.interest import InterestAccrualEngine
from pension.models import ChangeType, ContributionRequest, ContributionType, EntityType
from pension.repository import InMemoryStorage
from pension.service import PensionService


# Test constants
MEMBER_ID = "M-1001"
BROKEN_MEMBER_ID = "M-BROKEN"


class FailingAuditTrail(AuditTrail):
    """Rejects Updated entries for one member, as a failing store would."""

    def record(self, entity_id, entity_type, change_type, details, uow=None):
        if entity_id == BROKEN_MEMBER_ID and change_type == ChangeType.UPDATED:
            raise PersistenceError("transaction store unavailable")
        return super().record(entity_id, entity_type, change_type, details, uow=uow)


class PausingAuditTrail(AuditTrail):
    """Holds the first Updated entry until released, keeping a batch mid-run."""

    def __init__(self, storage):
        super().__init__(storage)
        self.paused = threading.Event()
        self.release = threading.Event()

    def record(self, entity_id, entity_type, change_type, details, uow=None):
        if change_type == ChangeType.UPDATED and not self.paused.is_set():
            self.paused.set()
            self.release.wait(5)
        return super().record(entity_id, entity_type, change_type, details, uow=uow)


def post(service, member_id=MEMBER_ID, amount="1000", month=1, contribution_type=ContributionType.MONTHLY, ref="REF"):
    return service.post_contribution(ContributionRequest(
        member_id=member_id,
        contribution_type=contribution_type,
        amount=Decimal(amount),
        contribution_date=date(2024, month, 15),
        reference_number=ref,
    ))


def updated_entries(service, member_id=MEMBER_ID):
    return [
        t for t in service.audit.list_for_entity(member_id, page_size=100)
        if t.change_type == ChangeType.UPDATED
    ]


class TestInterestAccrual:
    """Tests for the monthly interest batch."""

    def test_amount_grows_by_monthly_rate(self):
        """Test new amount equals old amount times (1 + rate) exactly."""
        service = PensionService()
        originals = {
            post(service, amount="120000", month=1).id: Decimal("120000"),
            post(service, amount="333.33", month=2).id: Decimal("333.33"),
            post(service, amount="0.01", month=3).id: Decimal("0.01"),
        }

        outcome = service.interest.accrue_monthly_interest()

        assert outcome.succeeded == 3
        assert outcome.failed == 0
        for contribution_id, old_amount in originals.items():
            stored = service.storage.contributions.get(contribution_id)
            assert stored.amount == old_amount * (1 + Decimal("0.05"))
            assert stored.updated_at is not None

    def test_one_updated_entry_per_contribution(self):
        """Test each accrued contribution gets exactly one Updated entry."""
        service = PensionService()
        post(service, month=1)
        post(service, month=2)
        post(service, member_id="M-OTHER")

        service.interest.accrue_monthly_interest()

        entries = updated_entries(service)
        assert len(entries) == 2
        assert all(e.entity_type == EntityType.CONTRIBUTION for e in entries)
        assert all("Interest calculated" in e.change_details for e in entries)
        assert len(updated_entries(service, "M-OTHER")) == 1

    def test_accrual_compounds_across_runs(self):
        """Test a second run accrues on the already-accrued amount."""
        service = PensionService()
        contribution = post(service, amount="1000")

        service.interest.accrue_monthly_interest()
        service.interest.accrue_monthly_interest()

        assert service.storage.contributions.get(contribution.id).amount == Decimal("1102.5")

    def test_custom_rate(self):
        """Test the engine honours a configured rate."""
        service = PensionService()
        service.interest.monthly_rate = Decimal("0.01")
        contribution = post(service, amount="200")

        service.interest.accrue_monthly_interest()

        assert service.storage.contributions.get(contribution.id).amount == Decimal("202")

    def test_empty_store_reports_nothing(self):
        """Test a run over no contributions reports zero counts."""
        service = PensionService()

        outcome = service.interest.accrue_monthly_interest()

        assert (outcome.succeeded, outcome.failed) == (0, 0)


class TestInterestBatchFailures:
    """Tests for collect-and-continue batch behaviour."""

    def test_failed_record_does_not_abort_batch(self):
        """Test one failing record is reported and the rest are still accrued."""
        storage = InMemoryStorage()
        service = PensionService(storage=storage, audit=FailingAuditTrail(storage))
        good = post(service, amount="1000")
        broken = post(service, member_id=BROKEN_MEMBER_ID, amount="1000")
        later = post(service, amount="2000", month=2)

        outcome = service.interest.accrue_monthly_interest()

        assert outcome.succeeded == 2
        assert outcome.failed == 1
        assert outcome.failures[0].record_id == str(broken.id)
        assert "unavailable" in outcome.failures[0].error
        assert storage.contributions.get(good.id).amount == Decimal("1050")
        assert storage.contributions.get(later.id).amount == Decimal("2100")

    def test_failed_record_is_rolled_back(self):
        """Test the amount update is discarded when its history entry cannot be written."""
        storage = InMemoryStorage()
        service = PensionService(storage=storage, audit=FailingAuditTrail(storage))
        broken = post(service, member_id=BROKEN_MEMBER_ID, amount="1000")

        service.interest.accrue_monthly_interest()

        assert storage.contributions.get(broken.id).amount == Decimal("1000")
        assert updated_entries(service, BROKEN_MEMBER_ID) == []

    def test_stop_event_interrupts_between_records(self):
        """Test a set stop signal ends the run without touching unprocessed records."""
        service = PensionService()
        contribution = post(service, amount="1000")
        stop = threading.Event()
        stop.set()

        outcome = service.interest.accrue_monthly_interest(stop_event=stop)

        assert outcome.interrupted is True
        assert outcome.total == 0
        assert service.storage.contributions.get(contribution.id).amount == Decimal("1000")


class TestConcurrentAccrual:
    """Tests for runs that overlap other runs or new postings."""

    def run_in_background(self, engine, results):
        worker = threading.Thread(target=lambda: results.append(engine.accrue_monthly_interest()))
        worker.start()
        return worker

    def test_overlapping_run_is_refused(self):
        """Test a second run on the same engine is rejected and interest is applied once."""
        storage = InMemoryStorage()
        audit = PausingAuditTrail(storage)
        service = PensionService(storage=storage, audit=audit)
        contribution = post(service, amount="1000")
        results = []
        worker = self.run_in_background(service.interest, results)
        assert audit.paused.wait(5)

        with pytest.raises(BatchInProgressError):
            service.interest.accrue_monthly_interest()
        audit.release.set()
        worker.join(5)

        assert results[0].succeeded == 1
        assert storage.contributions.get(contribution.id).amount == Decimal("1050")
        assert len(updated_entries(service)) == 1

    def test_record_changed_mid_run_is_not_overwritten(self):
        """Test a record accrued by another engine meanwhile fails instead of accruing twice."""
        storage = InMemoryStorage()
        audit = PausingAuditTrail(storage)
        service = PensionService(storage=storage, audit=audit)
        contribution = post(service, amount="1000")
        other = InterestAccrualEngine(storage, AuditTrail(storage))
        results = []
        worker = self.run_in_background(service.interest, results)
        assert audit.paused.wait(5)

        other.accrue_monthly_interest()
        audit.release.set()
        worker.join(5)

        [outcome] = results
        assert (outcome.succeeded, outcome.failed) == (0, 1)
        assert "changed since it was read" in outcome.failures[0].error
        assert storage.contributions.get(contribution.id).amount == Decimal("1050")
        assert len(updated_entries(service)) == 1

    def test_postings_during_run_are_untouched(self):
        """Test contributions posted mid-run keep their amounts and totals add up."""
        storage = InMemoryStorage()
        audit = PausingAuditTrail(storage)
        service = PensionService(storage=storage, audit=audit)
        existing = [post(service, amount="1000", month=month) for month in (1, 2, 3)]
        results = []
        worker = self.run_in_background(service.interest, results)
        assert audit.paused.wait(5)

        with ThreadPoolExecutor(max_workers=4) as pool:
            posted = list(pool.map(lambda month: post(service, amount="500", month=month), range(4, 10)))
        audit.release.set()
        worker.join(5)

        assert results[0].succeeded == 3
        assert all(storage.contributions.get(c.id).amount == Decimal("1050") for c in existing)
        assert all(storage.contributions.get(c.id).amount == Decimal("500") for c in posted)
        assert service.total_contributions(MEMBER_ID) == Decimal("3150") + Decimal("3000")
        assert len(updated_entries(service)) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
