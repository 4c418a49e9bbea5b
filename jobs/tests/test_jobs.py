"""
Unit Tests for the Job Runner

Tests cover:
1. Job lookup and bundles
2. Typed outcomes: success, partial failure, failure
3. Monthly settlement end to end
4. Scheduler registration
"""

from datetime import date

import pytest

from common.config import SchedulerConfig
from common.errors import InvalidRequestError, PersistenceError
from jobs.runner import JobRunner, JobStatus, UnknownJobError, NIGHTLY_JOBS, MONTHLY_JOBS
from jobs.scheduler import build_scheduler
from rentals.models import (
    RentalStatus,
    ActivateRentalRequest,
    ApproveRentalRequest,
    CreateRentalRequest,
    FinalizeRentalRequest,
)
from settlement.models import BillStatus


def make_runner(world):
    return JobRunner(world.services, clock=world.clock)


class TestJobLookup:
    """Tests for resolving job names."""

    def test_unknown_job(self, world):
        with pytest.raises(UnknownJobError):
            make_runner(world).run("rebuild-everything")

    def test_invalid_month(self, world):
        with pytest.raises(InvalidRequestError):
            make_runner(world).run("take-balance-snapshots", "2024-13")

    def test_job_names_include_bundles(self):
        names = JobRunner.job_names()

        assert "all-nightly" in names
        assert "all-monthly" in names
        assert set(NIGHTLY_JOBS + MONTHLY_JOBS) <= set(names)


class TestJobOutcomes:
    """Tests for per-job results."""

    def test_nightly_bundle_runs_every_job_in_order(self, world):
        results = make_runner(world).run_all_nightly()

        assert [r.job for r in results] == list(NIGHTLY_JOBS)
        assert all(r.status == JobStatus.SUCCESS for r in results)

    def test_failing_job_does_not_stop_bundle(self, world, monkeypatch):
        def explode(now=None):
            raise RuntimeError("notice queue offline")

        monkeypatch.setattr(world.services.disputes, "send_bill_notices", explode)

        results = make_runner(world).run("all-nightly")

        by_job = {r.job: r for r in results}
        assert by_job["send-bill-notices"].status == JobStatus.FAILED
        assert "notice queue offline" in by_job["send-bill-notices"].error
        assert by_job["check-overdue-bills"].status == JobStatus.SUCCESS
        assert len(results) == len(NIGHTLY_JOBS)

    def test_entity_errors_make_partial_failure(self, world, monkeypatch):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        tool = world.add_tool(owner)
        rental = world.rentals.create_rental_request(CreateRentalRequest(
            renter_id=renter, tool_id=tool, start_date=date(2024, 3, 1), end_date=date(2024, 3, 2),
        )).rental
        world.rentals.approve_rental_request(rental.id, ApproveRentalRequest(owner_id=owner))
        world.rentals.finalize_rental_request(rental.id, FinalizeRentalRequest(renter_id=renter))
        world.rentals.activate_rental(rental.id, ActivateRentalRequest(member_id=owner))

        def failing_update(rental):
            raise PersistenceError("rental store unavailable")

        monkeypatch.setattr(world.storage, "update_rental", failing_update)

        [result] = make_runner(world).run("mark-overdue-rentals")

        assert result.status == JobStatus.PARTIAL_FAILURE
        assert result.entity_errors[0].entity_id == str(rental.id)
        assert world.storage.get_rental(rental.id).status == RentalStatus.ACTIVE


class TestMonthlySettlement:
    """Tests for the monthly bundle end to end."""

    def test_monthly_bundle_snapshots_and_splits(self, world):
        u1 = world.add_member("Uma", balance_cents=-700)
        u2 = world.add_member("Vic", balance_cents=300)
        u3 = world.add_member("Wes", balance_cents=400)

        results = make_runner(world).run_all_monthly("2024-03")

        assert [r.job for r in results] == list(MONTHLY_JOBS)
        assert all(r.status == JobStatus.SUCCESS for r in results)
        assert results[1].processed == 3
        bills = world.storage.list_bills(settlement_month="2024-03")
        assert sorted((b.debtor_id, b.creditor_id, b.amount_cents) for b in bills) == sorted(
            [(u1, u2, 300), (u1, u3, 400)]
        )
        assert all(b.status == BillStatus.PENDING for b in bills)

    def test_monthly_bundle_is_idempotent(self, world):
        world.add_member("Uma", balance_cents=-500)
        world.add_member("Vic", balance_cents=500)
        runner = make_runner(world)
        runner.run_all_monthly("2024-03")

        rerun = runner.run_all_monthly("2024-03")

        assert rerun[1].processed == 0
        assert rerun[2].processed == 0
        assert rerun[2].skipped == 1
        assert len(world.storage.list_bills()) == 1

    def test_monthly_bundle_defaults_to_one_month(self, world):
        debtor = world.add_member("Uma", balance_cents=-500)
        creditor = world.add_member("Vic", balance_cents=500)

        results = make_runner(world).run_all_monthly()

        assert all(r.status == JobStatus.SUCCESS for r in results)
        assert results[1].details["settlement_month"] == "2024-03"
        assert results[2].details["settlement_month"] == "2024-03"
        [bill] = world.storage.list_bills()
        assert (bill.debtor_id, bill.creditor_id, bill.amount_cents) == (debtor, creditor, 500)


class TestScheduler:
    """Tests for cron registration."""

    def test_every_job_is_scheduled(self, world):
        scheduler = build_scheduler(make_runner(world), SchedulerConfig())

        job_ids = {job.id for job in scheduler.get_jobs()}

        assert job_ids == set(NIGHTLY_JOBS + MONTHLY_JOBS)
