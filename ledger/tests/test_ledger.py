"""
Unit Tests for the Ledger Service

Tests cover:
1. Paired rental settlement entries
2. Bill settlement direction and penalties
3. Rollback when one entry of a pair fails
4. Admin balance adjustments
5. Balance, history and reconciliation queries
"""

from datetime import date
from uuid import uuid4

import pytest

from common.errors import InvalidRequestError, PersistenceError, UnauthorizedError
from ledger.models import AdjustBalanceRequest, MemberRole, TransactionType
from ledger.service import MembershipNotFoundError
from rentals.models import Rental, RentalStatus
from settlement.models import Bill


def make_rental(world, owner_id, renter_id, total_cost_cents=3000):
    return Rental(
        id=uuid4(),
        org_id=world.org_id,
        tool_id=uuid4(),
        renter_id=renter_id,
        owner_id=owner_id,
        status=RentalStatus.ACTIVE,
        start_date=date(2024, 3, 1),
        scheduled_end_date=date(2024, 3, 3),
        total_cost_cents=total_cost_cents,
        created_at=world.clock(),
        updated_at=world.clock(),
    )


def make_bill(world, debtor_id, creditor_id, amount_cents):
    return Bill(
        id=uuid4(),
        org_id=world.org_id,
        debtor_id=debtor_id,
        creditor_id=creditor_id,
        amount_cents=amount_cents,
        settlement_month="2024-02",
        created_at=world.clock(),
        updated_at=world.clock(),
    )


class TestRentalSettlement:
    """Tests for the owner credit / renter debit pair."""

    def test_pair_moves_both_balances(self, world):
        """Owner is credited and renter debited by the same amount."""
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        rental = make_rental(world, owner, renter)

        entries = world.ledger.record_rental_settlement(rental, 3000)

        assert [e.type for e in entries] == [TransactionType.LENDING_CREDIT, TransactionType.RENTAL_DEBIT]
        assert sum(e.amount_cents for e in entries) == 0
        assert world.balance(owner) == 3000
        assert world.balance(renter) == -3000
        assert world.storage.get_membership(owner, world.org_id).last_balance_update_on == world.clock.today()

    def test_failed_second_entry_rolls_back_first(self, world, monkeypatch):
        """If the debit cannot be written, the credit is undone too."""
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        rental = make_rental(world, owner, renter)

        original = world.storage.append_ledger_transaction
        calls = []

        def flaky_append(entry):
            calls.append(entry)
            if len(calls) == 2:
                raise PersistenceError("ledger write failed")
            return original(entry)

        monkeypatch.setattr(world.storage, "append_ledger_transaction", flaky_append)

        with pytest.raises(PersistenceError):
            world.ledger.record_rental_settlement(rental, 3000)

        assert world.balance(owner) == 0
        assert world.balance(renter) == 0
        assert world.storage.list_ledger_transactions(rental_id=rental.id) == []


class TestBillSettlement:
    """Tests for bill payments and penalties."""

    def test_bill_settlement_moves_balances_toward_zero(self, world):
        """Paying a bill raises the debtor and lowers the creditor."""
        debtor = world.add_member("Dana", balance_cents=-700)
        creditor = world.add_member("Cole", balance_cents=300)
        bill = make_bill(world, debtor, creditor, 300)

        entries = world.ledger.record_bill_settlement(bill)

        assert entries[0].member_id == debtor
        assert entries[0].type == TransactionType.SETTLEMENT_CREDIT
        assert entries[1].type == TransactionType.SETTLEMENT_DEBIT
        assert world.balance(debtor) == -400
        assert world.balance(creditor) == 0

    def test_penalty_is_single_debit(self, world):
        debtor = world.add_member("Dana")
        creditor = world.add_member("Cole")
        bill = make_bill(world, debtor, creditor, 250)

        entry = world.ledger.record_penalty(creditor, bill, "creditor fault")

        assert entry.type == TransactionType.PENALTY
        assert entry.amount_cents == -250
        assert entry.related_bill_id == bill.id
        assert world.balance(creditor) == -250
        assert world.balance(debtor) == 0


class TestAdjustBalance:
    """Tests for admin adjustments."""

    def test_admin_can_adjust(self, world):
        admin = world.add_member("Ada", role=MemberRole.ADMIN)
        member = world.add_member("Max")

        entry = world.ledger.adjust_balance(AdjustBalanceRequest(
            admin_id=admin, member_id=member, org_id=world.org_id,
            amount_cents=-150, reason="Broken blade",
        ))

        assert entry.type == TransactionType.ADJUSTMENT
        assert world.balance(member) == -150

    def test_non_admin_cannot_adjust(self, world):
        someone = world.add_member("Sam")
        member = world.add_member("Max")

        with pytest.raises(UnauthorizedError):
            world.ledger.adjust_balance(AdjustBalanceRequest(
                admin_id=someone, member_id=member, org_id=world.org_id,
                amount_cents=100, reason="Gift",
            ))
        assert world.balance(member) == 0

    def test_zero_adjustment_rejected(self, world):
        admin = world.add_member("Ada", role=MemberRole.SUPER_ADMIN)
        member = world.add_member("Max")

        with pytest.raises(InvalidRequestError):
            world.ledger.adjust_balance(AdjustBalanceRequest(
                admin_id=admin, member_id=member, org_id=world.org_id,
                amount_cents=0, reason="Nothing",
            ))


class TestLedgerQueries:
    """Tests for balance, history and reconciliation."""

    def test_unknown_membership(self, world):
        with pytest.raises(MembershipNotFoundError):
            world.ledger.get_balance(uuid4(), world.org_id)

    def test_history_newest_first_with_paging(self, world):
        owner = world.add_member("Olive")
        renter = world.add_member("Ray")
        first = make_rental(world, owner, renter, 1000)
        world.ledger.record_rental_settlement(first, 1000)
        world.clock.advance(days=1)
        second = make_rental(world, owner, renter, 2000)
        world.ledger.record_rental_settlement(second, 2000)

        history = world.ledger.get_ledger_history(owner, world.org_id, limit=1)

        assert history.total_count == 2
        assert len(history.entries) == 1
        assert history.entries[0].related_rental_id == second.id
        assert history.balance_cents == 3000

    def test_reconcile_matches_cached_balance(self, world):
        owner = world.add_member("Olive", balance_cents=500)
        renter = world.add_member("Ray")
        world.ledger.record_rental_settlement(make_rental(world, owner, renter), 1200)

        report = world.ledger.reconcile(owner, world.org_id)

        assert report.is_consistent
        assert report.ledger_balance_cents == 1700
        assert report.entry_count == 2
