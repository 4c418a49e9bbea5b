"""
Unit Tests for shared plumbing

Tests cover:
1. Settlement month helpers
2. Configuration from YAML and environment
3. Storage transactions, unique keys and persistence
4. Notification dispatch and JSON log lines
"""

import json
import logging
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from common.config import AppConfig
from common.dates import is_past, parse_settlement_month, previous_settlement_month, settlement_month
from common.log import JsonFormatter
from common.notifications import InMemoryNotifier, Notification, dispatch
from common.storage import DuplicateBillError, InMemoryStorage
from ledger.models import Member, MemberOrgBalance, Organization
from settlement.models import BalanceSnapshot, Bill

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestDates:
    """Tests for settlement month helpers."""

    def test_months(self):
        assert settlement_month(date(2024, 3, 31)) == "2024-03"
        assert previous_settlement_month(date(2024, 3, 1)) == "2024-02"
        assert previous_settlement_month(date(2024, 1, 1)) == "2023-12"

    def test_parse_rejects_garbage(self):
        assert parse_settlement_month("2024-03") == "2024-03"
        with pytest.raises(ValueError):
            parse_settlement_month("2024-13")

    def test_is_past_is_strict(self):
        assert is_past(date(2024, 3, 14), date(2024, 3, 15))
        assert not is_past(date(2024, 3, 15), date(2024, 3, 15))


class TestConfig:
    """Tests for YAML and environment configuration."""

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TOOLSHARE_DISPUTE_AFTER_DAYS", raising=False)

        config = AppConfig.load(str(tmp_path / "missing.yaml"))

        assert config.billing.dispute_after_days == 10
        assert config.scheduler.perform_bill_splitting == "0 0 1 * *"

    def test_yaml_then_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "toolshare.yaml"
        path.write_text("billing:\n  dispute_after_days: 14\nlog:\n  level: DEBUG\n")
        monkeypatch.setenv("TOOLSHARE_LOG_LEVEL", "WARNING")

        config = AppConfig.load(str(path))

        assert config.billing.dispute_after_days == 14
        assert config.log.level == "WARNING"


class TestStorage:
    """Tests for the in-memory store."""

    def make_bill(self, org_id, debtor, creditor, month="2024-02"):
        return Bill(
            id=uuid4(), org_id=org_id, debtor_id=debtor, creditor_id=creditor,
            amount_cents=100, settlement_month=month, created_at=NOW, updated_at=NOW,
        )

    def test_transaction_rolls_back_every_table(self):
        storage = InMemoryStorage()
        org = storage.add_organization(Organization(id=uuid4(), name="Maple"))

        with pytest.raises(RuntimeError):
            with storage.transaction():
                storage.add_member(Member(id=uuid4(), name="Uma", email="uma@example.com"))
                storage.create_bill(self.make_bill(org.id, uuid4(), uuid4()))
                raise RuntimeError("abort")

        assert storage.members == {}
        assert storage.bills == {}
        assert storage.bill_index == {}

    def test_duplicate_bill_rejected(self):
        storage = InMemoryStorage()
        org_id, debtor, creditor = uuid4(), uuid4(), uuid4()
        storage.create_bill(self.make_bill(org_id, debtor, creditor))

        with pytest.raises(DuplicateBillError):
            storage.create_bill(self.make_bill(org_id, debtor, creditor))
        storage.create_bill(self.make_bill(org_id, debtor, creditor, month="2024-03"))

    def test_reads_are_copies(self):
        storage = InMemoryStorage()
        member_id, org_id = uuid4(), uuid4()
        storage.add_membership(MemberOrgBalance(member_id=member_id, org_id=org_id))

        membership = storage.get_membership(member_id, org_id)
        membership.renting_blocked = True

        assert not storage.get_membership(member_id, org_id).renting_blocked

    def test_snapshot_insert_if_absent(self):
        storage = InMemoryStorage()
        snapshot = BalanceSnapshot(
            member_id=uuid4(), org_id=uuid4(), settlement_month="2024-03", balance_cents=-5, snapshot_at=NOW,
        )

        assert storage.insert_snapshot_if_absent(snapshot)
        assert not storage.insert_snapshot_if_absent(snapshot.model_copy(update={"balance_cents": 7}))
        assert storage.list_snapshots()[0].balance_cents == -5

    def test_dump_and_load(self, tmp_path):
        storage = InMemoryStorage()
        org = storage.add_organization(Organization(id=uuid4(), name="Maple"))
        bill = storage.create_bill(self.make_bill(org.id, uuid4(), uuid4()))
        path = str(tmp_path / "state.json")

        storage.dump(path)
        loaded = InMemoryStorage.load(path)

        assert loaded.get_bill(bill.id) == bill
        with pytest.raises(DuplicateBillError):
            loaded.create_bill(self.make_bill(org.id, bill.debtor_id, bill.creditor_id))

    def test_load_missing_file_is_empty(self, tmp_path):
        assert InMemoryStorage.load(str(tmp_path / "nothing.json")).list_organizations() == []


class TestNotificationsAndLogging:
    """Tests for dispatch and log formatting."""

    def test_dispatch_swallows_delivery_errors(self, caplog):
        class BrokenNotifier(InMemoryNotifier):
            def send(self, notification):
                raise ConnectionError("smtp down")

        notification = Notification(recipient_id=uuid4(), org_id=uuid4(), title="Hi", message="Hello")

        with caplog.at_level(logging.WARNING):
            delivered = dispatch(BrokenNotifier(), logging.getLogger("test"), notification)

        assert not delivered
        assert "Failed to deliver notification" in caplog.text

    def test_dispatch_delivers(self):
        notifier = InMemoryNotifier()
        notification = Notification(recipient_id=uuid4(), org_id=uuid4(), title="Hi", message="Hello")

        assert dispatch(notifier, logging.getLogger("test"), notification)
        assert notifier.sent_to(notification.recipient_id) == [notification]

    def test_json_formatter(self):
        record = logging.LogRecord("toolshare.jobs", logging.INFO, __file__, 1, "ran %s", ("job",), None)

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "ran job"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "toolshare.jobs"
