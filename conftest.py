from datetime import date, datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import pytest

from common.config import AppConfig
from common.notifications import InMemoryNotifier
from common.storage import InMemoryStorage
from jobs.runner import build_services
from ledger.models import (
    LedgerTransaction,
    Member,
    MemberOrgBalance,
    MemberRole,
    Organization,
    TransactionType,
)
from rentals.models import Tool

FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def today(self) -> date:
        return self.now.date()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class World:
    """One organization with real in-memory services and a controllable clock."""

    def __init__(self, config: Optional[AppConfig] = None):
        self.clock = FakeClock()
        self.storage = InMemoryStorage()
        self.notifier = InMemoryNotifier()
        self.services = build_services(config or AppConfig(), self.storage, self.notifier, self.clock)
        self.org_id = self.add_org("Maple Street")

    @property
    def ledger(self):
        return self.services.ledger

    @property
    def rentals(self):
        return self.services.rentals

    @property
    def disputes(self):
        return self.services.disputes

    def add_org(self, name: str) -> UUID:
        org = self.storage.add_organization(Organization(id=uuid4(), name=name))
        return org.id

    def add_member(
        self,
        name: str,
        role: MemberRole = MemberRole.MEMBER,
        balance_cents: int = 0,
        org_id: Optional[UUID] = None,
    ) -> UUID:
        org_id = org_id or self.org_id
        member = self.storage.add_member(Member(id=uuid4(), name=name, email=f"{name.lower()}@example.com"))
        self.storage.add_membership(MemberOrgBalance(member_id=member.id, org_id=org_id, role=role))
        if balance_cents:
            self.set_balance(member.id, balance_cents, org_id)
        return member.id

    def set_balance(self, member_id: UUID, balance_cents: int, org_id: Optional[UUID] = None) -> None:
        org_id = org_id or self.org_id
        current = self.storage.get_membership(member_id, org_id).balance_cents
        self.storage.append_ledger_transaction(LedgerTransaction(
            id=uuid4(),
            org_id=org_id,
            member_id=member_id,
            amount_cents=balance_cents - current,
            type=TransactionType.ADJUSTMENT,
            description="test setup",
            charged_on=self.clock.today(),
            created_at=self.clock(),
        ))

    def add_tool(self, owner_id: UUID, price_per_day_cents: int = 1000, name: str = "Drill") -> UUID:
        tool = self.storage.add_tool(Tool(
            id=uuid4(), org_id=self.org_id, owner_id=owner_id, name=name,
            price_per_day_cents=price_per_day_cents,
        ))
        return tool.id

    def balance(self, member_id: UUID, org_id: Optional[UUID] = None) -> int:
        return self.storage.get_membership(member_id, org_id or self.org_id).balance_cents


@pytest.fixture
def world() -> World:
    return World()
