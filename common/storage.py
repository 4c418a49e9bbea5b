"""
In-memory implementation of the rental, tool, ledger, bill and membership stores.

Records are pydantic models. Reads hand out deep copies and writes store deep
copies, so callers never observe a half-applied mutation. ``transaction()``
groups writes: if anything inside the block raises, every table is restored
to its state at block entry.
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from ledger.models import LedgerTransaction, Member, MemberOrgBalance, Organization
from rentals.models import Rental, RentalStatus, Tool
from settlement.models import BalanceSnapshot, Bill, BillAction, BillStatus

from .errors import IdempotencyConflictError, PersistenceError


class DuplicateBillError(IdempotencyConflictError):
    pass


TABLES = (
    "organizations",
    "members",
    "memberships",
    "tools",
    "rentals",
    "ledger_transactions",
    "snapshots",
    "bills",
    "bill_index",
    "bill_actions",
)


class StorageState(BaseModel):
    organizations: list[Organization] = Field(default_factory=list)
    members: list[Member] = Field(default_factory=list)
    memberships: list[MemberOrgBalance] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    rentals: list[Rental] = Field(default_factory=list)
    ledger_transactions: list[LedgerTransaction] = Field(default_factory=list)
    snapshots: list[BalanceSnapshot] = Field(default_factory=list)
    bills: list[Bill] = Field(default_factory=list)
    bill_actions: list[BillAction] = Field(default_factory=list)


def _copy(record):
    return record.model_copy(deep=True) if record is not None else None


class InMemoryStorage:
    def __init__(self):
        self.organizations: dict[UUID, Organization] = {}
        self.members: dict[UUID, Member] = {}
        self.memberships: dict[tuple[UUID, UUID], MemberOrgBalance] = {}
        self.tools: dict[UUID, Tool] = {}
        self.rentals: dict[UUID, Rental] = {}
        self.ledger_transactions: list[LedgerTransaction] = []
        self.snapshots: dict[tuple[UUID, UUID, str], BalanceSnapshot] = {}
        self.bills: dict[UUID, Bill] = {}
        self.bill_index: dict[tuple[UUID, UUID, UUID, str], UUID] = {}
        self.bill_actions: list[BillAction] = []
        self._lock = threading.RLock()

    # -- transactions -----------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            saved = {name: getattr(self, name).copy() for name in TABLES}
            try:
                yield self
            except BaseException:
                for name, table in saved.items():
                    setattr(self, name, table)
                raise

    # -- organizations and members ----------------------------------------

    def add_organization(self, org: Organization) -> Organization:
        with self._lock:
            self.organizations[org.id] = _copy(org)
        return _copy(org)

    def get_organization(self, org_id: UUID) -> Optional[Organization]:
        return _copy(self.organizations.get(org_id))

    def list_organizations(self) -> list[Organization]:
        return [_copy(o) for o in self.organizations.values()]

    def add_member(self, member: Member) -> Member:
        with self._lock:
            self.members[member.id] = _copy(member)
        return _copy(member)

    def get_member(self, member_id: UUID) -> Optional[Member]:
        return _copy(self.members.get(member_id))

    def add_membership(self, membership: MemberOrgBalance) -> MemberOrgBalance:
        with self._lock:
            self.memberships[(membership.member_id, membership.org_id)] = _copy(membership)
        return _copy(membership)

    def get_membership(self, member_id: UUID, org_id: UUID) -> Optional[MemberOrgBalance]:
        return _copy(self.memberships.get((member_id, org_id)))

    def update_membership(self, membership: MemberOrgBalance) -> MemberOrgBalance:
        key = (membership.member_id, membership.org_id)
        with self._lock:
            current = self.memberships.get(key)
            if current is None:
                raise PersistenceError(f"Membership {key} does not exist")
            # balance fields are owned by append_ledger_transaction
            updated = membership.model_copy(update={
                "balance_cents": current.balance_cents,
                "last_balance_update_on": current.last_balance_update_on,
            }, deep=True)
            self.memberships[key] = updated
        return _copy(updated)

    def list_memberships(
        self, org_id: Optional[UUID] = None, member_id: Optional[UUID] = None
    ) -> list[MemberOrgBalance]:
        return [
            _copy(m) for m in self.memberships.values()
            if (org_id is None or m.org_id == org_id)
            and (member_id is None or m.member_id == member_id)
        ]

    # -- tools and rentals ------------------------------------------------

    def add_tool(self, tool: Tool) -> Tool:
        with self._lock:
            self.tools[tool.id] = _copy(tool)
        return _copy(tool)

    def get_tool(self, tool_id: UUID) -> Optional[Tool]:
        return _copy(self.tools.get(tool_id))

    def update_tool(self, tool: Tool) -> Tool:
        with self._lock:
            if tool.id not in self.tools:
                raise PersistenceError(f"Tool {tool.id} does not exist")
            self.tools[tool.id] = _copy(tool)
        return _copy(tool)

    def create_rental(self, rental: Rental) -> Rental:
        with self._lock:
            if rental.id in self.rentals:
                raise PersistenceError(f"Rental {rental.id} already exists")
            self.rentals[rental.id] = _copy(rental)
        return _copy(rental)

    def get_rental(self, rental_id: UUID) -> Optional[Rental]:
        return _copy(self.rentals.get(rental_id))

    def update_rental(self, rental: Rental) -> Rental:
        with self._lock:
            if rental.id not in self.rentals:
                raise PersistenceError(f"Rental {rental.id} does not exist")
            self.rentals[rental.id] = _copy(rental)
        return _copy(rental)

    def list_rentals(
        self,
        org_id: Optional[UUID] = None,
        tool_id: Optional[UUID] = None,
        renter_id: Optional[UUID] = None,
        owner_id: Optional[UUID] = None,
        statuses: Optional[Iterable[RentalStatus]] = None,
    ) -> list[Rental]:
        wanted = set(statuses) if statuses else None
        rentals = [
            _copy(r) for r in self.rentals.values()
            if (org_id is None or r.org_id == org_id)
            and (tool_id is None or r.tool_id == tool_id)
            and (renter_id is None or r.renter_id == renter_id)
            and (owner_id is None or r.owner_id == owner_id)
            and (wanted is None or r.status in wanted)
        ]
        rentals.sort(key=lambda r: r.created_at, reverse=True)
        return rentals

    # -- ledger -----------------------------------------------------------

    def append_ledger_transaction(self, entry: LedgerTransaction) -> MemberOrgBalance:
        """Append an entry and increment the cached balance as one step."""
        key = (entry.member_id, entry.org_id)
        with self._lock:
            membership = self.memberships.get(key)
            if membership is None:
                raise PersistenceError(
                    f"Member {entry.member_id} has no membership in org {entry.org_id}"
                )
            updated = membership.model_copy(update={
                "balance_cents": membership.balance_cents + entry.amount_cents,
                "last_balance_update_on": entry.charged_on,
            })
            self.ledger_transactions.append(_copy(entry))
            self.memberships[key] = updated
        return _copy(updated)

    def list_ledger_transactions(
        self,
        member_id: Optional[UUID] = None,
        org_id: Optional[UUID] = None,
        rental_id: Optional[UUID] = None,
        bill_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        return [
            _copy(t) for t in self.ledger_transactions
            if (member_id is None or t.member_id == member_id)
            and (org_id is None or t.org_id == org_id)
            and (rental_id is None or t.related_rental_id == rental_id)
            and (bill_id is None or t.related_bill_id == bill_id)
        ]

    # -- balance snapshots ------------------------------------------------

    def insert_snapshot_if_absent(self, snapshot: BalanceSnapshot) -> bool:
        key = (snapshot.member_id, snapshot.org_id, snapshot.settlement_month)
        with self._lock:
            if key in self.snapshots:
                return False
            self.snapshots[key] = _copy(snapshot)
        return True

    def list_snapshots(
        self, org_id: Optional[UUID] = None, settlement_month: Optional[str] = None
    ) -> list[BalanceSnapshot]:
        return [
            _copy(s) for s in self.snapshots.values()
            if (org_id is None or s.org_id == org_id)
            and (settlement_month is None or s.settlement_month == settlement_month)
        ]

    # -- bills ------------------------------------------------------------

    def create_bill(self, bill: Bill) -> Bill:
        key = (bill.org_id, bill.debtor_id, bill.creditor_id, bill.settlement_month)
        with self._lock:
            if key in self.bill_index:
                raise DuplicateBillError(
                    f"Bill already exists for debtor {bill.debtor_id} -> creditor "
                    f"{bill.creditor_id} in {bill.settlement_month}"
                )
            self.bills[bill.id] = _copy(bill)
            self.bill_index[key] = bill.id
        return _copy(bill)

    def get_bill(self, bill_id: UUID) -> Optional[Bill]:
        return _copy(self.bills.get(bill_id))

    def update_bill(self, bill: Bill) -> Bill:
        with self._lock:
            if bill.id not in self.bills:
                raise PersistenceError(f"Bill {bill.id} does not exist")
            self.bills[bill.id] = _copy(bill)
        return _copy(bill)

    def list_bills(
        self,
        org_id: Optional[UUID] = None,
        member_id: Optional[UUID] = None,
        statuses: Optional[Iterable[BillStatus]] = None,
        settlement_month: Optional[str] = None,
    ) -> list[Bill]:
        wanted = set(statuses) if statuses else None
        bills = [
            _copy(b) for b in self.bills.values()
            if (org_id is None or b.org_id == org_id)
            and (member_id is None or b.is_party(member_id))
            and (wanted is None or b.status in wanted)
            and (settlement_month is None or b.settlement_month == settlement_month)
        ]
        bills.sort(key=lambda b: b.created_at)
        return bills

    def create_bill_action(self, action: BillAction) -> BillAction:
        with self._lock:
            self.bill_actions.append(_copy(action))
        return _copy(action)

    def list_bill_actions(self, bill_id: UUID) -> list[BillAction]:
        return [_copy(a) for a in self.bill_actions if a.bill_id == bill_id]

    # -- persistence to disk ----------------------------------------------

    def export_state(self) -> StorageState:
        with self._lock:
            return StorageState(
                organizations=list(self.organizations.values()),
                members=list(self.members.values()),
                memberships=list(self.memberships.values()),
                tools=list(self.tools.values()),
                rentals=list(self.rentals.values()),
                ledger_transactions=list(self.ledger_transactions),
                snapshots=list(self.snapshots.values()),
                bills=list(self.bills.values()),
                bill_actions=list(self.bill_actions),
            )

    def dump(self, path: str) -> None:
        Path(path).write_text(self.export_state().model_dump_json(indent=2))

    @classmethod
    def from_state(cls, state: StorageState) -> "InMemoryStorage":
        storage = cls()
        for org in state.organizations:
            storage.organizations[org.id] = org
        for member in state.members:
            storage.members[member.id] = member
        for membership in state.memberships:
            storage.memberships[(membership.member_id, membership.org_id)] = membership
        for tool in state.tools:
            storage.tools[tool.id] = tool
        for rental in state.rentals:
            storage.rentals[rental.id] = rental
        storage.ledger_transactions = list(state.ledger_transactions)
        for snapshot in state.snapshots:
            storage.snapshots[(snapshot.member_id, snapshot.org_id, snapshot.settlement_month)] = snapshot
        for bill in state.bills:
            storage.bills[bill.id] = bill
            storage.bill_index[(bill.org_id, bill.debtor_id, bill.creditor_id, bill.settlement_month)] = bill.id
        storage.bill_actions = list(state.bill_actions)
        return storage

    @classmethod
    def load(cls, path: str) -> "InMemoryStorage":
        file = Path(path)
        if not file.exists():
            return cls()
        return cls.from_state(StorageState.model_validate_json(file.read_text()))
