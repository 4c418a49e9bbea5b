"""
Double-entry ledger backing per-member balances

This module provides:
- Immutable, append-only ledger transactions
- Paired credit/debit entries written in one transaction
- A cached balance per (member, organization), incremented atomically
- Admin balance adjustments and ledger reconciliation
"""

from .models import (
    TransactionType,
    MemberRole,
    MembershipStatus,
    Organization,
    Member,
    MemberOrgBalance,
    LedgerTransaction,
    MemberBalance,
)

__all__ = [
    "TransactionType",
    "MemberRole",
    "MembershipStatus",
    "Organization",
    "Member",
    "MemberOrgBalance",
    "LedgerTransaction",
    "MemberBalance",
]
