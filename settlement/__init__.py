"""
Monthly settlement of member balances

This module provides:
- Month-end balance snapshots
- Greedy netting of snapshots into debtor to creditor bills
- The two-step payment acknowledgment protocol
- Dispute detection, admin resolution and month-end default action
"""

from .models import (
    BillStatus,
    ResolutionOutcome,
    BalanceSnapshot,
    Bill,
    BillAction,
)

__all__ = [
    "BillStatus",
    "ResolutionOutcome",
    "BalanceSnapshot",
    "Bill",
    "BillAction",
]
