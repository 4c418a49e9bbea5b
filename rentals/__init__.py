"""
Rental lifecycle for shared tools

This module provides:
- The rental status machine from request to completion
- Return-date negotiation with a mandatory counter-proposal
- Inclusive-day pricing recomputed on every date change
- Ledger settlement of completed rentals
"""

from .models import (
    RentalStatus,
    ToolStatus,
    Tool,
    Rental,
)

__all__ = [
    "RentalStatus",
    "ToolStatus",
    "Tool",
    "Rental",
]
