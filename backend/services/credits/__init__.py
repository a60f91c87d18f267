"""
Driver credit ledger service.

This module handles:
    - Admin top-ups, deductions and refunds
    - Commission debit at trip acceptance
    - Balance, history, statistics and reconciliation reads
"""

from .ledger import (
    add_credits,
    deduct_commission,
    deduct_credits,
    refund_credits,
    record_settlement,
    get_balance,
    get_credit_status,
    get_history,
    get_statistics,
    has_active_credits,
    reconcile_balance,
)

__all__ = [
    "add_credits",
    "deduct_commission",
    "deduct_credits",
    "refund_credits",
    "record_settlement",
    "get_balance",
    "get_credit_status",
    "get_history",
    "get_statistics",
    "has_active_credits",
    "reconcile_balance",
]
