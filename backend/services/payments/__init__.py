"""Wallet balances used to settle completed trips."""

from .wallet import (
    credit_wallet,
    debit_wallet,
    get_or_create_wallet,
    get_wallet_balance,
    top_up,
)

__all__ = [
    "credit_wallet",
    "debit_wallet",
    "get_or_create_wallet",
    "get_wallet_balance",
    "top_up",
]
