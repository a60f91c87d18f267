"""Rider settleable balances and driver earnings balances."""

import logging

from django.db import transaction
from django.db.models import F

from payments.models import Wallet, WalletTransaction
from services.exceptions import InsufficientBalanceError, InvalidAmountError

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")
    return amount


def get_or_create_wallet(user) -> Wallet:
    wallet, _ = Wallet.objects.get_or_create(user=user)
    return wallet


def get_wallet_balance(user) -> int:
    return Wallet.objects.filter(user=user).values_list("balance", flat=True).first() or 0


def _record(wallet_id, tx_type, amount, trip=None, description=""):
    balance = Wallet.objects.values_list("balance", flat=True).get(pk=wallet_id)
    return WalletTransaction.objects.create(
        wallet_id=wallet_id,
        type=tx_type,
        amount=amount,
        balance_after=balance,
        trip=trip,
        description=description,
    )


@transaction.atomic
def credit_wallet(user, amount, trip=None, description=""):
    amount = _validate_amount(amount)
    wallet = get_or_create_wallet(user)
    Wallet.objects.filter(pk=wallet.pk).update(balance=F("balance") + amount)
    return _record(wallet.pk, WalletTransaction.TYPE_CREDIT, amount, trip, description)


@transaction.atomic
def debit_wallet(user, amount, trip=None, description=""):
    """Conditional debit. Raises InsufficientBalanceError rather than going negative."""
    amount = _validate_amount(amount)
    wallet = get_or_create_wallet(user)

    updated = (
        Wallet.objects
        .filter(pk=wallet.pk, balance__gte=amount)
        .update(balance=F("balance") - amount)
    )
    if not updated:
        available = Wallet.objects.values_list("balance", flat=True).get(pk=wallet.pk)
        raise InsufficientBalanceError(required=amount, available=available)

    return _record(wallet.pk, WalletTransaction.TYPE_DEBIT, amount, trip, description)


def top_up(user, amount, description="Wallet top-up"):
    tx = credit_wallet(user, amount, description=description)
    logger.info("Wallet top-up of %s for user %s (balance=%s)", amount, user.pk, tx.balance_after)
    return tx
