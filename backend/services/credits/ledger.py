"""
Driver credit ledger.

Every mutation is one atomic unit: an F() update of the cached
DriverProfile.credit_balance plus exactly one CreditLedgerEntry whose
balance_after is the balance right after that update.
"""

import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from credits.models import CreditLedgerEntry
from drivers.models import DriverProfile
from services.exceptions import (
    DriverNotFoundError,
    InsufficientCreditsError,
    InvalidAmountError,
)

logger = logging.getLogger(__name__)


def _driver_pk(driver):
    return driver.pk if isinstance(driver, DriverProfile) else driver


def _trip_pk(trip):
    if trip is None:
        return None
    return getattr(trip, "pk", trip)


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")
    return amount


def _current_balance(driver_id) -> int:
    try:
        return DriverProfile.objects.values_list("credit_balance", flat=True).get(pk=driver_id)
    except DriverProfile.DoesNotExist:
        raise DriverNotFoundError(f"Driver {driver_id} not found")


def _append_entry(driver_id, delta, action, trip=None, amount=None, package_name=None, notes="", actor=None):
    return CreditLedgerEntry.objects.create(
        driver_id=driver_id,
        trip_id=_trip_pk(trip),
        credits_delta=delta,
        balance_after=_current_balance(driver_id),
        action=action,
        amount=amount,
        package_name=package_name,
        notes=notes or "",
        actor=actor,
    )


@transaction.atomic
def add_credits(driver, amount, actor=None, reason="", package_name=None, duration_days=None):
    """Admin top-up. Optionally sets the package name and a new expiry."""
    amount = _validate_amount(amount)
    driver_id = _driver_pk(driver)

    updates = {"credit_balance": F("credit_balance") + amount}
    if package_name:
        updates["monthly_package"] = package_name
    if duration_days:
        updates["credit_expires_at"] = timezone.now() + timedelta(days=duration_days)

    if not DriverProfile.objects.filter(pk=driver_id).update(**updates):
        raise DriverNotFoundError(f"Driver {driver_id} not found")

    entry = _append_entry(
        driver_id,
        amount,
        CreditLedgerEntry.ACTION_ADMIN_ADD,
        amount=amount,
        package_name=package_name,
        notes=reason or "Credits added by admin",
        actor=actor,
    )
    logger.info("Added %s credits to driver %s (balance=%s)", amount, driver_id, entry.balance_after)
    return entry


def _conditional_debit(driver_id, amount) -> bool:
    return bool(
        DriverProfile.objects
        .filter(pk=driver_id, credit_balance__gte=amount)
        .update(credit_balance=F("credit_balance") - amount)
    )


@transaction.atomic
def deduct_commission(driver, trip, commission, fare=None):
    """Take the platform commission for an accepted trip. Never goes negative."""
    commission = _validate_amount(commission)
    driver_id = _driver_pk(driver)

    if not _conditional_debit(driver_id, commission):
        available = _current_balance(driver_id)
        logger.warning(
            "Driver %s cannot cover commission %s (available=%s, trip=%s)",
            driver_id, commission, available, _trip_pk(trip),
        )
        raise InsufficientCreditsError(required=commission, available=available, fare=fare)

    entry = _append_entry(
        driver_id,
        -commission,
        CreditLedgerEntry.ACTION_TRIP_DEDUCTION,
        trip=trip,
        amount=fare,
        notes=f"Commission for trip {_trip_pk(trip)}",
    )
    logger.info("Deducted commission %s from driver %s (balance=%s)", commission, driver_id, entry.balance_after)
    return entry


@transaction.atomic
def deduct_credits(driver, amount, actor=None, trip=None, reason=""):
    """Generic deduction. Fails instead of letting the balance go negative."""
    amount = _validate_amount(amount)
    driver_id = _driver_pk(driver)

    if not _conditional_debit(driver_id, amount):
        available = _current_balance(driver_id)
        raise InsufficientCreditsError(required=amount, available=available)

    return _append_entry(
        driver_id,
        -amount,
        CreditLedgerEntry.ACTION_TRIP_DEDUCTION,
        trip=trip,
        amount=amount,
        notes=reason or "Credits deducted",
        actor=actor,
    )


@transaction.atomic
def refund_credits(driver, amount, trip=None, reason="Trip cancelled", actor=None):
    amount = _validate_amount(amount)
    driver_id = _driver_pk(driver)

    if not DriverProfile.objects.filter(pk=driver_id).update(credit_balance=F("credit_balance") + amount):
        raise DriverNotFoundError(f"Driver {driver_id} not found")

    entry = _append_entry(
        driver_id,
        amount,
        CreditLedgerEntry.ACTION_REFUND,
        trip=trip,
        amount=amount,
        notes=reason,
        actor=actor,
    )
    logger.info("Refunded %s credits to driver %s (trip=%s)", amount, driver_id, _trip_pk(trip))
    return entry


def record_settlement(driver, trip, commission):
    """
    Informational entry written when a trip settles. The commission was already
    taken at acceptance, so the delta is zero and the balance is untouched.
    """
    driver_id = _driver_pk(driver)
    return _append_entry(
        driver_id,
        0,
        CreditLedgerEntry.ACTION_TRIP_DEDUCTION,
        trip=trip,
        amount=commission,
        notes=f"Trip {_trip_pk(trip)} settled, commission {commission}",
    )


# ---------------------- Reads ----------------------

def get_balance(driver) -> int:
    return max(0, _current_balance(_driver_pk(driver)))


def has_active_credits(driver, now=None) -> bool:
    now = now or timezone.now()
    return (
        DriverProfile.objects
        .filter(pk=_driver_pk(driver), credit_balance__gt=0)
        .filter(Q(credit_expires_at__isnull=True) | Q(credit_expires_at__gt=now))
        .exists()
    )


def get_credit_status(driver):
    driver_id = _driver_pk(driver)
    try:
        profile = DriverProfile.objects.only(
            "credit_balance", "credit_expires_at", "monthly_package"
        ).get(pk=driver_id)
    except DriverProfile.DoesNotExist:
        raise DriverNotFoundError(f"Driver {driver_id} not found")

    return {
        "credit_balance": profile.credit_balance,
        "credit_expires_at": profile.credit_expires_at,
        "monthly_package": profile.monthly_package,
        "has_active_credits": profile.credit_balance > 0 and not profile.credits_expired(),
    }


def get_history(driver, limit=50, offset=0):
    return list(
        CreditLedgerEntry.objects
        .filter(driver_id=_driver_pk(driver))
        .order_by("-created_at", "-id")[offset:offset + limit]
    )


def get_statistics(driver):
    """Totals per action from a single grouped aggregate."""
    driver_id = _driver_pk(driver)
    status = get_credit_status(driver_id)

    rows = (
        CreditLedgerEntry.objects
        .filter(driver_id=driver_id)
        .values("action")
        .annotate(total=Sum("credits_delta"), count=Count("id"))
    )
    by_action = {row["action"]: row for row in rows}

    def total(action):
        row = by_action.get(action)
        return (row["total"] or 0) if row else 0

    expires_at = status["credit_expires_at"]
    return {
        "current_balance": status["credit_balance"],
        "credit_expires_at": expires_at,
        "monthly_package": status["monthly_package"],
        "is_expired": bool(expires_at and expires_at < timezone.now()),
        "total_added": total(CreditLedgerEntry.ACTION_ADMIN_ADD),
        "total_deducted": abs(total(CreditLedgerEntry.ACTION_TRIP_DEDUCTION)),
        "total_refunded": total(CreditLedgerEntry.ACTION_REFUND),
        "transaction_count": sum(row["count"] for row in by_action.values()),
    }


def reconcile_balance(driver):
    """Audit the cached balance against the sum of ledger deltas."""
    driver_id = _driver_pk(driver)
    cached = _current_balance(driver_id)
    ledger_total = (
        CreditLedgerEntry.objects
        .filter(driver_id=driver_id)
        .aggregate(total=Sum("credits_delta"))["total"]
    ) or 0

    consistent = cached == ledger_total
    if not consistent:
        logger.error(
            "Credit balance mismatch for driver %s: cached=%s ledger=%s",
            driver_id, cached, ledger_total,
        )
    return {
        "driver_id": driver_id,
        "cached_balance": cached,
        "ledger_balance": ledger_total,
        "difference": cached - ledger_total,
        "consistent": consistent,
    }
