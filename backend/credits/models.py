from django.conf import settings
from django.db import models


class CreditLedgerEntry(models.Model):
    """
    Append-only record of every change to a driver's credit balance.

    The sum of credits_delta for a driver equals DriverProfile.credit_balance,
    and balance_after is the balance right after this entry was applied.
    """

    ACTION_ADMIN_ADD = 'ADMIN_ADD'
    ACTION_TRIP_DEDUCTION = 'TRIP_DEDUCTION'
    ACTION_REFUND = 'REFUND'

    ACTION_CHOICES = [
        (ACTION_ADMIN_ADD, 'Admin Add'),
        (ACTION_TRIP_DEDUCTION, 'Trip Deduction'),
        (ACTION_REFUND, 'Refund'),
    ]

    driver = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.PROTECT,
        related_name='credit_entries'
    )
    trip = models.ForeignKey(
        'trips.Trip',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='credit_entries'
    )

    credits_delta = models.IntegerField()
    balance_after = models.IntegerField()
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)

    amount = models.PositiveIntegerField(null=True, blank=True)
    package_name = models.CharField(max_length=100, null=True, blank=True)
    notes = models.TextField(blank=True, default='')

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'credit_ledger'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['driver', '-created_at'], name='credit_driver_created_idx'),
        ]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Credit ledger entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Credit ledger entries cannot be deleted")

    def __str__(self):
        return f"{self.action} {self.credits_delta:+d} -> {self.balance_after} (driver {self.driver_id})"
