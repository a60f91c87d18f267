from dataclasses import dataclass

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q


class Trip(models.Model):
    """A rider's trip request and its lifecycle"""

    STATUS_REQUESTED = 'REQUESTED'
    STATUS_ACCEPTED = 'ACCEPTED'
    STATUS_ARRIVED = 'ARRIVED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_REQUESTED, 'Requested'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_ARRIVED, 'Driver Arrived'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ACTIVE_STATUSES = (STATUS_REQUESTED, STATUS_ACCEPTED, STATUS_ARRIVED, STATUS_IN_PROGRESS)

    PAYMENT_CASH = 'CASH'
    PAYMENT_WALLET = 'WALLET'
    PAYMENT_METHOD_CHOICES = [
        (PAYMENT_CASH, 'Cash'),
        (PAYMENT_WALLET, 'Wallet'),
    ]

    PAYMENT_PENDING = 'PENDING'
    PAYMENT_PAID = 'PAID'
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_PAID, 'Paid'),
    ]

    # Foreign keys
    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='trips'
    )

    driver = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='trips'
    )

    # Pickup / drop location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    drop_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    drop_longitude = models.DecimalField(max_digits=9, decimal_places=6)

    # Pricing (integer currency units)
    fare = models.PositiveIntegerField()
    distance_km = models.FloatField(default=0)
    duration_min = models.FloatField(default=0)
    service_type = models.CharField(max_length=30, default='city')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_REQUESTED)

    # Set on acceptance; commission + earnings == fare
    platform_commission = models.PositiveIntegerField(null=True, blank=True)
    driver_earnings = models.PositiveIntegerField(null=True, blank=True)

    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, default=PAYMENT_WALLET)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING)

    # Scheduling
    scheduled_for = models.DateTimeField(null=True, blank=True)
    scheduled_dispatched_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'trips'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['status', 'scheduled_for'], name='trip_status_sched_idx'),
        ]

    @property
    def is_terminal(self):
        return self.status in (self.STATUS_COMPLETED, self.STATUS_CANCELLED)

    def __str__(self):
        return f"Trip #{self.id} - {self.rider} - {self.status}"


class TripOffer(models.Model):
    """One ranked driver's offer for a trip within a dispatch round."""

    STATUS_PENDING = 'PENDING'
    STATUS_ACCEPTED = 'ACCEPTED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    trip = models.ForeignKey(
        Trip,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    driver = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.CASCADE,
        related_name='offers'
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    score = models.FloatField(default=0)
    eta = models.FloatField(default=0)  # minutes
    distance_km = models.FloatField(default=0)

    offered_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'trip_offers'
        ordering = ['-score', 'eta', 'driver']
        constraints = [
            models.UniqueConstraint(
                fields=['trip', 'driver'],
                name='unique_trip_driver'
            ),
            models.UniqueConstraint(
                fields=['trip'],
                condition=Q(status='ACCEPTED'),
                name='one_accepted_offer_per_trip'
            ),
        ]

    def __str__(self):
        return f"Offer #{self.id} - Trip {self.trip_id} -> Driver {self.driver_id}"


@dataclass(frozen=True)
class DispatchSettings:
    """Immutable copy of the dispatch configuration used for one round."""
    weight_eta: float = 0.5
    weight_rating: float = 0.3
    weight_acceptance: float = 0.2
    service_match_bonus: float = 0.1
    offer_timeout: int = 30
    max_offers: int = 3
    search_radius_km: float = 10.0


class DispatchConfig(models.Model):
    """Singleton row holding the admin-tunable dispatch parameters."""

    SINGLETON_ID = 1

    weight_eta = models.FloatField(default=0.5, validators=[MinValueValidator(0.0), MaxValueValidator(1.0)])
    weight_rating = models.FloatField(default=0.3, validators=[MinValueValidator(0.0), MaxValueValidator(1.0)])
    weight_acceptance = models.FloatField(default=0.2, validators=[MinValueValidator(0.0), MaxValueValidator(1.0)])
    service_match_bonus = models.FloatField(default=0.1, validators=[MinValueValidator(0.0), MaxValueValidator(1.0)])
    offer_timeout = models.PositiveIntegerField(default=30, validators=[MinValueValidator(10), MaxValueValidator(120)])
    max_offers = models.PositiveIntegerField(default=3, validators=[MinValueValidator(1), MaxValueValidator(10)])
    search_radius_km = models.FloatField(default=10.0, validators=[MinValueValidator(1.0), MaxValueValidator(50.0)])

    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    class Meta:
        db_table = 'dispatch_config'

    def save(self, *args, **kwargs):
        self.pk = self.SINGLETON_ID
        self.full_clean(validate_unique=False)
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        config, _ = cls.objects.get_or_create(pk=cls.SINGLETON_ID)
        return config

    def snapshot(self) -> DispatchSettings:
        return DispatchSettings(
            weight_eta=self.weight_eta,
            weight_rating=self.weight_rating,
            weight_acceptance=self.weight_acceptance,
            service_match_bonus=self.service_match_bonus,
            offer_timeout=self.offer_timeout,
            max_offers=self.max_offers,
            search_radius_km=self.search_radius_km,
        )

    def __str__(self):
        return "Dispatch configuration"
