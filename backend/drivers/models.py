from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver-specific details, availability, credit balance and GPS integrity state"""
    STATUS_ONLINE = 'online'
    STATUS_OFFLINE = 'offline'
    STATUS_BUSY = 'busy'

    STATUS_CHOICES = [
        (STATUS_ONLINE, 'Online'),
        (STATUS_BUSY, 'Busy'),
        (STATUS_OFFLINE, 'Offline'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.CharField(max_length=30, default='city')

    # Status & location
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_OFFLINE)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    rating = models.FloatField(
        default=5.0,
        validators=[MinValueValidator(0.0), MaxValueValidator(5.0)],
    )

    # Pre-paid credit balance. Only the credit ledger service writes these.
    credit_balance = models.IntegerField(default=0)
    credit_expires_at = models.DateTimeField(null=True, blank=True)
    monthly_package = models.CharField(max_length=100, null=True, blank=True)

    # Consecutive implausible-speed location reports
    anomaly_count = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'driver_profiles'
        constraints = [
            models.CheckConstraint(
                condition=Q(credit_balance__gte=0),
                name='driver_credit_balance_non_negative',
            ),
        ]

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None

    def credits_expired(self, now=None) -> bool:
        now = now or timezone.now()
        return self.credit_expires_at is not None and self.credit_expires_at <= now

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"
