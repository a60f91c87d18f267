from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_RIDER = 'rider'
    ROLE_DRIVER = 'driver'
    ROLE_ADMIN = 'admin'

    ROLE_CHOICES = [
        (ROLE_RIDER, 'Rider'),
        (ROLE_DRIVER, 'Driver'),
        (ROLE_ADMIN, 'Admin'),
    ]

    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_RIDER)
    phone_number = models.CharField(max_length=15, blank=True)
    completed_trips = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    @property
    def is_admin_role(self) -> bool:
        return self.role == self.ROLE_ADMIN or self.is_staff

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
