from django.db import models
from django.db.models import Q
from django.conf import settings
from django.utils import timezone


class Ride(models.Model):
    """A trip offered by a driver with a fixed number of seats."""

    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    GENDER_PREFERENCE_CHOICES = [
        ('any', 'Any'),
        ('male', 'Male passengers only'),
        ('female', 'Female passengers only'),
    ]

    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='created_rides'
    )

    # Pickup location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')

    # Dropoff location
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True, default='')

    # Vehicle
    car_model = models.CharField(max_length=100, blank=True, default='')
    car_number = models.CharField(max_length=20, blank=True, default='')

    departure_time = models.DateTimeField()
    total_seats = models.PositiveSmallIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)

    # Preferences (informational only)
    smoking_allowed = models.BooleanField(default=False)
    pets_allowed = models.BooleanField(default=False)
    alcohol_allowed = models.BooleanField(default=False)
    gender_preference = models.CharField(max_length=10, choices=GENDER_PREFERENCE_CHOICES, default='any')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['departure_time', 'id']
        indexes = [
            models.Index(fields=['status', 'departure_time'], name='ride_status_departure_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(total_seats__gte=1), name='ride_total_seats_positive'),
            models.CheckConstraint(condition=Q(price__gte=0), name='ride_price_non_negative'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.creator} - {self.status}"

    @property
    def preferences(self):
        return {
            'smoking': self.smoking_allowed,
            'pets': self.pets_allowed,
            'alcohol': self.alcohol_allowed,
            'gender': self.gender_preference,
        }


class PassengerRequest(models.Model):
    """One rider's request for a seat on a ride."""

    STATUS_PENDING = 'pending'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_REJECTED = 'rejected'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

    ride = models.ForeignKey(
        Ride,
        on_delete=models.PROTECT,
        related_name='passengers'
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='ride_requests'
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    requested_at = models.DateTimeField(default=timezone.now)
    decided_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'passenger_requests'
        ordering = ['requested_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['ride', 'user'],
                condition=Q(status__in=['pending', 'confirmed']),
                name='unique_active_request_per_user'
            )
        ]

    def __str__(self):
        return f"Request #{self.id} - Ride {self.ride_id} <- {self.user} ({self.status})"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES
