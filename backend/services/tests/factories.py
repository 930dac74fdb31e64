"""Shared fixtures for the booking and matching tests."""

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from rides.models import Ride, PassengerRequest

User = get_user_model()


def make_user(username, role='rider', **extra):
    return User.objects.create_user(
        username=username,
        password='pass12345',
        role=role,
        phone_number=extra.pop('phone_number', '9000000000'),
        **extra
    )


def make_ride(creator, total_seats=3, departure_in=timedelta(days=1),
              pickup=(28.6139, 77.2090), dropoff=(28.5355, 77.3910), **extra):
    return Ride.objects.create(
        creator=creator,
        pickup_latitude=Decimal(str(pickup[0])),
        pickup_longitude=Decimal(str(pickup[1])),
        pickup_address=extra.pop('pickup_address', 'Connaught Place'),
        dropoff_latitude=Decimal(str(dropoff[0])),
        dropoff_longitude=Decimal(str(dropoff[1])),
        dropoff_address=extra.pop('dropoff_address', 'Noida Sector 18'),
        departure_time=timezone.now() + departure_in,
        total_seats=total_seats,
        price=extra.pop('price', Decimal('150.00')),
        **extra
    )


def add_request(ride, user, status=PassengerRequest.STATUS_PENDING):
    return PassengerRequest.objects.create(ride=ride, user=user, status=status)
