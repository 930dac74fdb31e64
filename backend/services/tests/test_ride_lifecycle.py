from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from rides.models import Ride, PassengerRequest
from services.booking import ride_lifecycle
from services.booking.events import RIDE_CANCELLED, RIDE_COMPLETED
from services.booking.exceptions import (
    NotRideOwner,
    RideNotRequestable,
    InvalidTransition,
    RideNotDeparted,
)
from .factories import make_user, make_ride, add_request

PENDING = PassengerRequest.STATUS_PENDING
CONFIRMED = PassengerRequest.STATUS_CONFIRMED


class RequestabilityTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.rider = make_user('rider')

	def assertReason(self, ride, reason):
		with self.assertRaises(RideNotRequestable) as ctx:
			ride_lifecycle.ensure_requestable(ride)
		self.assertEqual(ctx.exception.reason, reason)

	def test_active_future_ride_with_seats_is_requestable(self):
		ride = make_ride(self.driver)
		self.assertTrue(ride_lifecycle.is_requestable(ride))
		ride_lifecycle.ensure_requestable(ride)

	def test_each_refusal_has_its_own_reason(self):
		cancelled = make_ride(self.driver, status=Ride.STATUS_CANCELLED)
		completed = make_ride(self.driver, status=Ride.STATUS_COMPLETED)
		departed = make_ride(self.driver, departure_in=timedelta(hours=-1))
		full = make_ride(self.driver, total_seats=1)
		add_request(full, self.rider, CONFIRMED)

		self.assertReason(cancelled, RideNotRequestable.REASON_CANCELLED)
		self.assertReason(completed, RideNotRequestable.REASON_COMPLETED)
		self.assertReason(departed, RideNotRequestable.REASON_DEPARTED)
		self.assertReason(full, RideNotRequestable.REASON_FULL)


class RideCompletionTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.riders = [make_user(f'rider_{i}') for i in range(3)]
		self.ride = make_ride(self.driver, departure_in=timedelta(hours=-2))

	def test_complete_rejects_remaining_pending_requests(self):
		confirmed = add_request(self.ride, self.riders[0], CONFIRMED)
		pending = add_request(self.ride, self.riders[1], PENDING)

		events = ride_lifecycle.complete(self.ride, self.driver.id)

		self.ride.refresh_from_db()
		confirmed.refresh_from_db()
		pending.refresh_from_db()
		self.assertEqual(self.ride.status, Ride.STATUS_COMPLETED)
		self.assertIsNotNone(self.ride.completed_at)
		self.assertEqual(confirmed.status, CONFIRMED)
		self.assertEqual(pending.status, PassengerRequest.STATUS_REJECTED)
		self.assertIsNotNone(pending.decided_at)

		self.assertEqual(events[0].event_type, RIDE_COMPLETED)
		self.assertCountEqual(events[0].recipient_ids, [self.riders[0].id, self.riders[1].id])

	def test_complete_counts_trip_for_driver_and_confirmed_riders(self):
		add_request(self.ride, self.riders[0], CONFIRMED)
		add_request(self.ride, self.riders[1], PENDING)

		ride_lifecycle.complete(self.ride, self.driver.id)

		for user, expected in ((self.driver, 1), (self.riders[0], 1), (self.riders[1], 0)):
			user.refresh_from_db()
			self.assertEqual(user.completed_rides, expected)

	def test_only_creator_completes(self):
		with self.assertRaises(NotRideOwner):
			ride_lifecycle.complete(self.ride, self.riders[0].id)

	def test_cannot_complete_before_departure_unless_forced(self):
		future = make_ride(self.driver)

		with self.assertRaises(RideNotDeparted):
			ride_lifecycle.complete(future, self.driver.id)

		ride_lifecycle.complete(future, self.driver.id, force=True)
		self.assertEqual(future.status, Ride.STATUS_COMPLETED)

	def test_terminal_ride_cannot_be_completed_again(self):
		ride_lifecycle.complete(self.ride, self.driver.id)

		with self.assertRaises(InvalidTransition):
			ride_lifecycle.complete(self.ride, self.driver.id)


class RideCancellationTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.riders = [make_user(f'rider_{i}') for i in range(3)]
		self.ride = make_ride(self.driver, total_seats=3)

	def test_cancel_cascades_to_pending_and_confirmed(self):
		first = add_request(self.ride, self.riders[0], CONFIRMED)
		second = add_request(self.ride, self.riders[1], CONFIRMED)
		third = add_request(self.ride, self.riders[2], PENDING)

		events = ride_lifecycle.cancel(self.ride, self.driver.id)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, Ride.STATUS_CANCELLED)
		for request in (first, second, third):
			request.refresh_from_db()
			self.assertEqual(request.status, PassengerRequest.STATUS_CANCELLED)
			self.assertIsNotNone(request.cancelled_at)
		self.assertFalse(self.ride.passengers.filter(status=CONFIRMED).exists())

		self.assertEqual(events[0].event_type, RIDE_CANCELLED)
		self.assertCountEqual(events[0].recipient_ids, [r.id for r in self.riders])

	def test_rejected_requests_are_untouched(self):
		rejected = add_request(self.ride, self.riders[0], PassengerRequest.STATUS_REJECTED)

		ride_lifecycle.cancel(self.ride, self.driver.id)

		rejected.refresh_from_db()
		self.assertEqual(rejected.status, PassengerRequest.STATUS_REJECTED)

	def test_only_creator_cancels(self):
		with self.assertRaises(NotRideOwner):
			ride_lifecycle.cancel(self.ride, self.riders[0].id)

	def test_cancelled_ride_cannot_be_cancelled_again(self):
		ride_lifecycle.cancel(self.ride, self.driver.id, now=timezone.now())

		with self.assertRaises(InvalidTransition):
			ride_lifecycle.cancel(self.ride, self.driver.id)
