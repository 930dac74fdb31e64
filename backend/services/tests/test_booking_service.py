from datetime import timedelta
from decimal import Decimal
import threading
from unittest import skipUnless
from unittest.mock import patch

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from rides.models import Ride, PassengerRequest
from services import booking
from services.booking.events import RIDE_REQUESTED, REQUEST_DECIDED, RIDE_CANCELLED
from services.booking.exceptions import (
    InvalidRide,
    RideNotFound,
    SelfRequest,
    DuplicateRequest,
    RideNotRequestable,
    NoSeatsAvailable,
    NotRideOwner,
    RequestNotFound,
    RequestNotPending,
    InvalidTransition,
)
from services.matching import GeoPoint
from .factories import make_user, make_ride, add_request

PENDING = PassengerRequest.STATUS_PENDING
CONFIRMED = PassengerRequest.STATUS_CONFIRMED
REJECTED = PassengerRequest.STATUS_REJECTED
CANCELLED = PassengerRequest.STATUS_CANCELLED


class CreateRideTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.pickup = GeoPoint(28.6139, 77.2090, 'Connaught Place')
		self.dropoff = GeoPoint(28.5355, 77.3910, 'Noida Sector 18')
		self.departure = timezone.now() + timedelta(hours=3)

	def test_create_ride_starts_active_with_preferences(self):
		result = booking.create_ride(
			self.driver, self.pickup, self.dropoff, self.departure, 3, '120.50',
			preferences={'pets_allowed': True, 'gender_preference': 'female', 'car_model': 'Swift'},
		)

		ride = Ride.objects.get(id=result.ride.id)
		self.assertEqual(ride.status, Ride.STATUS_ACTIVE)
		self.assertEqual(ride.creator, self.driver)
		self.assertEqual(ride.total_seats, 3)
		self.assertEqual(ride.price, Decimal('120.50'))
		self.assertEqual(ride.pickup_address, 'Connaught Place')
		self.assertTrue(ride.pets_allowed)
		self.assertFalse(ride.smoking_allowed)
		self.assertEqual(ride.preferences['gender'], 'female')
		self.assertEqual(ride.car_model, 'Swift')

	def test_create_ride_validation(self):
		cases = [
			dict(total_seats=0, price=10, departure_time=self.departure),
			dict(total_seats=2, price=-1, departure_time=self.departure),
			dict(total_seats=2, price=10, departure_time=timezone.now() - timedelta(minutes=1)),
			dict(total_seats='two', price=10, departure_time=self.departure),
			dict(total_seats=None, price=10, departure_time=self.departure),
			dict(total_seats=2, price='abc', departure_time=self.departure),
			dict(total_seats=2, price='NaN', departure_time=self.departure),
		]
		for case in cases:
			with self.subTest(case=case):
				with self.assertRaises(InvalidRide):
					booking.create_ride(self.driver, self.pickup, self.dropoff, **case)

		self.assertFalse(Ride.objects.exists())

	def test_create_ride_rejects_out_of_range_coordinates(self):
		with self.assertRaises(InvalidRide):
			booking.create_ride(self.driver, GeoPoint(95, 0), self.dropoff, self.departure, 2, 10)


class RequestRideTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.rider = make_user('rider')
		self.ride = make_ride(self.driver, total_seats=2)

	def test_request_creates_single_pending_request(self):
		result = booking.request_ride(self.rider, self.ride.id)

		passengers = list(self.ride.passengers.all())
		self.assertEqual(len(passengers), 1)
		self.assertEqual(passengers[0].id, result.passenger_request.id)
		self.assertEqual(passengers[0].status, PENDING)
		self.assertIsNone(passengers[0].decided_at)
		self.assertEqual(result.events[0].event_type, RIDE_REQUESTED)
		self.assertEqual(result.events[0].recipient_ids, [self.driver.id])

	def test_self_request_always_fails(self):
		with self.assertRaises(SelfRequest):
			booking.request_ride(self.driver, self.ride.id)

		full = make_ride(self.driver, total_seats=1)
		add_request(full, self.rider, CONFIRMED)
		with self.assertRaises(SelfRequest):
			booking.request_ride(self.driver, full.id)

	def test_duplicate_active_request_fails(self):
		booking.request_ride(self.rider, self.ride.id)

		with self.assertRaises(DuplicateRequest):
			booking.request_ride(self.rider, self.ride.id)
		self.assertEqual(self.ride.passengers.count(), 1)

	def test_can_request_again_after_cancelling(self):
		booking.request_ride(self.rider, self.ride.id)
		booking.cancel_request(self.rider.id, self.ride.id)

		result = booking.request_ride(self.rider, self.ride.id)

		self.assertEqual(result.passenger_request.status, PENDING)
		self.assertEqual(self.ride.passengers.count(), 2)

	def test_request_on_cancelled_ride(self):
		booking.cancel_ride(self.driver.id, self.ride.id)

		with self.assertRaises(RideNotRequestable) as ctx:
			booking.request_ride(self.rider, self.ride.id)
		self.assertEqual(ctx.exception.reason, RideNotRequestable.REASON_CANCELLED)

	def test_request_on_departed_ride(self):
		ride = make_ride(self.driver, departure_in=timedelta(minutes=-5))

		with self.assertRaises(RideNotRequestable) as ctx:
			booking.request_ride(self.rider, ride.id)
		self.assertEqual(ctx.exception.reason, RideNotRequestable.REASON_DEPARTED)

	def test_unknown_ride(self):
		with self.assertRaises(RideNotFound):
			booking.request_ride(self.rider, 999999)


class DecideRequestTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.alice = make_user('alice')
		self.bob = make_user('bob')
		self.ride = make_ride(self.driver, total_seats=1)

	def test_last_seat_goes_to_first_approval(self):
		booking.request_ride(self.alice, self.ride.id)
		booking.request_ride(self.bob, self.ride.id)

		booking.decide_request(self.driver.id, self.ride.id, self.alice.id, CONFIRMED)
		with self.assertRaises(NoSeatsAvailable):
			booking.decide_request(self.driver.id, self.ride.id, self.bob.id, CONFIRMED)

		statuses = dict(self.ride.passengers.values_list('user_id', 'status'))
		self.assertEqual(statuses[self.alice.id], CONFIRMED)
		self.assertEqual(statuses[self.bob.id], PENDING)

		# the caller may still reject the loser explicitly
		booking.decide_request(self.driver.id, self.ride.id, self.bob.id, REJECTED)
		self.assertEqual(self.ride.passengers.get(user=self.bob).status, REJECTED)

	def test_only_owner_decides(self):
		booking.request_ride(self.alice, self.ride.id)

		with self.assertRaises(NotRideOwner):
			booking.decide_request(self.bob.id, self.ride.id, self.alice.id, CONFIRMED)

	def test_missing_and_decided_requests(self):
		with self.assertRaises(RequestNotFound):
			booking.decide_request(self.driver.id, self.ride.id, self.alice.id, CONFIRMED)

		booking.request_ride(self.alice, self.ride.id)
		booking.decide_request(self.driver.id, self.ride.id, self.alice.id, REJECTED)

		with self.assertRaises(RequestNotPending):
			booking.decide_request(self.driver.id, self.ride.id, self.alice.id, CONFIRMED)

	def test_unknown_decision(self):
		booking.request_ride(self.alice, self.ride.id)

		with self.assertRaises(InvalidTransition):
			booking.decide_request(self.driver.id, self.ride.id, self.alice.id, CANCELLED)

	def test_cannot_confirm_after_departure(self):
		request = add_request(self.ride, self.alice)
		Ride.objects.filter(id=self.ride.id).update(departure_time=timezone.now() - timedelta(minutes=1))

		with self.assertRaises(RideNotRequestable):
			booking.decide_request(self.driver.id, self.ride.id, self.alice.id, CONFIRMED)

		request.refresh_from_db()
		self.assertEqual(request.status, PENDING)


class CancelRequestTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.rider = make_user('rider')
		self.ride = make_ride(self.driver, total_seats=1)

	def test_cancel_twice_fails_without_changing_state(self):
		booking.request_ride(self.rider, self.ride.id)
		first = booking.cancel_request(self.rider.id, self.ride.id).passenger_request
		cancelled_at = first.cancelled_at

		with self.assertRaises(InvalidTransition):
			booking.cancel_request(self.rider.id, self.ride.id)

		first.refresh_from_db()
		self.assertEqual(first.status, CANCELLED)
		self.assertEqual(first.cancelled_at, cancelled_at)

	def test_cancelling_confirmed_seat_frees_it(self):
		other = make_user('other')
		booking.request_ride(self.rider, self.ride.id)
		booking.decide_request(self.driver.id, self.ride.id, self.rider.id, CONFIRMED)

		with self.assertRaises(RideNotRequestable):
			booking.request_ride(other, self.ride.id)

		booking.cancel_request(self.rider.id, self.ride.id)
		result = booking.request_ride(other, self.ride.id)
		self.assertEqual(result.passenger_request.status, PENDING)

	def test_cancel_without_request(self):
		with self.assertRaises(RequestNotFound):
			booking.cancel_request(self.rider.id, self.ride.id)

	def test_driver_removes_confirmed_passenger(self):
		booking.request_ride(self.rider, self.ride.id)
		booking.decide_request(self.driver.id, self.ride.id, self.rider.id, CONFIRMED)

		result = booking.remove_passenger(self.driver.id, self.ride.id, self.rider.id)

		self.assertEqual(result.passenger_request.status, CANCELLED)
		self.assertEqual(result.events[0].recipient_ids, [self.rider.id])

	def test_driver_cannot_remove_pending_passenger(self):
		booking.request_ride(self.rider, self.ride.id)

		with self.assertRaises(InvalidTransition):
			booking.remove_passenger(self.driver.id, self.ride.id, self.rider.id)


class RideCommandTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.alice = make_user('alice')
		self.bob = make_user('bob')
		self.ride = make_ride(self.driver, total_seats=2)

	def test_cancel_ride_with_two_confirmed_passengers(self):
		for rider in (self.alice, self.bob):
			booking.request_ride(rider, self.ride.id)
			booking.decide_request(self.driver.id, self.ride.id, rider.id, CONFIRMED)

		result = booking.cancel_ride(self.driver.id, self.ride.id)

		self.assertEqual(result.ride.status, Ride.STATUS_CANCELLED)
		self.assertEqual(
			set(self.ride.passengers.values_list('status', flat=True)),
			{CANCELLED},
		)

	def test_ride_commands_require_owner(self):
		with self.assertRaises(NotRideOwner):
			booking.cancel_ride(self.alice.id, self.ride.id)
		with self.assertRaises(NotRideOwner):
			booking.complete_ride(self.alice.id, self.ride.id, force=True)

	def test_complete_ride_after_departure(self):
		booking.request_ride(self.alice, self.ride.id)
		departed = timezone.now() + timedelta(days=2)

		result = booking.complete_ride(self.driver.id, self.ride.id, now=departed)

		self.assertEqual(result.ride.status, Ride.STATUS_COMPLETED)
		self.assertEqual(self.ride.passengers.get(user=self.alice).status, REJECTED)

	def test_expire_departed_requests(self):
		add_request(self.ride, self.alice)
		add_request(self.ride, self.bob, CONFIRMED)
		Ride.objects.filter(id=self.ride.id).update(departure_time=timezone.now() - timedelta(hours=1))

		self.assertEqual(booking.expire_departed_requests(), 1)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, Ride.STATUS_ACTIVE)
		self.assertEqual(self.ride.passengers.get(user=self.alice).status, REJECTED)
		self.assertEqual(self.ride.passengers.get(user=self.bob).status, CONFIRMED)


class EventDispatchTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.rider = make_user('rider')
		self.ride = make_ride(self.driver, total_seats=1)

	@patch('rides.notifications.notify_user_event', return_value=True)
	def test_events_are_sent_after_commit(self, mock_notify):
		with self.captureOnCommitCallbacks(execute=False) as callbacks:
			booking.request_ride(self.rider, self.ride.id)

		mock_notify.assert_not_called()
		self.assertEqual(len(callbacks), 1)

		callbacks[0]()
		mock_notify.assert_called_once()
		user_id, payload = mock_notify.call_args[0]
		self.assertEqual(user_id, self.driver.id)
		self.assertEqual(payload['event_type'], RIDE_REQUESTED)
		self.assertEqual(payload['ride_id'], self.ride.id)

	@patch('rides.notifications.notify_user_event', return_value=True)
	def test_decision_notifies_requester(self, mock_notify):
		booking.request_ride(self.rider, self.ride.id)

		with self.captureOnCommitCallbacks(execute=True):
			booking.decide_request(self.driver.id, self.ride.id, self.rider.id, CONFIRMED)

		user_id, payload = mock_notify.call_args[0]
		self.assertEqual(user_id, self.rider.id)
		self.assertEqual(payload['event_type'], REQUEST_DECIDED)
		self.assertEqual(payload['status'], CONFIRMED)

	@patch('rides.notifications.notify_user_event', return_value=True)
	def test_ride_cancellation_notifies_every_passenger(self, mock_notify):
		add_request(self.ride, self.rider, CONFIRMED)

		with self.captureOnCommitCallbacks(execute=True):
			booking.cancel_ride(self.driver.id, self.ride.id)

		self.assertEqual(mock_notify.call_count, 1)
		user_id, payload = mock_notify.call_args[0]
		self.assertEqual(user_id, self.rider.id)
		self.assertEqual(payload['event_type'], RIDE_CANCELLED)

	@patch('rides.notifications.notify_user_event', return_value=True)
	def test_failed_command_publishes_nothing(self, mock_notify):
		with self.captureOnCommitCallbacks(execute=True) as callbacks:
			with self.assertRaises(SelfRequest):
				booking.request_ride(self.driver, self.ride.id)

		self.assertEqual(callbacks, [])
		mock_notify.assert_not_called()


def _writes_are_serialized():
	if connection.features.has_select_for_update:
		return True
	# SQLite: IMMEDIATE transactions on a database file shared by the threads
	return (
		connection.vendor == 'sqlite'
		and connection.settings_dict.get('OPTIONS', {}).get('transaction_mode') == 'IMMEDIATE'
		and connection.settings_dict.get('TEST', {}).get('NAME') not in (None, '', ':memory:')
	)


@skipUnless(_writes_are_serialized(), 'database cannot serialize concurrent booking writes')
class ConcurrentApprovalTests(TransactionTestCase):
	"""Approvals racing for the last seat from separate connections."""

	def setUp(self):
		self.driver = make_user('driver', role='driver')

	def _approve(self, ride, rider, barrier, outcomes):
		try:
			barrier.wait()
			booking.decide_request(self.driver.id, ride.id, rider.id, CONFIRMED)
			outcomes.append('confirmed')
		except NoSeatsAvailable:
			outcomes.append('full')
		finally:
			connection.close()

	def _race(self, total_seats, rider_count):
		ride = make_ride(self.driver, total_seats=total_seats)
		riders = [make_user(f'rider{i}') for i in range(rider_count)]
		for rider in riders:
			add_request(ride, rider)

		barrier = threading.Barrier(rider_count)
		outcomes = []
		threads = [
			threading.Thread(target=self._approve, args=(ride, rider, barrier, outcomes))
			for rider in riders
		]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()
		return ride, outcomes

	def test_only_one_approval_wins_the_last_seat(self):
		ride, outcomes = self._race(total_seats=1, rider_count=2)

		self.assertEqual(sorted(outcomes), ['confirmed', 'full'])
		self.assertEqual(ride.passengers.filter(status=CONFIRMED).count(), 1)
		self.assertEqual(ride.passengers.filter(status=PENDING).count(), 1)

	def test_confirmations_never_exceed_seats(self):
		ride, outcomes = self._race(total_seats=2, rider_count=4)

		self.assertEqual(sorted(outcomes), ['confirmed'] * 2 + ['full'] * 2)
		self.assertEqual(ride.passengers.filter(status=CONFIRMED).count(), 2)
