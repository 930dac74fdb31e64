from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.conf import settings
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from services.booking.events import RIDE_REQUESTED
from services.tests.factories import make_user, make_ride, add_request
from .models import Ride, PassengerRequest
from .tasks import expire_departed_requests_task


def _location(lat, lng, address=''):
	return {'type': 'Point', 'coordinates': [lng, lat], 'address': address}


class RideApiTestCase(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.driver = make_user('driver', role='driver')
		self.rider = make_user('rider')
		self.other_rider = make_user('other_rider')

	def as_user(self, user):
		self.client.force_authenticate(user=user)


class CreateRideApiTests(RideApiTestCase):
	def _payload(self, **overrides):
		payload = {
			'pickupLocation': _location(28.6139, 77.2090, 'Connaught Place'),
			'dropoffLocation': _location(28.5355, 77.3910, 'Noida Sector 18'),
			'time': (timezone.now() + timedelta(hours=4)).isoformat(),
			'seatsAvailable': 3,
			'price': '120.00',
			'petsAllowed': True,
			'carModel': 'Swift Dzire',
			'carNumber': 'DL-01-AB-1234',
		}
		payload.update(overrides)
		return payload

	def test_driver_creates_ride(self):
		self.as_user(self.driver)

		response = self.client.post('/api/rides/createRide', self._payload(), format='json')

		self.assertEqual(response.status_code, 201)
		ride = response.data['ride']
		self.assertEqual(ride['status'], Ride.STATUS_ACTIVE)
		self.assertEqual(ride['total_seats'], 3)
		self.assertEqual(ride['seats']['available'], 3)
		self.assertEqual(ride['pickup']['coordinates'], [77.209, 28.6139])
		self.assertTrue(ride['preferences']['pets'])
		self.assertEqual(ride['car_model'], 'Swift Dzire')
		self.assertEqual(ride['passengers'], [])

	def test_rider_cannot_create_ride(self):
		self.as_user(self.rider)

		response = self.client.post('/api/rides/createRide', self._payload(), format='json')

		self.assertEqual(response.status_code, 403)
		self.assertFalse(Ride.objects.exists())

	def test_invalid_ride_is_rejected(self):
		self.as_user(self.driver)

		response = self.client.post('/api/rides/createRide', self._payload(seatsAvailable=0), format='json')

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['code'], 'invalid_ride')

	def test_bad_coordinates_fail_validation(self):
		self.as_user(self.driver)
		payload = self._payload(pickupLocation={'type': 'Point', 'coordinates': [200, 10]})

		response = self.client.post('/api/rides/createRide', payload, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertIn('pickupLocation', response.data)

	def test_requires_authentication(self):
		response = self.client.post('/api/rides/createRide', self._payload(), format='json')
		self.assertEqual(response.status_code, 401)


class BookingFlowApiTests(RideApiTestCase):
	def setUp(self):
		super().setUp()
		self.ride = make_ride(self.driver, total_seats=1)

	def test_request_then_approve(self):
		self.as_user(self.rider)
		response = self.client.put(f'/api/rides/{self.ride.id}/request')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['request']['status'], PassengerRequest.STATUS_PENDING)
		self.assertEqual(response.data['ride']['seats']['my_request_status'], PassengerRequest.STATUS_PENDING)
		self.assertIsNone(response.data['ride']['passengers'])

		self.as_user(self.driver)
		response = self.client.put(
			f'/api/rides/{self.ride.id}/approval',
			{'passengerId': self.rider.id, 'status': 'confirmed'},
			format='json',
		)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['request']['status'], PassengerRequest.STATUS_CONFIRMED)
		self.assertEqual(response.data['ride']['seats']['available'], 0)
		self.assertEqual(len(response.data['ride']['passengers']), 1)

	def test_second_approval_conflicts_when_full(self):
		add_request(self.ride, self.rider)
		add_request(self.ride, self.other_rider)
		self.as_user(self.driver)

		first = self.client.put(f'/api/rides/{self.ride.id}/approval',
			{'passengerId': self.rider.id, 'status': 'confirmed'}, format='json')
		second = self.client.put(f'/api/rides/{self.ride.id}/approval',
			{'passengerId': self.other_rider.id, 'status': 'confirmed'}, format='json')

		self.assertEqual(first.status_code, 200)
		self.assertEqual(second.status_code, 409)
		self.assertEqual(second.data['code'], 'no_seats_available')

	def test_duplicate_request_conflicts(self):
		self.as_user(self.rider)
		self.client.put(f'/api/rides/{self.ride.id}/request')

		response = self.client.put(f'/api/rides/{self.ride.id}/request')

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['code'], 'duplicate_request')

	def test_full_ride_reports_reason(self):
		add_request(self.ride, self.other_rider, PassengerRequest.STATUS_CONFIRMED)
		self.as_user(self.rider)

		response = self.client.put(f'/api/rides/{self.ride.id}/request')

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['code'], 'ride_not_requestable')
		self.assertEqual(response.data['reason'], 'full')

	def test_unknown_ride_is_404(self):
		self.as_user(self.rider)

		response = self.client.put('/api/rides/999999/request')

		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.data['code'], 'ride_not_found')

	def test_driver_role_cannot_request(self):
		other_driver = make_user('other_driver', role='driver')
		self.as_user(other_driver)

		response = self.client.put(f'/api/rides/{self.ride.id}/request')

		self.assertEqual(response.status_code, 403)

	def test_non_owner_cannot_approve(self):
		add_request(self.ride, self.rider)
		self.as_user(make_user('other_driver', role='driver'))

		response = self.client.put(f'/api/rides/{self.ride.id}/approval',
			{'passengerId': self.rider.id, 'status': 'confirmed'}, format='json')

		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.data['code'], 'not_ride_owner')

	def test_approval_status_must_be_a_decision(self):
		add_request(self.ride, self.rider)
		self.as_user(self.driver)

		response = self.client.put(f'/api/rides/{self.ride.id}/approval',
			{'passengerId': self.rider.id, 'status': 'cancelled'}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertIn('status', response.data)

	def test_cancel_request_twice(self):
		add_request(self.ride, self.rider)
		self.as_user(self.rider)

		first = self.client.put(f'/api/rides/{self.ride.id}/cancelRequest')
		second = self.client.put(f'/api/rides/{self.ride.id}/cancelRequest')

		self.assertEqual(first.status_code, 200)
		self.assertEqual(first.data['request']['status'], PassengerRequest.STATUS_CANCELLED)
		self.assertEqual(second.status_code, 409)
		self.assertEqual(second.data['code'], 'invalid_transition')

	def test_remove_passenger(self):
		add_request(self.ride, self.rider, PassengerRequest.STATUS_CONFIRMED)
		self.as_user(self.driver)

		missing = self.client.put(f'/api/rides/{self.ride.id}/removePassenger', {}, format='json')
		response = self.client.put(f'/api/rides/{self.ride.id}/removePassenger',
			{'passengerId': self.rider.id}, format='json')

		self.assertEqual(missing.status_code, 400)
		self.assertIn('passengerId', missing.data)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['seats']['available'], 1)

	def test_remove_passenger_rejects_non_numeric_id(self):
		add_request(self.ride, self.rider, PassengerRequest.STATUS_CONFIRMED)
		self.as_user(self.driver)

		response = self.client.put(f'/api/rides/{self.ride.id}/removePassenger',
			{'passengerId': 'abc'}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertIn('passengerId', response.data)
		self.assertEqual(
			self.ride.passengers.get(user=self.rider).status,
			PassengerRequest.STATUS_CONFIRMED,
		)

	def test_approval_rejects_non_numeric_id(self):
		add_request(self.ride, self.rider)
		self.as_user(self.driver)

		response = self.client.put(f'/api/rides/{self.ride.id}/approval',
			{'passengerId': 'abc', 'status': 'confirmed'}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertIn('passengerId', response.data)

	def test_cancel_ride(self):
		add_request(self.ride, self.rider, PassengerRequest.STATUS_CONFIRMED)
		self.as_user(self.driver)

		response = self.client.put(f'/api/rides/{self.ride.id}/cancel')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], Ride.STATUS_CANCELLED)
		self.assertEqual(
			self.ride.passengers.get(user=self.rider).status,
			PassengerRequest.STATUS_CANCELLED,
		)

	def test_complete_ride_before_departure(self):
		self.as_user(self.driver)

		early = self.client.put(f'/api/rides/{self.ride.id}/complete', {}, format='json')
		forced = self.client.put(f'/api/rides/{self.ride.id}/complete', {'force': True}, format='json')

		self.assertEqual(early.status_code, 409)
		self.assertEqual(early.data['code'], 'ride_not_departed')
		self.assertEqual(forced.status_code, 200)
		self.assertEqual(forced.data['ride']['status'], Ride.STATUS_COMPLETED)

	@patch('rides.notifications.notify_user_event', return_value=True)
	def test_request_notifies_driver_after_commit(self, mock_notify):
		self.as_user(self.rider)

		with self.captureOnCommitCallbacks(execute=True):
			self.client.put(f'/api/rides/{self.ride.id}/request')

		user_id, payload = mock_notify.call_args[0]
		self.assertEqual(user_id, self.driver.id)
		self.assertEqual(payload['event_type'], RIDE_REQUESTED)


class BrowseApiTests(RideApiTestCase):
	def test_get_rides_lists_open_rides_with_filters(self):
		cheap = make_ride(self.driver, price='80.00', pickup_address='Saket')
		make_ride(self.driver, price='300.00', pickup_address='Dwarka')
		make_ride(self.driver, status=Ride.STATUS_CANCELLED)
		self.as_user(self.rider)

		everything = self.client.get('/api/rides/getRides')
		cheap_only = self.client.get('/api/rides/getRides', {'priceMax': '100'})
		by_text = self.client.get('/api/rides/getRides', {'search': 'saket'})

		self.assertEqual(everything.data['count'], 2)
		self.assertEqual([r['id'] for r in cheap_only.data['rides']], [cheap.id])
		self.assertEqual([r['id'] for r in by_text.data['rides']], [cheap.id])

	def test_get_rides_seat_filter_counts_confirmed_only(self):
		ride = make_ride(self.driver, total_seats=2)
		add_request(ride, self.rider, PassengerRequest.STATUS_CONFIRMED)
		add_request(ride, self.other_rider)
		self.as_user(self.other_rider)

		one = self.client.get('/api/rides/getRides', {'seats': 1})
		two = self.client.get('/api/rides/getRides', {'seats': 2})

		self.assertEqual(one.data['count'], 1)
		self.assertEqual(one.data['rides'][0]['seats'], {
			'available': 1,
			'confirmed': 1,
			'pending': 1,
			'my_request_status': PassengerRequest.STATUS_PENDING,
		})
		self.assertEqual(two.data['count'], 0)

	def test_best_rides(self):
		near = make_ride(self.driver, pickup=(0, 0), dropoff=(10, 0))
		make_ride(self.driver, pickup=(1, 0), dropoff=(10, 0))
		self.as_user(self.rider)

		response = self.client.get('/api/rides/bestRides', {
			'pickupLat': 0.01, 'pickupLng': 0,
			'dropoffLat': 10.01, 'dropoffLng': 0,
			'maxDistance': 2000,
		})

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		match = response.data['rides'][0]
		self.assertEqual(match['id'], near.id)
		self.assertTrue(2210 <= match['match']['total_distance'] <= 2240)

	def test_best_rides_validates_query(self):
		self.as_user(self.rider)

		missing = self.client.get('/api/rides/bestRides', {'pickupLat': 0})
		too_far = self.client.get('/api/rides/bestRides', {
			'pickupLat': 0, 'pickupLng': 0, 'dropoffLat': 1, 'dropoffLng': 1,
			'maxDistance': 10 ** 9,
		})

		self.assertEqual(missing.status_code, 400)
		self.assertEqual(too_far.status_code, 400)
		self.assertIn('maxDistance', too_far.data)

	def test_ride_detail_hides_passengers_from_riders(self):
		ride = make_ride(self.driver)
		add_request(ride, self.rider)

		self.as_user(self.other_rider)
		as_rider = self.client.get(f'/api/rides/{ride.id}')
		self.as_user(self.driver)
		as_driver = self.client.get(f'/api/rides/{ride.id}')

		self.assertIsNone(as_rider.data['passengers'])
		self.assertEqual(as_driver.data['passengers'][0]['user']['id'], self.rider.id)

	def test_my_requests_and_my_rides(self):
		ride = make_ride(self.driver)
		make_ride(self.driver, status=Ride.STATUS_COMPLETED)
		add_request(ride, self.rider)

		self.as_user(self.rider)
		mine = self.client.get('/api/rides/myRequests')
		self.as_user(self.driver)
		rides = self.client.get('/api/rides/myRides')
		forbidden = self.client.get('/api/rides/myRequests')

		self.assertEqual(mine.data['count'], 1)
		self.assertEqual(mine.data['requests'][0]['ride']['id'], ride.id)
		self.assertEqual(rides.data['count'], 2)
		self.assertEqual(forbidden.status_code, 403)


class HealthCheckTests(TestCase):
	@patch('carpool_backend.views.redis.Redis')
	def test_health_check(self, mock_redis):
		mock_redis.return_value.ping.return_value = True

		response = APIClient().get('/health/')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services']['database'], 'healthy')

	@patch('carpool_backend.views.redis.Redis')
	def test_health_check_reports_redis_down(self, mock_redis):
		mock_redis.return_value.ping.side_effect = ConnectionError('refused')

		response = APIClient().get('/health/')

		self.assertEqual(response.status_code, 503)
		self.assertIn('unhealthy', response.data['services']['redis'])


class ExpireDepartedRequestsCommandTests(TestCase):
	def test_command_rejects_stale_pending_requests(self):
		driver = make_user('driver', role='driver')
		rider = make_user('rider')
		ride = make_ride(driver, departure_in=timedelta(minutes=-30))
		request = add_request(ride, rider)
		out = StringIO()

		call_command('expire_departed_requests', stdout=out)

		request.refresh_from_db()
		self.assertEqual(request.status, PassengerRequest.STATUS_REJECTED)
		self.assertIn('Rejected 1', out.getvalue())


class ExpireDepartedRequestsTaskTests(TestCase):
	def test_task_is_scheduled_with_beat(self):
		tasks = [entry['task'] for entry in settings.CELERY_BEAT_SCHEDULE.values()]
		self.assertIn(expire_departed_requests_task.name, tasks)

	def test_task_rejects_only_departed_pending_requests(self):
		driver = make_user('driver', role='driver')
		rider = make_user('rider')
		departed = make_ride(driver, departure_in=timedelta(minutes=-30))
		upcoming = make_ride(driver)
		stale = add_request(departed, rider)
		fresh = add_request(upcoming, rider)

		expired = expire_departed_requests_task.delay().get()

		stale.refresh_from_db()
		fresh.refresh_from_db()
		self.assertEqual(expired, 1)
		self.assertEqual(stale.status, PassengerRequest.STATUS_REJECTED)
		self.assertEqual(fresh.status, PassengerRequest.STATUS_PENDING)
