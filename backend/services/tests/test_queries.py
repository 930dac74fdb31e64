from django.test import TestCase

from rides.models import PassengerRequest
from rides.serializers import RideSerializer, MyRequestSerializer
from services.booking import queries
from .factories import make_user, make_ride, add_request

PENDING = PassengerRequest.STATUS_PENDING
CONFIRMED = PassengerRequest.STATUS_CONFIRMED
CANCELLED = PassengerRequest.STATUS_CANCELLED


class RideSummaryTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.alice = make_user('alice')
		self.bob = make_user('bob')
		self.ride = make_ride(self.driver, total_seats=3)
		add_request(self.ride, self.alice, CANCELLED)
		add_request(self.ride, self.alice, PENDING)
		add_request(self.ride, self.bob, CONFIRMED)

	def test_summary_matches_with_and_without_prefetch(self):
		plain = queries.ride_summary(self.ride, self.alice.id)
		prefetched = queries.ride_summary(queries.get_ride(self.ride.id), self.alice.id)

		self.assertEqual(plain, prefetched)
		self.assertEqual(prefetched.available_seats, 2)
		self.assertEqual(prefetched.confirmed_count, 1)
		self.assertEqual(prefetched.pending_count, 1)
		self.assertEqual(prefetched.viewer_status, PENDING)

	def test_viewer_falls_back_to_latest_request(self):
		outsider = make_user('carol')
		add_request(self.ride, outsider, CANCELLED)

		summary = queries.ride_summary(queries.get_ride(self.ride.id), outsider.id)

		self.assertEqual(summary.viewer_status, CANCELLED)

	def test_prefetched_ride_needs_no_more_queries(self):
		ride = queries.get_ride(self.ride.id)

		with self.assertNumQueries(0):
			queries.ride_summary(ride, self.alice.id)
			RideSerializer(ride, context={'viewer_id': self.driver.id}).data


class ListingQueryCountTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver', role='driver')
		self.riders = [make_user(f'rider{i}') for i in range(3)]
		for _ in range(4):
			ride = make_ride(self.driver, total_seats=3)
			add_request(ride, self.riders[0], CONFIRMED)
			add_request(ride, self.riders[1], PENDING)

	def test_listing_serializes_without_per_ride_queries(self):
		rides = list(queries.list_rides())

		for viewer in (self.driver, self.riders[1], self.riders[2]):
			with self.subTest(viewer=viewer.username):
				with self.assertNumQueries(0):
					data = RideSerializer(rides, many=True, context={'viewer_id': viewer.id}).data
				self.assertEqual(len(data), 4)

	def test_my_rides_serializes_without_per_ride_queries(self):
		rides = list(queries.rides_for_creator(self.driver.id))

		with self.assertNumQueries(0):
			data = RideSerializer(rides, many=True, context={'viewer_id': self.driver.id}).data

		self.assertEqual(len(data[0]['passengers']), 2)

	def test_my_requests_serializes_without_per_request_queries(self):
		requests = list(queries.requests_for_user(self.riders[1].id))

		with self.assertNumQueries(0):
			data = MyRequestSerializer(requests, many=True, context={'viewer_id': self.riders[1].id}).data

		self.assertEqual(len(data), 4)
		self.assertEqual(data[0]['ride']['seats']['my_request_status'], PENDING)
