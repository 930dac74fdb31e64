from django.test import TestCase
from rest_framework.test import APIClient

from .models import User


class AuthFlowTests(TestCase):
	def setUp(self):
		self.client = APIClient()

	def test_register_returns_tokens_and_role(self):
		response = self.client.post('/api/auth/register', {
			'username': 'driver_jane',
			'password': 'longpassword1',
			'email': 'jane@example.com',
			'role': 'driver',
			'phone_number': '9000000001',
		}, format='json')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['user']['role'], 'driver')
		self.assertIn('access', response.data['tokens'])
		self.assertTrue(User.objects.filter(username='driver_jane').exists())

	def test_register_rejects_duplicate_email(self):
		User.objects.create_user(username='first', password='longpassword1', email='dup@example.com')

		response = self.client.post('/api/auth/register', {
			'username': 'second',
			'password': 'longpassword1',
			'email': 'dup@example.com',
		}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertIn('email', response.data)

	def test_login_and_refresh(self):
		User.objects.create_user(username='rider', password='longpassword1')

		login = self.client.post('/api/auth/login', {
			'username': 'rider',
			'password': 'longpassword1',
		}, format='json')
		self.assertEqual(login.status_code, 200)

		refresh = self.client.post('/api/auth/refresh', {
			'refresh': login.data['tokens']['refresh'],
		}, format='json')
		self.assertEqual(refresh.status_code, 200)
		self.assertIn('access', refresh.data)

	def test_login_with_wrong_password_fails(self):
		User.objects.create_user(username='rider', password='longpassword1')

		response = self.client.post('/api/auth/login', {
			'username': 'rider',
			'password': 'nope',
		}, format='json')

		self.assertEqual(response.status_code, 400)

	def test_refresh_with_garbage_token_is_unauthorized(self):
		response = self.client.post('/api/auth/refresh', {'refresh': 'garbage'}, format='json')
		self.assertEqual(response.status_code, 401)
