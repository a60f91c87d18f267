from datetime import timedelta
from unittest.mock import Mock

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from services.credits import add_credits
from services.exceptions import DriverNotFoundError, InvalidCoordinatesError
from services.routing import CircuitBreaker, MatrixProvider, OpenRouteServiceClient, SnapResult
from .models import DriverProfile
from .services import report_location
from .views import (
	DriverCreditHistoryView,
	DriverCreditsView,
	DriverLocationUpdateView,
	DriverStatusView,
)

User = get_user_model()


class SnappingProvider:
	"""Moves every point slightly north, as a road snap would."""

	def snap_to_road(self, lat, lng):
		return SnapResult(float(lat) + 0.0001, float(lng), 11.1)


@override_settings(SPEED_THRESHOLD_KMH=150, ANOMALY_THRESHOLD=3)
class LocationIntegrityTests(TestCase):
	def setUp(self):
		self.provider = MatrixProvider(None, CircuitBreaker('test'))
		user = User.objects.create_user(username='driver', password='driver1234', role='driver')
		self.start = timezone.now()
		self.profile = DriverProfile.objects.create(
			user=user,
			vehicle_number='KA-01-1234',
			status=DriverProfile.STATUS_ONLINE,
			current_latitude=12.9716,
			current_longitude=77.5946,
			last_location_update=self.start,
		)

	def report(self, lat, lng, seconds_later):
		return report_location(
			self.profile.pk, lat, lng,
			matrix_provider=self.provider,
			now=self.start + timedelta(seconds=seconds_later),
		)

	def test_plausible_movement_is_accepted(self):
		# ~1.1 km in 2 minutes, about 33 km/h
		report = self.report(12.9816, 77.5946, 120)

		self.assertTrue(report.accepted)
		self.assertEqual(report.anomaly_count, 0)
		self.assertFalse(report.forced_offline)
		self.assertLess(report.speed_kmh, 150)

		self.profile.refresh_from_db()
		self.assertAlmostEqual(float(self.profile.current_latitude), 12.9816)
		self.assertEqual(self.profile.last_location_update, self.start + timedelta(seconds=120))

	def test_teleport_raises_anomaly_counter(self):
		# ~11 km in 1 minute
		report = self.report(13.0716, 77.5946, 60)

		self.assertFalse(report.accepted)
		self.assertEqual(report.anomaly_count, 1)
		self.assertGreater(report.speed_kmh, 150)
		self.assertFalse(report.forced_offline)

	def test_repeated_anomalies_force_driver_offline(self):
		self.report(13.0716, 77.5946, 60)
		self.report(12.9716, 77.5946, 120)
		report = self.report(13.0716, 77.5946, 180)

		self.assertEqual(report.anomaly_count, 3)
		self.assertTrue(report.forced_offline)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, DriverProfile.STATUS_OFFLINE)

	def test_good_report_decays_counter_but_not_below_zero(self):
		self.report(13.0716, 77.5946, 60)
		report = self.report(13.0726, 77.5946, 180)
		self.assertEqual(report.anomaly_count, 0)

		report = self.report(13.0736, 77.5946, 300)
		self.assertEqual(report.anomaly_count, 0)

	def test_no_elapsed_time_skips_speed_check(self):
		report = self.report(13.5, 77.5946, 0)
		self.assertTrue(report.accepted)
		self.assertIsNone(report.speed_kmh)

	def test_first_report_without_location(self):
		DriverProfile.objects.filter(pk=self.profile.pk).update(current_latitude=None, current_longitude=None)
		report = self.report(13.5, 77.5946, 10)
		self.assertTrue(report.accepted)
		self.assertIsNone(report.speed_kmh)

	def test_snapped_point_is_stored(self):
		report = report_location(
			self.profile.pk, 12.9816, 77.5946,
			matrix_provider=SnappingProvider(),
			now=self.start + timedelta(seconds=120),
		)
		self.assertAlmostEqual(report.latitude, 12.9817)
		self.assertEqual(report.deviation_m, 11.1)
		self.profile.refresh_from_db()
		self.assertAlmostEqual(float(self.profile.current_latitude), 12.9817)

	def test_malformed_snap_response_stores_raw_point(self):
		session = Mock()
		session.post.return_value.json.return_value = {'locations': [{'name': 'MG Road'}]}
		provider = MatrixProvider(OpenRouteServiceClient('key', session=session), CircuitBreaker('snap'))

		report = report_location(
			self.profile.pk, 12.9816, 77.5946,
			matrix_provider=provider,
			now=self.start + timedelta(seconds=120),
		)
		self.assertTrue(report.accepted)
		self.assertAlmostEqual(report.latitude, 12.9816)
		self.assertEqual(report.deviation_m, 0.0)
		self.profile.refresh_from_db()
		self.assertAlmostEqual(float(self.profile.current_latitude), 12.9816)

	def test_invalid_coordinates(self):
		with self.assertRaises(InvalidCoordinatesError):
			report_location(self.profile.pk, 91, 77.5, matrix_provider=self.provider)
		with self.assertRaises(InvalidCoordinatesError):
			report_location(self.profile.pk, None, 77.5, matrix_provider=self.provider)

	def test_unknown_driver(self):
		with self.assertRaises(DriverNotFoundError):
			report_location(999999, 12.97, 77.59, matrix_provider=self.provider)


class DriverViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.user = User.objects.create_user(username='driver', password='driver1234', role='driver')
		self.profile = DriverProfile.objects.create(
			user=self.user,
			vehicle_number='KA-01-5678',
			current_latitude=12.9716,
			current_longitude=77.5946,
			last_location_update=timezone.now() - timedelta(minutes=10),
		)
		self.rider = User.objects.create_user(username='rider', password='pass1234', role='rider')

	def call(self, view_class, method, user, data=None):
		if method == 'get':
			request = self.factory.get('/api/driver/', data)
		else:
			request = getattr(self.factory, method)('/api/driver/', data, format='json')
		force_authenticate(request, user=user)
		return view_class.as_view()(request)

	def test_status_update(self):
		response = self.call(DriverStatusView, 'put', self.user, {'status': 'online'})
		self.assertEqual(response.status_code, 200)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, DriverProfile.STATUS_ONLINE)

	def test_busy_driver_cannot_change_status(self):
		self.profile.status = DriverProfile.STATUS_BUSY
		self.profile.save()
		response = self.call(DriverStatusView, 'put', self.user, {'status': 'offline'})
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'driver_busy')

	def test_busy_is_not_a_choice(self):
		response = self.call(DriverStatusView, 'put', self.user, {'status': 'busy'})
		self.assertEqual(response.status_code, 400)

	def test_rider_is_refused(self):
		response = self.call(DriverStatusView, 'get', self.rider)
		self.assertEqual(response.status_code, 403)

	def test_location_report(self):
		response = self.call(DriverLocationUpdateView, 'post', self.user, {'latitude': 12.9720, 'longitude': 77.5950})
		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['accepted'])
		self.assertEqual(response.data['anomaly_count'], 0)

	def test_location_report_out_of_range(self):
		response = self.call(DriverLocationUpdateView, 'post', self.user, {'latitude': 120, 'longitude': 77.5950})
		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'invalid_coordinates')

	def test_credit_status_and_history(self):
		add_credits(self.profile, 300, reason='Monthly plan', package_name='Gold', duration_days=30)
		add_credits(self.profile, 50)

		response = self.call(DriverCreditsView, 'get', self.user)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['credit_balance'], 350)
		self.assertEqual(response.data['monthly_package'], 'Gold')
		self.assertTrue(response.data['has_active_credits'])

		response = self.call(DriverCreditHistoryView, 'get', self.user, {'limit': 1})
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		self.assertEqual(response.data['entries'][0]['balance_after'], 350)

		response = self.call(DriverCreditHistoryView, 'get', self.user, {'limit': 'x'})
		self.assertEqual(response.status_code, 400)
