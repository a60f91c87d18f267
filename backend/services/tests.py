from unittest.mock import Mock

import requests
from django.core.cache import cache
from django.test import SimpleTestCase

from common.utils import calculate_distance_km, estimate_travel
from services.exceptions import CircuitOpenError, MatrixProviderError
from services.routing import CircuitBreaker, MatrixProvider, OpenRouteServiceClient

ORIGIN = (12.9716, 77.5946)
DESTINATIONS = [(12.9800, 77.5946), (13.0000, 77.6000)]


class FakeClock:
	def __init__(self):
		self.now = 1000.0

	def __call__(self):
		return self.now


class FakeClient:
	def __init__(self, distances=(1.5, 3.0), durations=(300, 600), fail=False):
		self.distances = list(distances)
		self.durations = list(durations)
		self.fail = fail
		self.matrix_calls = 0
		self.snap_calls = 0

	def matrix(self, origin, destinations):
		self.matrix_calls += 1
		if self.fail:
			raise MatrixProviderError('provider down')
		return self.distances, self.durations

	def snap(self, lat, lng):
		self.snap_calls += 1
		if self.fail:
			raise MatrixProviderError('provider down')
		return lat + 0.0005, lng


class GeoEstimatorTests(SimpleTestCase):
	def test_fallback_estimate_is_three_minutes_per_km(self):
		estimate = estimate_travel(ORIGIN[0], ORIGIN[1], 13.0000, 77.6000)
		distance = calculate_distance_km(ORIGIN[0], ORIGIN[1], 13.0000, 77.6000)
		self.assertAlmostEqual(estimate.distance_km, distance)
		self.assertAlmostEqual(estimate.duration_min, distance * 3)
		self.assertTrue(estimate.estimated)

	def test_same_point_is_zero(self):
		estimate = estimate_travel(ORIGIN[0], ORIGIN[1], ORIGIN[0], ORIGIN[1])
		self.assertEqual(estimate.distance_km, 0)
		self.assertEqual(estimate.duration_min, 0)


class CircuitBreakerTests(SimpleTestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.breaker = CircuitBreaker('test', failure_threshold=2, reset_timeout=60, clock=self.clock)

	def fail(self):
		raise MatrixProviderError('boom')

	def trip_breaker(self):
		for _ in range(2):
			with self.assertRaises(MatrixProviderError):
				self.breaker.call(self.fail)

	def test_opens_after_consecutive_failures(self):
		with self.assertRaises(MatrixProviderError):
			self.breaker.call(self.fail)
		self.assertEqual(self.breaker.state, CircuitBreaker.CLOSED)

		with self.assertRaises(MatrixProviderError):
			self.breaker.call(self.fail)
		self.assertEqual(self.breaker.state, CircuitBreaker.OPEN)

	def test_open_circuit_refuses_without_calling(self):
		self.trip_breaker()
		fn = Mock()
		with self.assertRaises(CircuitOpenError):
			self.breaker.call(fn)
		fn.assert_not_called()

	def test_success_resets_failure_count(self):
		with self.assertRaises(MatrixProviderError):
			self.breaker.call(self.fail)
		self.assertEqual(self.breaker.call(lambda: 'ok'), 'ok')
		with self.assertRaises(MatrixProviderError):
			self.breaker.call(self.fail)
		self.assertEqual(self.breaker.state, CircuitBreaker.CLOSED)

	def test_half_open_trial_success_closes(self):
		self.trip_breaker()
		self.clock.now += 61

		self.assertEqual(self.breaker.call(lambda: 42), 42)
		self.assertEqual(self.breaker.state, CircuitBreaker.CLOSED)
		self.assertEqual(self.breaker.get_state()['failure_count'], 0)

	def test_half_open_trial_failure_reopens(self):
		self.trip_breaker()
		self.clock.now += 61

		with self.assertRaises(MatrixProviderError):
			self.breaker.call(self.fail)
		self.assertEqual(self.breaker.state, CircuitBreaker.OPEN)
		with self.assertRaises(CircuitOpenError):
			self.breaker.call(lambda: 42)


class MatrixProviderTests(SimpleTestCase):
	def setUp(self):
		cache.clear()
		self.clock = FakeClock()
		self.breaker = CircuitBreaker('test', failure_threshold=2, reset_timeout=60, clock=self.clock)

	def provider(self, client):
		return MatrixProvider(client, self.breaker, cache_ttl=30, cache_precision=4)

	def test_provider_estimates_are_converted_to_minutes(self):
		client = FakeClient()
		estimates = self.provider(client).get_travel_estimates(ORIGIN, DESTINATIONS)

		self.assertEqual([(e.distance_km, e.duration_min) for e in estimates], [(1.5, 5.0), (3.0, 10.0)])
		self.assertFalse(any(e.estimated for e in estimates))

	def test_results_are_cached_by_rounded_coordinates(self):
		client = FakeClient()
		provider = self.provider(client)
		provider.get_travel_estimates(ORIGIN, DESTINATIONS)

		nudged = [(lat + 0.00001, lng) for lat, lng in DESTINATIONS]
		estimates = provider.get_travel_estimates(ORIGIN, nudged)

		self.assertEqual(client.matrix_calls, 1)
		self.assertEqual(estimates[1].duration_min, 10.0)
		metrics = provider.health()['metrics']
		self.assertEqual(metrics['cache_hits'], 1)
		self.assertEqual(metrics['cache_misses'], 1)
		self.assertEqual(metrics['success'], 1)

	def test_failure_falls_back_to_great_circle(self):
		provider = self.provider(FakeClient(fail=True))
		estimates = provider.get_travel_estimates(ORIGIN, DESTINATIONS)

		self.assertTrue(all(e.estimated for e in estimates))
		for estimate in estimates:
			self.assertAlmostEqual(estimate.duration_min, estimate.distance_km * 3)
		metrics = provider.health()['metrics']
		self.assertEqual(metrics['failure'], 1)
		self.assertEqual(metrics['fallbacks'], 1)

	def test_open_circuit_skips_the_provider(self):
		client = FakeClient(fail=True)
		provider = self.provider(client)
		for i in range(3):
			provider.get_travel_estimates(ORIGIN, [(12.9 + i / 100, 77.59)])

		self.assertEqual(client.matrix_calls, 2)
		self.assertEqual(provider.health()['circuit']['state'], CircuitBreaker.OPEN)

	def test_unroutable_pair_uses_fallback(self):
		provider = self.provider(FakeClient(distances=(1.5, None), durations=(300, None)))
		estimates = provider.get_travel_estimates(ORIGIN, DESTINATIONS)

		self.assertFalse(estimates[0].estimated)
		self.assertTrue(estimates[1].estimated)

	def test_no_client_means_fallback_only(self):
		provider = self.provider(None)
		estimates = provider.get_travel_estimates(ORIGIN, DESTINATIONS)
		self.assertTrue(all(e.estimated for e in estimates))
		self.assertEqual(provider.health()['provider'], 'fallback')

	def test_no_destinations(self):
		client = FakeClient()
		self.assertEqual(self.provider(client).get_travel_estimates(ORIGIN, []), [])
		self.assertEqual(client.matrix_calls, 0)

	def test_snap_to_road(self):
		snap = self.provider(FakeClient()).snap_to_road(*ORIGIN)
		self.assertTrue(snap.snapped)
		self.assertAlmostEqual(snap.latitude, ORIGIN[0] + 0.0005)
		self.assertGreater(snap.deviation_m, 50)

	def test_snap_failure_keeps_raw_point(self):
		snap = self.provider(FakeClient(fail=True)).snap_to_road(*ORIGIN)
		self.assertFalse(snap.snapped)
		self.assertEqual((snap.latitude, snap.longitude), ORIGIN)
		self.assertEqual(snap.deviation_m, 0.0)


class OpenRouteServiceClientTests(SimpleTestCase):
	def response(self, payload):
		response = Mock()
		response.json.return_value = payload
		response.raise_for_status.return_value = None
		return response

	def test_matrix_request_and_parsing(self):
		session = Mock()
		session.post.return_value = self.response({
			'distances': [[1.2, 3.4]],
			'durations': [[100.0, 200.0]],
		})
		client = OpenRouteServiceClient('key', base_url='https://ors.test/', session=session)

		distances, durations = client.matrix(ORIGIN, DESTINATIONS)
		self.assertEqual(distances, [1.2, 3.4])
		self.assertEqual(durations, [100.0, 200.0])

		url = session.post.call_args[0][0]
		body = session.post.call_args[1]['json']
		self.assertEqual(url, 'https://ors.test/v2/matrix/driving-car')
		self.assertEqual(body['locations'][0], [ORIGIN[1], ORIGIN[0]])
		self.assertEqual(body['sources'], [0])
		self.assertEqual(body['destinations'], [1, 2])
		self.assertEqual(body['units'], 'km')
		self.assertEqual(session.post.call_args[1]['headers']['Authorization'], 'key')

	def test_transport_error_is_wrapped(self):
		session = Mock()
		session.post.side_effect = requests.Timeout('slow')
		client = OpenRouteServiceClient('key', session=session)

		with self.assertRaises(MatrixProviderError):
			client.matrix(ORIGIN, DESTINATIONS)

	def test_size_mismatch_is_an_error(self):
		session = Mock()
		session.post.return_value = self.response({'distances': [[1.2]], 'durations': [[100.0]]})
		client = OpenRouteServiceClient('key', session=session)

		with self.assertRaises(MatrixProviderError):
			client.matrix(ORIGIN, DESTINATIONS)

	def test_snap_parsing(self):
		session = Mock()
		session.post.return_value = self.response({'locations': [{'location': [77.5950, 12.9720], 'snapped_distance': 40}]})
		client = OpenRouteServiceClient('key', session=session)
		self.assertEqual(client.snap(12.9716, 77.5946), (12.9720, 77.5950))

		session.post.return_value = self.response({'locations': [None]})
		self.assertIsNone(client.snap(12.9716, 77.5946))

	def test_snap_entry_without_location_is_an_error(self):
		session = Mock()
		client = OpenRouteServiceClient('key', session=session)
		for payload in ({'locations': [{'name': 'MG Road'}]}, {'locations': [{'location': None}]}, {'locations': [{'location': ['x', 'y']}]}):
			session.post.return_value = self.response(payload)
			with self.assertRaises(MatrixProviderError):
				client.snap(12.9716, 77.5946)

	def test_malformed_snap_keeps_the_raw_point(self):
		session = Mock()
		session.post.return_value = self.response({'locations': [{'name': 'MG Road'}]})
		provider = MatrixProvider(OpenRouteServiceClient('key', session=session), CircuitBreaker('snap-test'))

		snap = provider.snap_to_road(*ORIGIN)
		self.assertFalse(snap.snapped)
		self.assertEqual((snap.latitude, snap.longitude), ORIGIN)
		self.assertEqual(snap.deviation_m, 0.0)
