from unittest.mock import AsyncMock, Mock, patch

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase

from accounts.models import User
from .consumers import DriverConsumer, RiderConsumer
from .middleware import _token_from_scope
from .notifications import notify_driver_event, notify_rider_event, notify_trip_group


def fake_trip(**kwargs):
	defaults = {'id': 3, 'rider_id': 9, 'status': 'ACCEPTED'}
	defaults.update(kwargs)
	return Mock(**defaults)


class NotificationTests(SimpleTestCase):
	def setUp(self):
		self.layer = get_channel_layer()
		patcher = patch('realtime.notifications._trip_payload', return_value={'id': 3})
		patcher.start()
		self.addCleanup(patcher.stop)

	def subscribe(self, group):
		channel = async_to_sync(self.layer.new_channel)()
		async_to_sync(self.layer.group_add)(group, channel)
		return channel

	def test_rider_event_reaches_personal_group(self):
		channel = self.subscribe('user_9')

		self.assertTrue(notify_rider_event('trip_accepted', fake_trip(), 'On the way'))
		message = async_to_sync(self.layer.receive)(channel)
		self.assertEqual(message['type'], 'trip_accepted')
		self.assertEqual(message['trip_id'], 3)
		self.assertEqual(message['message'], 'On the way')
		self.assertEqual(message['trip_data'], {'id': 3})

	def test_driver_event_carries_offer_details(self):
		channel = self.subscribe('driver_21')

		notify_driver_event('trip_offer', fake_trip(), 21, extra={'offer_id': 8, 'expires_in': 30})
		message = async_to_sync(self.layer.receive)(channel)
		self.assertEqual(message['type'], 'trip_offer')
		self.assertEqual(message['offer_id'], 8)
		self.assertEqual(message['expires_in'], 30)

	def test_trip_group_broadcast(self):
		channel = self.subscribe('trip_3')

		notify_trip_group('trip_status_changed', fake_trip(status='ARRIVED'))
		message = async_to_sync(self.layer.receive)(channel)
		self.assertEqual(message['status'], 'ARRIVED')

	def test_missing_driver_is_not_sent(self):
		self.assertFalse(notify_driver_event('trip_offer', fake_trip(), None))

	def test_delivery_failure_is_reported_not_raised(self):
		layer = Mock()
		layer.group_send = AsyncMock(side_effect=RuntimeError('redis down'))
		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			self.assertFalse(notify_rider_event('trip_cancelled', fake_trip()))

	def test_no_channel_layer(self):
		with patch('realtime.notifications.get_channel_layer', return_value=None):
			self.assertFalse(notify_trip_group('trip_status_changed', fake_trip()))


class TokenExtractionTests(SimpleTestCase):
	def test_query_string_token(self):
		self.assertEqual(_token_from_scope({'query_string': b'token=abc.def'}), 'abc.def')

	def test_bearer_header(self):
		scope = {'query_string': b'', 'headers': [(b'authorization', b'Bearer xyz')]}
		self.assertEqual(_token_from_scope(scope), 'xyz')

	def test_no_token(self):
		scope = {'query_string': b'', 'headers': [(b'authorization', b'Basic xyz')]}
		self.assertIsNone(_token_from_scope(scope))


class ConsumerTests(SimpleTestCase):
	def communicator(self, consumer, path, user):
		communicator = WebsocketCommunicator(consumer.as_asgi(), path)
		communicator.scope['user'] = user
		return communicator

	async def test_anonymous_connection_is_refused(self):
		communicator = self.communicator(RiderConsumer, '/ws/rider/', AnonymousUser())
		connected, _ = await communicator.connect()
		self.assertFalse(connected)

	async def test_rider_receives_trip_events(self):
		user = User(id=41, username='rider41', role=User.ROLE_RIDER)
		communicator = self.communicator(RiderConsumer, '/ws/rider/', user)
		connected, _ = await communicator.connect()
		self.assertTrue(connected)

		hello = await communicator.receive_json_from()
		self.assertEqual(hello['type'], 'connection_established')
		self.assertEqual(hello['user_id'], 41)

		await get_channel_layer().group_send('user_41', {
			'type': 'trip_cancelled',
			'trip_id': 7,
			'message': 'Your trip was cancelled.',
		})
		event = await communicator.receive_json_from()
		self.assertEqual(event, {'type': 'trip_cancelled', 'trip_id': 7, 'message': 'Your trip was cancelled.'})

		await communicator.disconnect()

	async def test_unknown_and_untyped_messages(self):
		user = User(id=42, username='rider42', role=User.ROLE_RIDER)
		communicator = self.communicator(RiderConsumer, '/ws/rider/', user)
		await communicator.connect()
		await communicator.receive_json_from()

		await communicator.send_json_to({'type': 'dance'})
		error = await communicator.receive_json_from()
		self.assertEqual(error['type'], 'error')
		self.assertIn('dance', error['message'])

		await communicator.send_json_to({'trip_id': 1})
		error = await communicator.receive_json_from()
		self.assertEqual(error['message'], 'Message type is required')

		await communicator.send_json_to({'type': 'stop_tracking', 'trip_id': 5})
		ack = await communicator.receive_json_from()
		self.assertEqual(ack, {'type': 'tracking_stopped', 'trip_id': 5})

		await communicator.disconnect()

	async def test_driver_endpoint_refuses_riders(self):
		user = User(id=43, username='rider43', role=User.ROLE_RIDER)
		communicator = self.communicator(DriverConsumer, '/ws/driver/', user)
		await communicator.connect()

		error = await communicator.receive_json_from()
		self.assertEqual(error['message'], 'This endpoint is for drivers only')
		closed = await communicator.receive_output()
		self.assertEqual(closed['type'], 'websocket.close')
		await communicator.disconnect()
