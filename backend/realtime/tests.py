from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from asgiref.sync import async_to_sync
from channels.layers import InMemoryChannelLayer
from django.test import SimpleTestCase

from .notifications import ChannelsNotifier, driver_group, job_group, job_payload, user_group


def make_job(**fields):
	defaults = dict(
		id=7,
		kind='order',
		status='searching',
		service_type='food_delivery',
		customer_id=3,
		driver_id=None,
		pickup_latitude=47.5615,
		pickup_longitude=-52.7126,
		pickup_address='Water St',
		destination_latitude=None,
		destination_longitude=None,
		destination_address='',
		destination_point=None,
	)
	defaults.update(fields)
	return SimpleNamespace(**defaults)


class ChannelsNotifierTests(SimpleTestCase):
	def setUp(self):
		self.layer = InMemoryChannelLayer()
		self.notifier = ChannelsNotifier(self.layer)

	def subscribe(self, group):
		channel = async_to_sync(self.layer.new_channel)()
		async_to_sync(self.layer.group_add)(group, channel)
		return channel

	def receive(self, channel):
		return async_to_sync(self.layer.receive)(channel)

	def test_driver_event_reaches_driver_group(self):
		channel = self.subscribe(driver_group(5))

		sent = self.notifier.notify_driver(5, 'job_offer', {'job_id': 7, 'assignment_id': 11})

		self.assertTrue(sent)
		self.assertEqual(self.receive(channel), {'type': 'job_offer', 'job_id': 7, 'assignment_id': 11})

	def test_customer_event_reaches_user_and_job_groups(self):
		user_channel = self.subscribe(user_group(3))
		job_channel = self.subscribe(job_group(7))

		self.notifier.notify_customer(make_job(), 'looking_for_driver', 'Notifying nearby drivers...')

		for channel in (user_channel, job_channel):
			message = self.receive(channel)
			self.assertEqual(message['type'], 'looking_for_driver')
			self.assertEqual(message['job_id'], 7)
			self.assertEqual(message['message'], 'Notifying nearby drivers...')
			self.assertEqual(message['pickup']['address'], 'Water St')

	def test_missing_driver_is_not_sent(self):
		self.assertFalse(self.notifier.notify_driver(None, 'job_offer'))

	def test_layer_failure_is_reported_not_raised(self):
		layer = MagicMock()
		layer.group_send = AsyncMock(side_effect=ConnectionError('redis down'))

		self.assertFalse(ChannelsNotifier(layer).notify('driver_1', 'job_offer', {}))

	def test_payload_includes_destination_when_known(self):
		job = make_job(
			destination_latitude=47.565,
			destination_longitude=-52.70,
			destination_address='Signal Hill',
			destination_point=(47.565, -52.70),
		)

		payload = job_payload(job, eta_minutes=4)

		self.assertEqual(payload['destination']['address'], 'Signal Hill')
		self.assertEqual(payload['eta_minutes'], 4)
		self.assertNotIn('destination', job_payload(make_job()))
