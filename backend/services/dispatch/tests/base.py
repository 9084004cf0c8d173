from unittest.mock import MagicMock

from django.test import TestCase
from django.utils import timezone

from accounts.models import User
from drivers.models import DriverProfile
from jobs.models import MatchingRequest
from services.dispatch.coordinator import DispatchCoordinator
from services.dispatch.policy import load_policy
from services.dispatch.repository import DispatchRepository

# St. John's, NL
PICKUP = (47.5615, -52.7126)
NEARBY = (47.5700, -52.7200)
DESTINATION = (47.5650, -52.7000)


class DispatchTestCase(TestCase):
	"""Coordinator wired with the ORM repository and a mock notifier."""

	policy_overrides = None

	def setUp(self):
		self.now = timezone.now()
		self.notifier = MagicMock()
		self.policy = load_policy(self.policy_overrides)
		self.repository = DispatchRepository()
		self.coordinator = DispatchCoordinator(self.repository, self.notifier, self.policy)
		self.assignments = self.coordinator.assignments
		self.customer = User.objects.create_user(
			username='customer',
			password='pass1234',
			role='customer',
			phone_number='7090000000'
		)

	def make_driver(self, name, point=PICKUP, **fields):
		user = User.objects.create_user(username=name, password='driver1234', role='driver')
		defaults = dict(
			vehicle_number=name.upper(),
			status='available',
			is_verified=True,
			current_latitude=point[0],
			current_longitude=point[1],
			last_location_update=self.now,
			rating=4.8,
		)
		defaults.update(fields)
		return DriverProfile.objects.create(user=user, **defaults)

	def make_job(self, **fields):
		defaults = dict(
			kind='order',
			customer=self.customer,
			service_type='food_delivery',
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			destination_latitude=DESTINATION[0],
			destination_longitude=DESTINATION[1],
			max_distance_km=10,
			min_rating=3.0,
			status='searching',
		)
		defaults.update(fields)
		return MatchingRequest.objects.create(**defaults)

	def start_matching(self, job, now=None):
		candidates = self.coordinator.find_candidates(job)
		return self.assignments.create_assignments(job, candidates, now=now or self.now)

	def sent_events(self, event_type):
		"""Every (target, payload) sent with event_type, for drivers and customers alike."""
		sent = []
		for call in self.notifier.notify_driver.call_args_list:
			if call.args[1] == event_type:
				sent.append(call.args[0])
		for call in self.notifier.notify_customer.call_args_list:
			if call.args[1] == event_type:
				sent.append(call.args[0].id)
		return sent
