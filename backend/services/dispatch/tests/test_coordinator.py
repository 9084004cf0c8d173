from datetime import timedelta

from django.test import TestCase, override_settings

from jobs.models import Assignment, Geofence, MatchingRequest, ReassignmentQueueItem
from realtime.notifications import ChannelsNotifier
from services.dispatch import build_coordinator
from services.dispatch.exceptions import ConflictError, JobValidationError, NotFoundError

from .base import DESTINATION, DispatchTestCase, PICKUP


def order_fields(**fields):
	defaults = dict(
		kind='order',
		pickup_latitude=PICKUP[0],
		pickup_longitude=PICKUP[1],
		destination_latitude=DESTINATION[0],
		destination_longitude=DESTINATION[1],
		max_distance_km=10,
	)
	defaults.update(fields)
	return defaults


class SubmitJobTests(DispatchTestCase):
	def test_submit_offers_to_nearest_driver(self):
		driver = self.make_driver('driver_a')

		result = self.coordinator.submit_job(self.customer, **order_fields(pickup_address='Water St'))

		self.assertTrue(result.success)
		self.assertEqual(result.job.status, 'searching')
		self.assertEqual(result.job.service_type, 'food_delivery')
		self.assertEqual(result.job.matching_pass, 1)
		self.assertEqual(result.extra['driver_candidates'], 1)
		offer = Assignment.objects.get(pk=result.extra['assignment_ids'][0])
		self.assertEqual(offer.driver, driver)
		self.assertEqual(self.sent_events('looking_for_driver'), [result.job.id])

	def test_submit_without_drivers_queues_the_job(self):
		result = self.coordinator.submit_job(self.customer, **order_fields())

		self.assertEqual(result.extra['assignment_ids'], [])
		item = ReassignmentQueueItem.objects.get(job=result.job)
		self.assertEqual((item.attempt, item.status), (1, 'pending'))
		self.assertEqual(self.sent_events('no_drivers_available'), [result.job.id])

	def test_ride_defaults_to_rideshare_and_needs_destination(self):
		with self.assertRaises(JobValidationError):
			self.coordinator.submit_job(
				self.customer, kind='ride', pickup_latitude=PICKUP[0], pickup_longitude=PICKUP[1]
			)

		result = self.coordinator.submit_job(self.customer, **order_fields(kind='ride'))
		self.assertEqual(result.job.service_type, 'rideshare')

	def test_invalid_fields_are_rejected(self):
		bad_inputs = [
			order_fields(kind='parcel'),
			order_fields(pickup_latitude=95),
			order_fields(pickup_longitude='east'),
			order_fields(destination_latitude=None),
			order_fields(priority=11),
			order_fields(max_distance_km=0),
			order_fields(max_distance_km='far'),
			order_fields(min_rating=6),
			order_fields(service_type='laundry'),
		]
		for fields in bad_inputs:
			with self.assertRaises(JobValidationError):
				self.coordinator.submit_job(self.customer, **fields)

		self.assertFalse(MatchingRequest.objects.exists())


class JobLifecycleTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.driver = self.make_driver('driver_a')
		self.other_driver = self.make_driver('driver_b')
		self.job = self.make_job()
		[assignment_id] = self.start_matching(self.job)
		self.offer = Assignment.objects.get(pk=assignment_id)
		self.assignments.respond_to_assignment(assignment_id, 'accept', self.offer.driver_id, now=self.now)
		self.driver = self.offer.driver
		self.driver.refresh_from_db()

	def test_order_runs_to_delivered(self):
		self.coordinator.start_job(self.job.id, self.driver.id)
		result = self.coordinator.complete_job(self.job.id, self.driver.id)

		self.assertEqual(result.job.status, 'delivered')
		self.assertIsNotNone(result.job.finished_at)
		self.driver.refresh_from_db()
		self.customer.refresh_from_db()
		self.assertEqual(self.driver.status, 'available')
		self.assertEqual(self.driver.total_jobs, 1)
		self.assertEqual(self.driver.completion_rate, 1.0)
		self.assertEqual(self.customer.completed_jobs, 1)
		self.assertFalse(Geofence.objects.filter(job=self.job, is_active=True).exists())
		self.assertEqual(self.sent_events('job_completed'), [self.job.id])

	def test_ride_completes(self):
		self.job.kind = 'ride'
		self.job.save(update_fields=['kind'])

		result = self.coordinator.complete_job(self.job.id, self.driver.id)

		self.assertEqual(result.job.status, 'completed')

	def test_only_bound_driver_can_progress_job(self):
		intruder = self.make_driver('driver_c')

		with self.assertRaises(ConflictError):
			self.coordinator.start_job(self.job.id, intruder.id)
		with self.assertRaises(ConflictError):
			self.coordinator.complete_job(self.job.id, intruder.id)

	def test_cannot_start_twice(self):
		self.coordinator.start_job(self.job.id, self.driver.id)
		with self.assertRaises(ConflictError):
			self.coordinator.start_job(self.job.id, self.driver.id)

	def test_cancel_frees_the_driver(self):
		result = self.coordinator.cancel_job(self.job.id, 'Restaurant closed')

		self.assertTrue(result.extra['was_assigned'])
		self.assertEqual(result.job.status, 'cancelled')
		self.assertEqual(result.job.cancellation_reason, 'Restaurant closed')
		self.driver.refresh_from_db()
		self.assertEqual(self.driver.status, 'available')
		self.assertFalse(Geofence.objects.filter(job=self.job, is_active=True).exists())
		self.assertIn(self.driver.id, self.sent_events('job_cancelled'))
		self.assertIn(self.job.id, self.sent_events('job_cancelled'))

	def test_terminal_job_cannot_be_cancelled(self):
		self.coordinator.complete_job(self.job.id, self.driver.id)

		with self.assertRaises(ConflictError):
			self.coordinator.cancel_job(self.job.id)

	def test_unknown_job(self):
		with self.assertRaises(NotFoundError):
			self.coordinator.cancel_job(999999)


class TickTests(DispatchTestCase):
	def test_tick_expires_offers_and_processes_queue(self):
		driver = self.make_driver('driver_a')
		job = self.make_job()
		self.start_matching(job)
		waiting = self.make_job()
		self.coordinator.reassignment.enqueue(waiting, now=self.now)

		result = self.coordinator.tick(self.now + timedelta(seconds=130))

		self.assertEqual(result['expired'], 1)
		self.assertEqual(Assignment.objects.get(job=job, driver=driver).status, 'expired')
		# the expired job was requeued during the same tick; the older item goes first
		self.assertEqual(result['reassignment']['processed'], 2)
		self.assertEqual(result['reassignment']['resolved'], 1)
		self.assertEqual(Assignment.objects.get(job=waiting, status='pending').driver, driver)
		self.assertEqual(ReassignmentQueueItem.objects.get(job=job).attempt, 2)

	def test_tick_with_nothing_due(self):
		result = self.coordinator.tick(self.now)

		self.assertEqual(result['expired'], 0)
		self.assertEqual(result['reassignment']['processed'], 0)


class BuildCoordinatorTests(TestCase):
	def test_uses_configured_notifier(self):
		coordinator = build_coordinator()
		self.assertIsInstance(coordinator.notifier, ChannelsNotifier)
		self.assertIs(coordinator.assignments.on_exhausted.__self__, coordinator)

	@override_settings(DISPATCH={'OFFER_WINDOW_SECONDS': 30})
	def test_policy_comes_from_settings(self):
		self.assertEqual(build_coordinator().policy.offer_window_seconds, 30)
