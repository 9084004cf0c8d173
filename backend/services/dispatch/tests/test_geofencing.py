from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError

from drivers.models import DriverLocation
from jobs.models import Geofence
from services.dispatch.exceptions import JobValidationError
from services.dispatch.geofencing import LocationUpdate

from .base import DESTINATION, DispatchTestCase, PICKUP


class GeofencingTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.driver = self.make_driver('driver_a', (PICKUP[0] + 0.01, PICKUP[1]))
		self.job = self.make_job()
		[assignment_id] = self.start_matching(self.job)
		self.assignments.respond_to_assignment(assignment_id, 'accept', self.driver.id, now=self.now)
		self.notifier.reset_mock()

	def report(self, point, **fields):
		update = LocationUpdate(
			driver_id=self.driver.id,
			latitude=point[0],
			longitude=point[1],
			timestamp=self.now + timedelta(minutes=1),
			**fields
		)
		return self.coordinator.record_location(update)

	def test_pickup_fence_fires_once(self):
		events = self.report((PICKUP[0] + 0.0002, PICKUP[1]))  # ~22 m

		self.assertEqual(len(events), 1)
		self.assertEqual(events[0]['type'], 'pickup')
		self.assertEqual(events[0]['job_id'], self.job.id)
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'driver_arrived')
		self.assertFalse(Geofence.objects.get(job=self.job, type='pickup').is_active)
		self.assertEqual(self.sent_events('driver_arrived'), [self.job.id])

		self.assertEqual(self.report(PICKUP), [])
		self.assertEqual(self.sent_events('driver_arrived'), [self.job.id])

	def test_failed_arrival_leaves_the_fence_armed(self):
		repository = self.coordinator.geofences.repository
		with patch.object(repository, 'update_job_status', side_effect=DatabaseError('lock timeout')):
			self.assertEqual(self.report(PICKUP), [])

		self.assertTrue(Geofence.objects.get(job=self.job, type='pickup').is_active)
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'assigned')
		self.notifier.notify_customer.assert_not_called()

		self.assertEqual([e['type'] for e in self.report(PICKUP)], ['pickup'])
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'driver_arrived')

	def test_outside_radius_nothing_fires(self):
		self.assertEqual(self.report((PICKUP[0] + 0.001, PICKUP[1])), [])  # ~110 m

		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'assigned')
		self.assertTrue(Geofence.objects.get(job=self.job, type='pickup').is_active)

	def test_mismatched_job_is_ignored(self):
		other = self.make_job()

		self.assertEqual(self.report(PICKUP, active_job_id=other.id), [])
		self.assertTrue(Geofence.objects.get(job=self.job, type='pickup').is_active)

	def test_invalid_coordinates_are_skipped_by_the_engine(self):
		update = LocationUpdate(driver_id=self.driver.id, latitude=float('nan'), longitude=PICKUP[1])

		self.assertEqual(self.coordinator.geofences.on_location_update(update), [])
		self.notifier.notify_customer.assert_not_called()

	def test_record_location_rejects_bad_coordinates(self):
		with self.assertRaises(JobValidationError):
			self.report((91.0, PICKUP[1]))
		with self.assertRaises(JobValidationError):
			self.report((float('nan'), PICKUP[1]))

		self.assertFalse(DriverLocation.objects.filter(driver=self.driver).exists())

	def test_delivery_fence_only_announces_arrival(self):
		self.coordinator.start_job(self.job.id, self.driver.id)
		fence = Geofence.objects.get(job=self.job, type='delivery', is_active=True)
		self.assertEqual(fence.radius_meters, 100)
		self.assertFalse(Geofence.objects.filter(job=self.job, type='pickup', is_active=True).exists())

		events = self.report(DESTINATION)

		self.assertEqual([e['type'] for e in events], ['delivery'])
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'in_progress')
		self.assertEqual(self.sent_events('arrived_at_destination'), [self.job.id])

	def test_driver_without_job_fires_nothing(self):
		idle = self.make_driver('idle')
		update = LocationUpdate(driver_id=idle.id, latitude=PICKUP[0], longitude=PICKUP[1])

		self.assertEqual(self.coordinator.record_location(update), [])
		idle.refresh_from_db()
		self.assertEqual(float(idle.current_latitude), PICKUP[0])


class LocationHistoryTests(DispatchTestCase):
	policy_overrides = {'location_history_limit': 3}

	def test_history_keeps_newest_reports(self):
		driver = self.make_driver('driver_a')

		for minute in range(5):
			self.coordinator.record_location(LocationUpdate(
				driver_id=driver.id,
				latitude=PICKUP[0] + minute * 0.001,
				longitude=PICKUP[1],
				timestamp=self.now + timedelta(minutes=minute),
			))

		history = DriverLocation.objects.filter(driver=driver)
		self.assertEqual(history.count(), 3)
		self.assertEqual(
			[loc.recorded_at for loc in history],
			[self.now + timedelta(minutes=m) for m in (4, 3, 2)],
		)
		driver.refresh_from_db()
		self.assertEqual(driver.last_location_update, self.now + timedelta(minutes=4))
