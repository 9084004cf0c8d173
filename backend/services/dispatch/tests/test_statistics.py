from datetime import timedelta
from unittest.mock import patch

from jobs.models import Assignment, ReassignmentQueueItem
from services.dispatch import statistics

from .base import DispatchTestCase


class HealthSnapshotTests(DispatchTestCase):
	def test_empty_system_is_a_warning(self):
		# few drivers (-15) and no accepted offers (-15)
		snapshot = statistics.health_snapshot(self.now)

		self.assertEqual(snapshot['score'], 70)
		self.assertEqual(snapshot['status'], statistics.WARNING)
		self.assertEqual(snapshot['drivers']['available'], 0)
		self.assertEqual(snapshot['reassignment_queue']['pending'], 0)

	def test_slow_database_and_failing_queue_is_critical(self):
		for index in range(6):
			job = self.make_job(status='unmatched')
			self.coordinator.reassignment.enqueue(job, now=self.now)
		ReassignmentQueueItem.objects.update(status='failed')

		with patch.object(statistics, '_database_latency_ms', return_value=1500.0):
			snapshot = statistics.health_snapshot(self.now)

		self.assertEqual(snapshot['score'], 40)
		self.assertEqual(snapshot['status'], statistics.CRITICAL)
		self.assertEqual(snapshot['reassignment_queue']['failed'], 6)

	def test_busy_healthy_system(self):
		for index in range(10):
			self.make_driver(f'driver_{index}')
		job = self.make_job()
		[assignment_id] = self.start_matching(job)
		driver_id = Assignment.objects.get(pk=assignment_id).driver_id
		self.assignments.respond_to_assignment(assignment_id, 'accept', driver_id, now=self.now)

		snapshot = statistics.health_snapshot(self.now + timedelta(minutes=1))

		# nine drivers are still available after one went busy
		self.assertEqual(snapshot['drivers']['available'], 9)
		self.assertEqual(snapshot['assignments']['acceptance_rate'], 100.0)
		self.assertEqual(snapshot['score'], 85)
		self.assertEqual(snapshot['status'], statistics.WARNING)


class MatchingStatisticsTests(DispatchTestCase):
	def test_counts_jobs_and_offers(self):
		driver_a = self.make_driver('driver_a')
		self.make_driver('driver_b')
		job = self.make_job()
		[first] = self.start_matching(job)
		self.assignments.respond_to_assignment(first, 'reject', driver_a.id, now=self.now)
		second = Assignment.objects.get(job=job, status='pending')
		self.assignments.respond_to_assignment(second.id, 'accept', second.driver_id, now=self.now)
		self.make_job(status='unmatched')

		stats = statistics.matching_statistics(hours=24, now=self.now + timedelta(minutes=5))

		self.assertEqual(stats['time_range']['hours'], 24)
		self.assertEqual(stats['jobs']['total'], 2)
		self.assertEqual(stats['jobs']['matched'], 1)
		self.assertEqual(stats['jobs']['unmatched'], 1)
		self.assertEqual(stats['jobs']['success_rate'], 50.0)
		self.assertEqual(stats['assignments']['total'], 2)
		self.assertEqual(stats['assignments']['accepted'], 1)
		self.assertEqual(stats['assignments']['rejected'], 1)
		self.assertEqual(stats['assignments']['acceptance_rate'], 50.0)

	def test_driver_breakdown(self):
		driver = self.make_driver('driver_a')
		job = self.make_job()
		[assignment_id] = self.start_matching(job)
		self.assignments.respond_to_assignment(assignment_id, 'accept', driver.id, now=self.now)

		stats = statistics.matching_statistics(driver_id=driver.id, now=self.now)

		self.assertEqual(stats['driver']['id'], driver.id)
		self.assertEqual(stats['driver']['assignments']['accepted'], 1)
		self.assertNotIn('driver', statistics.matching_statistics(driver_id=999999, now=self.now))

	def test_window_excludes_older_offers(self):
		driver = self.make_driver('driver_a')
		self.start_matching(self.make_job(), now=self.now - timedelta(hours=3))

		stats = statistics.matching_statistics(hours=1, now=self.now)

		self.assertEqual(stats['assignments']['total'], 0)
		self.assertEqual(driver.assignments.count(), 1)
