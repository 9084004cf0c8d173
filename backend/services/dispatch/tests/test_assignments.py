from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError, IntegrityError, transaction

from drivers.models import DriverProfile
from jobs.models import Assignment, Geofence, RankedCandidate, ReassignmentQueueItem
from services.dispatch.exceptions import (
	AlreadyResolvedError,
	ConflictError,
	JobValidationError,
	NoCandidatesError,
	NotFoundError,
	UnauthorizedResponseError,
)

from .base import DispatchTestCase, NEARBY, PICKUP


class AssignmentFlowTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.driver_a = self.make_driver('driver_a', PICKUP)
		self.driver_b = self.make_driver('driver_b', NEARBY)
		self.driver_c = self.make_driver('driver_c', (PICKUP[0] + 0.02, PICKUP[1]))
		self.job = self.make_job()

	def pending(self):
		return Assignment.objects.get(job=self.job, status='pending')

	def test_create_assignments_offers_best_candidate_only(self):
		ids = self.start_matching(self.job)

		self.assertEqual(len(ids), 1)
		offer = Assignment.objects.get(pk=ids[0])
		self.assertEqual(offer.driver, self.driver_a)
		self.assertEqual(offer.status, 'pending')
		self.assertEqual(offer.rank, 0)
		self.assertEqual(offer.priority, 10)
		self.assertEqual(offer.expires_at, self.now + timedelta(seconds=120))
		self.assertEqual(Assignment.objects.filter(job=self.job, status='pending').count(), 1)

		ranked = RankedCandidate.objects.filter(job=self.job, matching_pass=1).order_by('rank')
		self.assertEqual([c.driver_id for c in ranked], [self.driver_a.id, self.driver_b.id, self.driver_c.id])

		self.job.refresh_from_db()
		self.assertEqual(self.job.matching_pass, 1)
		self.notifier.notify_driver.assert_called_once()
		self.assertEqual(self.notifier.notify_driver.call_args.args[:2], (self.driver_a.id, 'job_offer'))

	def test_create_assignments_requires_candidates(self):
		with self.assertRaises(NoCandidatesError):
			self.assignments.create_assignments(self.job, [])

	def test_second_pass_while_offer_pending_conflicts(self):
		self.start_matching(self.job)
		candidates = self.coordinator.find_candidates(self.job)
		self.assertEqual([c.driver_id for c in candidates], [self.driver_b.id, self.driver_c.id])

		with self.assertRaises(ConflictError):
			self.assignments.create_assignments(self.job, candidates)
		self.assertEqual(Assignment.objects.filter(job=self.job, status='pending').count(), 1)

	def test_database_refuses_second_pending_offer_for_job(self):
		offer = Assignment.objects.get(pk=self.start_matching(self.job)[0])

		with self.assertRaises(IntegrityError):
			with transaction.atomic():
				Assignment.objects.create(
					job=self.job,
					driver=self.driver_b,
					distance_km=1,
					eta_minutes=2,
					created_at=self.now,
					expires_at=offer.expires_at,
				)

	def test_accept_binds_driver(self):
		[assignment_id] = self.start_matching(self.job)

		assignment = self.assignments.respond_to_assignment(
			assignment_id, 'accept', self.driver_a.id, now=self.now + timedelta(seconds=30)
		)

		self.assertEqual(assignment.status, 'accepted')
		self.assertEqual(assignment.response_time_seconds, 30)
		self.job.refresh_from_db()
		self.driver_a.refresh_from_db()
		self.assertEqual(self.job.status, 'assigned')
		self.assertEqual(self.job.driver, self.driver_a)
		self.assertEqual(self.driver_a.status, 'busy')
		self.assertEqual(self.driver_a.last_response_time_seconds, 30)
		self.assertEqual(self.driver_a.acceptance_rate, 1.0)

		fence = Geofence.objects.get(job=self.job)
		self.assertEqual((fence.type, fence.radius_meters, fence.is_active), ('pickup', 50, True))
		self.assertCountEqual(self.sent_events('job_assigned'), [self.job.id, self.driver_a.id])

	def test_second_identical_response_conflicts_without_side_effects(self):
		[assignment_id] = self.start_matching(self.job)
		self.assignments.respond_to_assignment(assignment_id, 'accept', self.driver_a.id, now=self.now)
		calls = self.notifier.method_calls[:]

		with self.assertRaises(AlreadyResolvedError) as ctx:
			self.assignments.respond_to_assignment(assignment_id, 'accept', self.driver_a.id, now=self.now)

		self.assertIsInstance(ctx.exception, ConflictError)
		self.assertEqual(self.notifier.method_calls, calls)
		self.assertEqual(Geofence.objects.filter(job=self.job).count(), 1)
		self.job.refresh_from_db()
		self.assertEqual(self.job.driver, self.driver_a)

	def test_response_errors(self):
		[assignment_id] = self.start_matching(self.job)

		with self.assertRaises(UnauthorizedResponseError):
			self.assignments.respond_to_assignment(assignment_id, 'accept', self.driver_b.id)
		with self.assertRaises(NotFoundError):
			self.assignments.respond_to_assignment(999999, 'accept', self.driver_a.id)
		with self.assertRaises(JobValidationError):
			self.assignments.respond_to_assignment(assignment_id, 'maybe', self.driver_a.id)

		self.assertEqual(self.pending().id, assignment_id)

	def test_reject_offers_next_candidate(self):
		[assignment_id] = self.start_matching(self.job)

		rejected = self.assignments.respond_to_assignment(
			assignment_id, 'reject', self.driver_a.id, reason='Too far', now=self.now
		)

		self.assertEqual(rejected.status, 'rejected')
		self.assertEqual(rejected.rejection_reason, 'Too far')
		next_offer = self.pending()
		self.assertEqual(next_offer.driver, self.driver_b)
		self.assertEqual(next_offer.rank, 1)
		self.assertEqual(next_offer.priority, 9)
		self.assertIn(self.job.id, self.sent_events('job_still_pending'))

		self.driver_a.refresh_from_db()
		self.assertEqual(self.driver_a.acceptance_rate, 0.0)

	def test_expiry_advances_without_rematching(self):
		self.start_matching(self.job)
		later = self.now + timedelta(seconds=121)

		with patch.object(self.coordinator.match_finder, 'find_candidates') as find:
			self.assertEqual(self.assignments.expire_due(later), 1)
			find.assert_not_called()

		first = Assignment.objects.get(job=self.job, driver=self.driver_a)
		self.assertEqual(first.status, 'expired')
		self.assertEqual(self.pending().driver, self.driver_b)
		self.assertEqual(self.pending().created_at, later)
		self.assertIn(self.driver_a.id, self.sent_events('offer_expired'))

	def test_expire_assignment_is_a_noop_before_deadline(self):
		[assignment_id] = self.start_matching(self.job)

		self.assertFalse(self.assignments.expire_assignment(assignment_id, self.now + timedelta(seconds=60)))
		self.assertEqual(self.pending().id, assignment_id)
		self.assertTrue(self.assignments.expire_assignment(assignment_id, self.now + timedelta(seconds=120)))
		self.assertFalse(self.assignments.expire_assignment(assignment_id, self.now + timedelta(seconds=500)))

	def test_late_response_loses_to_expiry(self):
		[assignment_id] = self.start_matching(self.job)

		with self.assertRaises(AlreadyResolvedError):
			self.assignments.respond_to_assignment(
				assignment_id, 'accept', self.driver_a.id, now=self.now + timedelta(seconds=121)
			)

		self.assertEqual(Assignment.objects.get(pk=assignment_id).status, 'expired')
		self.assertEqual(self.pending().driver, self.driver_b)
		self.job.refresh_from_db()
		self.assertIsNone(self.job.driver)

	def test_exhausting_candidates_enqueues_for_reassignment(self):
		self.start_matching(self.job)

		for driver in (self.driver_a, self.driver_b, self.driver_c):
			offer = self.pending()
			self.assertEqual(offer.driver, driver)
			self.assignments.respond_to_assignment(offer.id, 'reject', driver.id, now=self.now)

		self.assertFalse(Assignment.objects.filter(job=self.job, status='pending').exists())
		item = ReassignmentQueueItem.objects.get(job=self.job)
		self.assertEqual(item.attempt, 1)
		self.assertEqual(item.status, 'pending')
		self.assertEqual(item.max_attempts, 3)
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'searching')

	def test_unavailable_candidates_are_skipped(self):
		self.start_matching(self.job)
		DriverProfile.objects.filter(pk=self.driver_b.id).update(status='offline')

		self.assignments.respond_to_assignment(self.pending().id, 'reject', self.driver_a.id, now=self.now)

		self.assertEqual(self.pending().driver, self.driver_c)
		self.assertTrue(
			RankedCandidate.objects.get(job=self.job, driver=self.driver_b).skipped
		)

	def test_cancel_while_pending(self):
		[assignment_id] = self.start_matching(self.job)

		with self.captureOnCommitCallbacks(execute=True):
			self.coordinator.cancel_job(self.job.id, 'Changed my mind')

		self.assertEqual(Assignment.objects.get(pk=assignment_id).status, 'cancelled')
		self.assertIsNone(self.assignments.offer_next(self.job))
		self.assertEqual(self.assignments.expire_due(self.now + timedelta(hours=1)), 0)
		self.assertFalse(Assignment.objects.filter(job=self.job, status='pending').exists())
		with self.assertRaises(AlreadyResolvedError):
			self.assignments.respond_to_assignment(assignment_id, 'accept', self.driver_a.id)
		self.assertIn(self.driver_a.id, self.sent_events('job_cancelled'))

	def test_rolled_back_cancel_does_not_reach_the_driver(self):
		[assignment_id] = self.start_matching(self.job)

		with self.captureOnCommitCallbacks(execute=True):
			with patch.object(self.coordinator.geofences, 'deactivate_for_job', side_effect=DatabaseError('lock timeout')):
				with self.assertRaises(DatabaseError):
					self.coordinator.cancel_job(self.job.id, 'Changed my mind')

		self.assertEqual(Assignment.objects.get(pk=assignment_id).status, 'pending')
		self.assertEqual(self.sent_events('job_cancelled'), [])

	def test_offer_timer_is_scheduled_when_enabled(self):
		self.assignments.policy = replace(self.policy, schedule_offer_timers=True)

		with patch('services.dispatch.assignments.expire_assignment_task') as task:
			[assignment_id] = self.start_matching(self.job)

		offer = Assignment.objects.get(pk=assignment_id)
		task.apply_async.assert_called_once_with((assignment_id,), eta=offer.expires_at)


class OfferRaceTests(DispatchTestCase):
	"""Each race replays the loser with a copy of the offer read before the winner committed."""

	def setUp(self):
		super().setUp()
		self.driver_a = self.make_driver('driver_a', PICKUP)
		self.driver_b = self.make_driver('driver_b', NEARBY)
		self.job = self.make_job()
		[self.assignment_id] = self.start_matching(self.job)
		self.late = self.now + timedelta(seconds=200)

	def driver_events(self, event_type):
		return [c.args[0] for c in self.notifier.notify_driver.call_args_list if c.args[1] == event_type]

	def accept_with(self, stale):
		with patch.object(self.repository, 'get_assignment', return_value=stale):
			with self.assertRaises(AlreadyResolvedError):
				self.assignments.respond_to_assignment(
					self.assignment_id, 'accept', self.driver_a.id, now=self.now + timedelta(seconds=30)
				)

	def assert_never_bound(self):
		self.assertIsNone(self.job.driver_id)
		self.driver_a.refresh_from_db()
		self.assertEqual(self.driver_a.status, 'available')
		self.assertEqual(self.sent_events('job_assigned'), [])
		self.assertFalse(Geofence.objects.filter(job=self.job).exists())

	def test_accept_beats_expiry_scan(self):
		stale = self.repository.due_pending_assignments(self.late)
		self.assertEqual([a.id for a in stale], [self.assignment_id])

		self.assignments.respond_to_assignment(
			self.assignment_id, 'accept', self.driver_a.id, now=self.now + timedelta(seconds=30)
		)
		with patch.object(self.repository, 'due_pending_assignments', return_value=stale):
			self.assertEqual(self.assignments.expire_due(self.late), 0)

		self.job.refresh_from_db()
		self.assertEqual((self.job.status, self.job.driver_id), ('assigned', self.driver_a.id))
		self.assertEqual([a.status for a in Assignment.objects.filter(job=self.job)], ['accepted'])
		self.assertEqual(self.driver_events('job_assigned'), [self.driver_a.id])
		customer_events = [c.args[1] for c in self.notifier.notify_customer.call_args_list]
		self.assertEqual(customer_events.count('job_assigned'), 1)
		self.assertEqual(self.driver_events('offer_expired'), [])
		self.assertEqual(self.driver_events('job_offer'), [self.driver_a.id])

	def test_expiry_beats_accept(self):
		stale = Assignment.objects.get(pk=self.assignment_id)
		self.assertEqual(self.assignments.expire_due(self.late), 1)

		self.accept_with(stale)

		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'searching')
		self.assertEqual(Assignment.objects.get(pk=self.assignment_id).status, 'expired')
		[pending] = Assignment.objects.filter(job=self.job, status='pending')
		self.assertEqual(pending.driver, self.driver_b)
		self.assert_never_bound()

	def test_reject_beats_expiry_scan(self):
		stale = self.repository.due_pending_assignments(self.late)

		self.assignments.respond_to_assignment(
			self.assignment_id, 'reject', self.driver_a.id, now=self.now + timedelta(seconds=30)
		)
		with patch.object(self.repository, 'due_pending_assignments', return_value=stale):
			self.assertEqual(self.assignments.expire_due(self.late), 0)

		self.assertEqual(Assignment.objects.get(pk=self.assignment_id).status, 'rejected')
		self.assertEqual(Assignment.objects.filter(job=self.job, status='pending').count(), 1)
		self.assertEqual(self.driver_events('job_offer'), [self.driver_a.id, self.driver_b.id])
		self.assertEqual(self.driver_events('offer_expired'), [])

	def test_cancel_beats_accept(self):
		stale = Assignment.objects.get(pk=self.assignment_id)
		with self.captureOnCommitCallbacks(execute=True):
			self.coordinator.cancel_job(self.job.id, 'Changed my mind')

		self.accept_with(stale)

		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'cancelled')
		self.assertFalse(Assignment.objects.filter(job=self.job, status='pending').exists())
		self.assertEqual(self.driver_events('job_cancelled'), [self.driver_a.id])
		self.assert_never_bound()

	def test_failed_offer_write_rolls_back_the_whole_pass(self):
		job = self.make_job()
		candidates = self.coordinator.find_candidates(job)
		self.assertEqual([c.driver_id for c in candidates], [self.driver_b.id])
		self.notifier.reset_mock()

		with patch.object(self.repository, 'create_assignment', side_effect=DatabaseError('disk full')):
			with self.assertRaises(DatabaseError):
				self.assignments.create_assignments(job, candidates, now=self.now)

		job.refresh_from_db()
		self.assertEqual(job.matching_pass, 0)
		self.assertFalse(RankedCandidate.objects.filter(job=job).exists())
		self.assertFalse(Assignment.objects.filter(job=job).exists())
		self.notifier.notify_driver.assert_not_called()

		self.assertEqual(len(self.assignments.create_assignments(job, candidates, now=self.now)), 1)
		job.refresh_from_db()
		self.assertEqual(job.matching_pass, 1)
