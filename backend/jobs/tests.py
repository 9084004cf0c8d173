from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User
from drivers.models import DriverProfile
from services.dispatch import build_coordinator
from .models import Assignment, MatchingRequest, ReassignmentQueueItem
from .tasks import expire_assignment_task, process_reassignment_queue_task, scan_expired_assignments_task
from .views import (
	assign_job,
	cancel_job,
	complete_job,
	create_job,
	find_drivers,
	get_job,
	matching_health,
	matching_statistics,
	process_reassignment_queue,
	reassignment_queue,
	respond_to_assignment,
	start_job,
)


class JobApiTestCase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.customer = User.objects.create_user(
			username='customer',
			password='pass1234',
			role='customer',
			phone_number='7090000000'
		)
		self.ops = User.objects.create_user(
			username='ops',
			password='ops12345',
			role='admin'
		)
		self.driver_one = self.make_driver('driver_one', 'NL-1001', 47.5615, -52.7126)
		self.driver_two = self.make_driver('driver_two', 'NL-1002', 47.5700, -52.7200)

	def make_driver(self, username, vehicle_number, lat, lon):
		user = User.objects.create_user(username=username, password='driver1234', role='driver')
		return DriverProfile.objects.create(
			user=user,
			vehicle_number=vehicle_number,
			status='available',
			is_verified=True,
			current_latitude=lat,
			current_longitude=lon,
			last_location_update=timezone.now(),
			rating=4.8,
		)

	def call(self, view, method, user, data=None, **kwargs):
		request = getattr(self.factory, method)('/api/', data or {}, format='json')
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def submit_order(self, **fields):
		data = {
			'kind': 'order',
			'pickup_latitude': 47.5615,
			'pickup_longitude': -52.7126,
			'pickup_address': 'Water St',
			'destination_latitude': 47.5650,
			'destination_longitude': -52.7000,
			'max_distance_km': 10,
		}
		data.update(fields)
		return self.call(create_job, 'post', self.customer, data)


class JobFlowTests(JobApiTestCase):
	def test_create_job_offers_to_nearest_driver(self):
		response = self.submit_order()

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['job']['status'], 'searching')
		self.assertEqual(response.data['driver_candidates'], 2)
		offer = Assignment.objects.get(pk=response.data['assignment_ids'][0])
		self.assertEqual(offer.driver, self.driver_one)

	def test_create_ride_without_destination_is_rejected(self):
		response = self.submit_order(kind='ride', destination_latitude=None, destination_longitude=None)

		self.assertEqual(response.status_code, 400)
		self.assertFalse(MatchingRequest.objects.exists())

	def test_full_order_lifecycle(self):
		job_id = self.submit_order().data['job']['id']
		offer = Assignment.objects.get(job_id=job_id, status='pending')

		response = self.call(respond_to_assignment, 'post', self.driver_one.user, {'response': 'accept'},
			assignment_id=offer.id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['assignment']['status'], 'accepted')

		response = self.call(get_job, 'get', self.customer, job_id=job_id)
		self.assertEqual(response.data['status'], 'assigned')
		self.assertEqual(response.data['driver']['id'], self.driver_one.id)
		self.assertEqual([g['type'] for g in response.data['geofences']], ['pickup'])

		response = self.call(start_job, 'post', self.driver_one.user, job_id=job_id)
		self.assertEqual(response.data['job']['status'], 'in_progress')

		response = self.call(complete_job, 'post', self.driver_one.user, job_id=job_id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['job']['status'], 'delivered')

	def test_reject_moves_offer_to_next_driver(self):
		job_id = self.submit_order().data['job']['id']
		offer = Assignment.objects.get(job_id=job_id, status='pending')

		response = self.call(respond_to_assignment, 'post', self.driver_one.user,
			{'response': 'reject', 'reason': 'Too far'}, assignment_id=offer.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['assignment']['status'], 'rejected')
		self.assertEqual(Assignment.objects.get(job_id=job_id, status='pending').driver, self.driver_two)

	def test_response_errors_map_to_status_codes(self):
		job_id = self.submit_order().data['job']['id']
		offer = Assignment.objects.get(job_id=job_id, status='pending')

		response = self.call(respond_to_assignment, 'post', self.driver_two.user, {'response': 'accept'},
			assignment_id=offer.id)
		self.assertEqual(response.status_code, 403)

		response = self.call(respond_to_assignment, 'post', self.driver_one.user, {'response': 'accept'},
			assignment_id=999999)
		self.assertEqual(response.status_code, 404)

		response = self.call(respond_to_assignment, 'post', self.driver_one.user, {'response': 'maybe'},
			assignment_id=offer.id)
		self.assertEqual(response.status_code, 400)

		self.call(respond_to_assignment, 'post', self.driver_one.user, {'response': 'accept'},
			assignment_id=offer.id)
		response = self.call(respond_to_assignment, 'post', self.driver_one.user, {'response': 'accept'},
			assignment_id=offer.id)
		self.assertEqual(response.status_code, 409)

	def test_customer_cancels(self):
		job_id = self.submit_order().data['job']['id']

		response = self.call(cancel_job, 'post', self.customer, {'reason': 'Ordered twice'}, job_id=job_id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['job']['status'], 'cancelled')
		self.assertFalse(Assignment.objects.filter(job_id=job_id, status='pending').exists())

		response = self.call(cancel_job, 'post', self.customer, job_id=job_id)
		self.assertEqual(response.status_code, 409)

	def test_other_customers_cannot_see_or_cancel_job(self):
		job_id = self.submit_order().data['job']['id']
		stranger = User.objects.create_user(username='stranger', password='pass1234', role='customer')

		self.assertEqual(self.call(get_job, 'get', stranger, job_id=job_id).status_code, 404)
		self.assertEqual(self.call(cancel_job, 'post', stranger, job_id=job_id).status_code, 404)
		self.assertEqual(self.call(get_job, 'get', self.ops, job_id=job_id).status_code, 200)


class PermissionTests(JobApiTestCase):
	def test_role_checks(self):
		self.assertEqual(self.call(create_job, 'post', self.driver_one.user, {}).status_code, 403)
		self.assertEqual(
			self.call(respond_to_assignment, 'post', self.customer, {'response': 'accept'}, assignment_id=1).status_code,
			403
		)
		self.assertEqual(self.call(find_drivers, 'post', self.customer, {'job_id': 1}).status_code, 403)
		self.assertEqual(self.call(matching_health, 'get', self.driver_one.user).status_code, 403)
		self.assertEqual(self.call(process_reassignment_queue, 'post', self.customer).status_code, 403)

	def test_anonymous_is_rejected(self):
		request = self.factory.post('/api/jobs/', {}, format='json')
		self.assertIn(create_job(request).status_code, (401, 403))


class MatchingOpsTests(JobApiTestCase):
	def setUp(self):
		super().setUp()
		self.job = MatchingRequest.objects.create(
			kind='order',
			customer=self.customer,
			service_type='food_delivery',
			pickup_latitude=47.5615,
			pickup_longitude=-52.7126,
			max_distance_km=10,
		)

	def test_find_drivers_does_not_create_offers(self):
		response = self.call(find_drivers, 'post', self.ops, {'job_id': self.job.id})

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 2)
		self.assertEqual(response.data['candidates'][0]['driver_id'], self.driver_one.id)
		self.assertFalse(Assignment.objects.exists())

	def test_find_drivers_for_unknown_job(self):
		self.assertEqual(self.call(find_drivers, 'post', self.ops, {'job_id': 999999}).status_code, 404)

	def test_assign_job_then_second_pass_conflicts(self):
		response = self.call(assign_job, 'post', self.ops, {'job_id': self.job.id, 'limit': 1})

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['candidates'], 1)
		self.assertEqual(len(response.data['assignment_ids']), 1)

		response = self.call(assign_job, 'post', self.ops, {'job_id': self.job.id})
		self.assertEqual(response.status_code, 409)

	def test_assign_without_candidates_is_a_bad_request(self):
		DriverProfile.objects.update(status='offline')

		response = self.call(assign_job, 'post', self.ops, {'job_id': self.job.id})

		self.assertEqual(response.status_code, 400)

	def test_health_and_statistics(self):
		response = self.call(matching_health, 'get', self.ops)
		self.assertEqual(response.status_code, 200)
		self.assertIn(response.data['status'], ('HEALTHY', 'WARNING', 'CRITICAL'))

		request = self.factory.get('/api/matching/statistics/', {'hours': 12})
		force_authenticate(request, user=self.ops)
		response = matching_statistics(request)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['time_range']['hours'], 12)
		self.assertEqual(response.data['jobs']['total'], 1)

		for hours in ('0', '5000', 'abc'):
			request = self.factory.get('/api/matching/statistics/', {'hours': hours})
			force_authenticate(request, user=self.ops)
			self.assertEqual(matching_statistics(request).status_code, 400)

	def test_reassignment_queue_listing_and_tick(self):
		build_coordinator().reassignment.enqueue(self.job, now=timezone.now() - timedelta(minutes=1))

		response = self.call(reassignment_queue, 'get', self.ops)
		self.assertEqual(response.data['count'], 1)
		self.assertEqual(response.data['items'][0]['job_status'], 'searching')

		response = self.call(process_reassignment_queue, 'post', self.ops)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['reassignment']['resolved'], 1)
		self.assertEqual(ReassignmentQueueItem.objects.get(job=self.job).status, 'resolved')


class BackgroundProcessingTests(JobApiTestCase):
	def setUp(self):
		super().setUp()
		self.job = MatchingRequest.objects.create(
			kind='order',
			customer=self.customer,
			service_type='food_delivery',
			pickup_latitude=47.5615,
			pickup_longitude=-52.7126,
			max_distance_km=10,
		)

	def start_offer(self, sent_at):
		coordinator = build_coordinator()
		candidates = coordinator.find_candidates(self.job)
		[assignment_id] = coordinator.assignments.create_assignments(self.job, candidates, now=sent_at)
		return Assignment.objects.get(pk=assignment_id)

	def test_expire_task_is_a_noop_before_deadline(self):
		offer = self.start_offer(timezone.now())

		self.assertFalse(expire_assignment_task(offer.id))
		offer.refresh_from_db()
		self.assertEqual(offer.status, 'pending')

	def test_expire_task_after_deadline_moves_to_next_driver(self):
		offer = self.start_offer(timezone.now() - timedelta(minutes=5))

		self.assertTrue(expire_assignment_task(offer.id))
		offer.refresh_from_db()
		self.assertEqual(offer.status, 'expired')
		self.assertEqual(Assignment.objects.get(job=self.job, status='pending').driver, self.driver_two)

	def test_expire_task_for_unknown_offer(self):
		self.assertFalse(expire_assignment_task(999999))

	def test_scan_task_expires_overdue_offers(self):
		self.start_offer(timezone.now() - timedelta(minutes=5))

		self.assertEqual(scan_expired_assignments_task(), 1)

	def test_process_offer_timeouts_command(self):
		offer = self.start_offer(timezone.now() - timedelta(minutes=5))
		out = StringIO()

		call_command('process_offer_timeouts', stdout=out)

		offer.refresh_from_db()
		self.assertEqual(offer.status, 'expired')
		self.assertIn('Expired 1 offer(s).', out.getvalue())

	def test_process_reassignment_queue_command_and_task(self):
		build_coordinator().reassignment.enqueue(self.job, now=timezone.now() - timedelta(minutes=1))
		out = StringIO()

		call_command('process_reassignment_queue', '--limit', '5', stdout=out)

		self.assertIn('Processed 1 item(s): 1 resolved', out.getvalue())
		self.assertEqual(process_reassignment_queue_task()['processed'], 0)

	def test_cleanup_old_data_dry_run_keeps_rows(self):
		MatchingRequest.objects.filter(pk=self.job.pk).update(
			status='cancelled', created_at=timezone.now() - timedelta(days=40)
		)
		out = StringIO()

		call_command('cleanup_old_data', '--days', '30', '--dry-run', stdout=out)
		self.assertIn('DRY RUN', out.getvalue())
		self.assertTrue(MatchingRequest.objects.filter(pk=self.job.pk).exists())

		call_command('cleanup_old_data', '--days', '30', stdout=StringIO())
		self.assertFalse(MatchingRequest.objects.filter(pk=self.job.pk).exists())
