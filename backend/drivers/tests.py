from datetime import timedelta

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User
from jobs.models import Assignment, Geofence, MatchingRequest
from services.dispatch import build_coordinator
from .models import DriverLocation, DriverProfile
from .services import DriverStatusError, refresh_driver_metrics, update_driver_location, update_driver_status
from .views import (
	DriverCurrentJobView,
	DriverCurrentOfferView,
	DriverJobHistoryView,
	DriverLocationUpdateView,
	DriverProfileView,
	DriverStatusView,
)

PICKUP = (47.5615, -52.7126)


class DriverTestCase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.customer = User.objects.create_user(
			username='customer',
			password='pass1234',
			role='customer',
			phone_number='7090000000'
		)
		self.user = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			role='driver',
			phone_number='7090000001'
		)
		self.profile = DriverProfile.objects.create(
			user=self.user,
			vehicle_number='NL-1001',
			status='available',
			is_verified=True,
			current_latitude=PICKUP[0] + 0.01,
			current_longitude=PICKUP[1],
			last_location_update=timezone.now(),
		)
		self.job = MatchingRequest.objects.create(
			kind='order',
			customer=self.customer,
			service_type='food_delivery',
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			max_distance_km=10,
		)

	def call(self, view_class, method, data=None, user=None):
		request = getattr(self.factory, method)('/api/driver/', data or {}, format='json')
		force_authenticate(request, user=user or self.user)
		return view_class.as_view()(request)

	def offer_job(self, now=None):
		coordinator = build_coordinator()
		candidates = coordinator.find_candidates(self.job)
		[assignment_id] = coordinator.assignments.create_assignments(self.job, candidates, now=now)
		return assignment_id

	def accept_job(self):
		assignment_id = self.offer_job()
		build_coordinator().respond(assignment_id, 'accept', self.profile.id)
		self.job.refresh_from_db()


class DriverStatusTests(DriverTestCase):
	def test_go_offline_and_back(self):
		response = self.call(DriverStatusView, 'put', {'status': 'offline'})

		self.assertEqual(response.status_code, 200)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, 'offline')
		self.assertEqual(self.call(DriverStatusView, 'get').data['status'], 'offline')

	def test_busy_is_not_a_client_status(self):
		self.assertEqual(self.call(DriverStatusView, 'put', {'status': 'busy'}).status_code, 400)

	def test_cannot_change_status_during_a_job(self):
		self.accept_job()

		response = self.call(DriverStatusView, 'put', {'status': 'offline'})

		self.assertEqual(response.status_code, 409)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, 'busy')

	def test_customers_are_turned_away(self):
		response = self.call(DriverStatusView, 'get', user=self.customer)
		self.assertEqual(response.status_code, 403)

	def test_unknown_status(self):
		with self.assertRaises(DriverStatusError):
			update_driver_status(self.profile, 'napping')


class DriverProfileTests(DriverTestCase):
	def test_update_preferences(self):
		response = self.call(DriverProfileView, 'patch', {'preferred_max_distance_km': 5, 'rating': 1})

		self.assertEqual(response.status_code, 200)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.preferred_max_distance_km, 5)
		self.assertEqual(self.profile.rating, 5.0)


class DriverLocationTests(DriverTestCase):
	def test_location_report_triggers_pickup_geofence(self):
		self.accept_job()

		response = self.call(DriverLocationUpdateView, 'post', {
			'latitude': PICKUP[0],
			'longitude': PICKUP[1],
			'speed_kmh': 12,
			'job_id': self.job.id,
		})

		self.assertEqual(response.status_code, 200)
		self.assertEqual([e['type'] for e in response.data['geofence_events']], ['pickup'])
		self.job.refresh_from_db()
		self.assertEqual(self.job.status, 'driver_arrived')
		self.assertFalse(Geofence.objects.get(job=self.job).is_active)
		self.assertEqual(DriverLocation.objects.get(driver=self.profile).job, self.job)

	def test_out_of_range_report_is_rejected(self):
		response = self.call(DriverLocationUpdateView, 'post', {'latitude': 100, 'longitude': 0})

		self.assertEqual(response.status_code, 400)
		self.assertFalse(DriverLocation.objects.exists())

	def test_history_is_bounded(self):
		start = timezone.now()
		for minute in range(6):
			update_driver_location(
				self.profile, PICKUP[0], PICKUP[1],
				recorded_at=start + timedelta(minutes=minute), history_limit=4
			)

		times = list(DriverLocation.objects.filter(driver=self.profile).values_list('recorded_at', flat=True))
		self.assertEqual(times, [start + timedelta(minutes=m) for m in (5, 4, 3, 2)])


class DriverOfferAndJobViewTests(DriverTestCase):
	def test_current_offer_has_countdown(self):
		self.offer_job(now=timezone.now() - timedelta(seconds=30))

		response = self.call(DriverCurrentOfferView, 'get')

		self.assertTrue(response.data['has_offer'])
		self.assertEqual(response.data['offer']['job']['id'], self.job.id)
		self.assertTrue(85 <= response.data['offer']['seconds_remaining'] <= 90)

	def test_expired_offer_is_not_shown(self):
		self.offer_job(now=timezone.now() - timedelta(minutes=5))

		self.assertFalse(self.call(DriverCurrentOfferView, 'get').data['has_offer'])

	def test_current_job_and_history(self):
		self.assertEqual(self.call(DriverCurrentJobView, 'get').status_code, 404)

		self.accept_job()
		self.assertEqual(self.call(DriverCurrentJobView, 'get').data['id'], self.job.id)

		build_coordinator().complete_job(self.job.id, self.profile.id)
		history = self.call(DriverJobHistoryView, 'get').data
		self.assertEqual(history['count'], 1)
		self.assertEqual(history['jobs'][0]['status'], 'delivered')


class DriverMetricsTests(DriverTestCase):
	def test_rates_follow_offer_and_job_history(self):
		now = timezone.now()
		for index, status in enumerate(['accepted', 'rejected', 'expired', 'pending']):
			job = MatchingRequest.objects.create(
				kind='order',
				customer=self.customer,
				service_type='food_delivery',
				pickup_latitude=PICKUP[0],
				pickup_longitude=PICKUP[1],
				driver=self.profile if status == 'accepted' else None,
				status='delivered' if status == 'accepted' else 'searching',
			)
			Assignment.objects.create(
				job=job,
				driver=self.profile,
				status=status,
				distance_km=1,
				eta_minutes=2,
				created_at=now,
				expires_at=now + timedelta(seconds=120),
			)

		update = refresh_driver_metrics(self.profile.id, response_time_seconds=12)

		self.assertAlmostEqual(update['acceptance_rate'], 1 / 3)
		self.assertEqual(update['completion_rate'], 1.0)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.last_response_time_seconds, 12.0)
