from datetime import timedelta

from jobs.models import Assignment

from .base import DispatchTestCase, NEARBY, PICKUP


class MatchFinderTests(DispatchTestCase):
	def test_st_johns_scenario(self):
		driver_a = self.make_driver('driver_a', PICKUP)
		driver_b = self.make_driver('driver_b', NEARBY)
		job = self.make_job()

		candidates = self.coordinator.find_candidates(job)

		self.assertEqual([c.driver_id for c in candidates], [driver_a.id, driver_b.id])
		self.assertTrue(all(c.distance_km <= 10 for c in candidates))
		self.assertEqual(candidates[0].eta_minutes, 0)
		self.assertEqual(candidates[1].eta_minutes, 2)

	def test_only_eligible_drivers_are_returned(self):
		good = self.make_driver('good')
		self.make_driver('offline', status='offline')
		self.make_driver('unverified', is_verified=False)
		self.make_driver('stale', last_location_update=self.now - timedelta(minutes=11))
		self.make_driver('far', (PICKUP[0] + 0.2, PICKUP[1]))
		self.make_driver('no_location', current_latitude=None, current_longitude=None)
		self.make_driver('rideshare_only', service_type='rideshare')

		candidates = self.coordinator.find_candidates(self.make_job())

		self.assertEqual([c.driver_id for c in candidates], [good.id])

	def test_drivers_busy_elsewhere_are_skipped(self):
		on_job = self.make_driver('on_job')
		with_offer = self.make_driver('with_offer')
		free = self.make_driver('free')

		other = self.make_job()
		other.driver = on_job
		other.status = 'assigned'
		other.save()
		Assignment.objects.create(
			job=self.make_job(),
			driver=with_offer,
			distance_km=0,
			eta_minutes=0,
			created_at=self.now,
			expires_at=self.now + timedelta(seconds=120),
		)

		candidates = self.coordinator.find_candidates(self.make_job())

		self.assertEqual([c.driver_id for c in candidates], [free.id])

	def test_radius_and_limit(self):
		near = self.make_driver('near', PICKUP)
		self.make_driver('mid', (PICKUP[0] + 0.03, PICKUP[1]))  # ~3.3 km
		job = self.make_job()

		self.assertEqual([c.driver_id for c in self.coordinator.find_candidates(job, radius_km=2)], [near.id])
		self.assertEqual(len(self.coordinator.find_candidates(job, limit=1)), 1)
		self.assertEqual(len(self.coordinator.find_candidates(job)), 2)

	def test_no_drivers_is_an_empty_list(self):
		self.assertEqual(self.coordinator.find_candidates(self.make_job()), [])

	def test_drivers_who_declined_are_not_asked_again(self):
		driver_a = self.make_driver('driver_a')
		driver_b = self.make_driver('driver_b', NEARBY)
		job = self.make_job()
		[assignment_id] = self.start_matching(job)

		self.assignments.respond_to_assignment(assignment_id, 'reject', driver_a.id, now=self.now)

		self.assertEqual([c.driver_id for c in self.coordinator.find_candidates(job)], [])
		# driver_b holds the pending offer now
		self.assertTrue(Assignment.objects.filter(job=job, driver=driver_b, status='pending').exists())

	def test_search_wraps_across_the_antimeridian(self):
		# pickup just west of the date line, one driver just across it
		east = self.make_driver('east', (-16.5, 179.99))
		west = self.make_driver('west', (-16.5, -179.99))
		self.make_driver('far_west', (-16.5, -179.5))
		job = self.make_job(pickup_latitude=-16.5, pickup_longitude=179.995)

		candidates = self.coordinator.find_candidates(job)

		self.assertEqual(sorted(c.driver_id for c in candidates), sorted([east.id, west.id]))
		self.assertTrue(all(c.distance_km < 2 for c in candidates))
