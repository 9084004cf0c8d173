from decimal import Decimal

from django.test import SimpleTestCase

from jobs.models import MatchingRequest
from services.dispatch.exceptions import ScoringError
from services.dispatch.policy import DispatchPolicy
from services.dispatch.scoring import CandidateScorer, DriverSnapshot

PICKUP = (47.5615, -52.7126)


def make_job(**fields):
	defaults = dict(
		id=1,
		kind='order',
		service_type='food_delivery',
		pickup_latitude=PICKUP[0],
		pickup_longitude=PICKUP[1],
		max_distance_km=10,
		min_rating=3.0,
	)
	defaults.update(fields)
	return MatchingRequest(**defaults)


def snapshot(driver_id, lat=PICKUP[0], lon=PICKUP[1], **fields):
	return DriverSnapshot(driver_id=driver_id, latitude=lat, longitude=lon, **fields)


class CandidateScorerTests(SimpleTestCase):
	def setUp(self):
		self.scorer = CandidateScorer(DispatchPolicy())
		self.job = make_job()

	def test_closer_driver_ranks_first(self):
		driver_a = snapshot(1, 47.5615, -52.7126, rating=4.8)
		driver_b = snapshot(2, 47.5700, -52.7200, rating=4.8)

		ranked = self.scorer.rank(self.job, [driver_b, driver_a])

		self.assertEqual([c.driver_id for c in ranked], [1, 2])
		self.assertEqual(ranked[0].distance_km, 0)
		self.assertEqual(ranked[0].scores['distance'], 1.0)
		self.assertAlmostEqual(ranked[1].distance_km, 1.1, delta=0.1)
		self.assertGreater(ranked[0].total_score, ranked[1].total_score)

	def test_score_never_increases_with_distance(self):
		totals = []
		for step in range(10):
			candidate = self.scorer.score(self.job, snapshot(1, PICKUP[0] + step * 0.008, PICKUP[1]))
			totals.append(candidate.total_score)

		self.assertEqual(totals, sorted(totals, reverse=True))

	def test_driver_beyond_max_distance_is_excluded(self):
		far = snapshot(1, PICKUP[0] + 0.1, PICKUP[1])  # ~11 km north

		self.assertIsNone(self.scorer.score(self.job, far))
		self.assertEqual(self.scorer.rank(self.job, [far]), [])

	def test_rating_below_minimum_is_excluded(self):
		self.assertIsNone(self.scorer.score(self.job, snapshot(1, rating=2.9)))
		self.assertIsNotNone(self.scorer.score(self.job, snapshot(1, rating=3.0)))

	def test_unavailable_or_busy_driver_is_excluded(self):
		self.assertIsNone(self.scorer.score(self.job, snapshot(1, is_available=False)))
		self.assertIsNone(self.scorer.score(self.job, snapshot(1, has_active_job=True)))

	def test_vehicle_and_service_requirements(self):
		job = make_job(vehicle_type='van')

		self.assertIsNone(self.scorer.score(job, snapshot(1, vehicle_type='car')))
		self.assertIsNotNone(self.scorer.score(job, snapshot(1, vehicle_type='van')))
		self.assertIsNone(self.scorer.score(self.job, snapshot(1, service_type='rideshare')))
		self.assertIsNotNone(self.scorer.score(self.job, snapshot(1, service_type='both')))

	def test_driver_preferences_are_respected(self):
		job = make_job(estimated_value=Decimal('12.50'))

		self.assertIsNone(self.scorer.score(job, snapshot(1, min_job_value=Decimal('20.00'))))
		self.assertIsNone(self.scorer.score(job, snapshot(1, max_job_value=Decimal('10.00'))))
		self.assertIsNone(
			self.scorer.score(self.job, snapshot(1, PICKUP[0] + 0.02, PICKUP[1], preferred_max_distance_km=1))
		)
		self.assertIsNotNone(self.scorer.score(job, snapshot(1, min_job_value=Decimal('10.00'))))

	def test_factor_formulas(self):
		candidate = self.scorer.score(
			self.job,
			snapshot(1, rating=4.0, completion_rate=0.9, last_response_time_seconds=60),
		)

		self.assertAlmostEqual(candidate.scores['rating'], 0.8)
		self.assertAlmostEqual(candidate.scores['completion_rate'], 0.9)
		self.assertAlmostEqual(candidate.scores['response_time'], 0.5)
		self.assertEqual(candidate.scores['availability'], 1.0)
		self.assertAlmostEqual(
			candidate.total_score,
			0.35 * 1.0 + 0.25 * 0.8 + 0.20 * 0.9 + 0.10 * 0.5 + 0.10 * 1.0,
		)

	def test_slow_responders_bottom_out_at_zero(self):
		candidate = self.scorer.score(self.job, snapshot(1, last_response_time_seconds=600))
		self.assertEqual(candidate.scores['response_time'], 0.0)

	def test_ties_break_on_distance_then_driver_id(self):
		ranked = self.scorer.rank(self.job, [snapshot(9), snapshot(3), snapshot(5)])
		self.assertEqual([c.driver_id for c in ranked], [3, 5, 9])

	def test_malformed_snapshot_only_drops_that_driver(self):
		broken = snapshot(1, lat=float('nan'))

		with self.assertRaises(ScoringError):
			self.scorer.score(self.job, broken)

		ranked = self.scorer.rank(self.job, [broken, snapshot(2, rating='n/a'), snapshot(3)])
		self.assertEqual([c.driver_id for c in ranked], [3])

	def test_weights_come_from_policy(self):
		distance_only = CandidateScorer(DispatchPolicy(weights={
			'distance': 1.0, 'rating': 0.0, 'completion_rate': 0.0,
			'response_time': 0.0, 'availability': 0.0,
		}))

		candidate = distance_only.score(self.job, snapshot(1, rating=3.0, completion_rate=0.1))
		self.assertEqual(candidate.total_score, 1.0)

	def test_default_max_distance_applies_when_job_has_none(self):
		job = make_job(max_distance_km=None)
		self.assertEqual(self.scorer.max_distance_for(job), 15.0)
		self.assertIsNotNone(self.scorer.score(job, snapshot(1, PICKUP[0] + 0.1, PICKUP[1])))
