from django.test import SimpleTestCase, override_settings

from services.dispatch.policy import DispatchPolicy, load_policy


class DispatchPolicyTests(SimpleTestCase):
	def test_defaults_are_valid(self):
		DispatchPolicy().validate()

	def test_weights_must_sum_to_one(self):
		policy = DispatchPolicy(weights={
			'distance': 0.5, 'rating': 0.5, 'completion_rate': 0.5,
			'response_time': 0.0, 'availability': 0.0,
		})
		with self.assertRaises(ValueError):
			policy.validate()

	def test_missing_weight_is_rejected(self):
		with self.assertRaises(ValueError):
			DispatchPolicy(weights={'distance': 1.0}).validate()

	def test_backoff_is_exponential_and_capped(self):
		policy = DispatchPolicy()
		self.assertEqual(
			[policy.backoff_seconds(attempt) for attempt in range(1, 7)],
			[10, 20, 40, 80, 120, 120],
		)

	def test_search_radius_widens_per_attempt_up_to_max_distance(self):
		policy = DispatchPolicy()
		self.assertEqual(policy.search_radius_km(1), 10.0)
		self.assertEqual(policy.search_radius_km(2), 12.5)
		self.assertEqual(policy.search_radius_km(2, max_distance_km=11), 11)
		self.assertEqual(policy.search_radius_km(5), 15.0)

	@override_settings(DISPATCH={'OFFER_WINDOW_SECONDS': 45, 'MAX_ATTEMPTS': 5})
	def test_load_policy_reads_settings(self):
		policy = load_policy()
		self.assertEqual(policy.offer_window_seconds, 45)
		self.assertEqual(policy.max_attempts, 5)
		self.assertEqual(policy.candidate_limit, 20)

	def test_load_policy_applies_overrides(self):
		policy = load_policy({'location_history_limit': 3})
		self.assertEqual(policy.location_history_limit, 3)
		self.assertFalse(policy.schedule_offer_timers)

	@override_settings(DISPATCH={'OFFER_WINDOW_SECONDS': 0})
	def test_load_policy_validates(self):
		with self.assertRaises(ValueError):
			load_policy()
