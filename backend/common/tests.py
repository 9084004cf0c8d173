import math

from django.test import SimpleTestCase

from common.utils import calculate_distance, distance_km, eta_minutes, validate_coordinates


class GeoUtilsTests(SimpleTestCase):
	def test_distance_between_st_johns_points(self):
		self.assertEqual(distance_km((47.5615, -52.7126), (47.5615, -52.7126)), 0)
		self.assertAlmostEqual(distance_km((47.5615, -52.7126), (47.5700, -52.7200)), 1.096, places=2)

	def test_one_degree_of_latitude(self):
		self.assertAlmostEqual(distance_km((0, 0), (1, 0)), 111.19, places=1)
		self.assertAlmostEqual(calculate_distance(0, 0, 1, 0), 111195, delta=5)

	def test_distance_is_symmetric(self):
		a, b = (47.5615, -52.7126), (45.4215, -75.6972)
		self.assertAlmostEqual(distance_km(a, b), distance_km(b, a))

	def test_eta_rounds_up(self):
		self.assertEqual(eta_minutes(0), 0)
		self.assertEqual(eta_minutes(0.1), 1)
		self.assertEqual(eta_minutes(1.096), 2)
		self.assertEqual(eta_minutes(30, avg_speed_kmh=60), 30)

	def test_eta_rejects_bad_input(self):
		with self.assertRaises(ValueError):
			eta_minutes(1, avg_speed_kmh=0)
		with self.assertRaises(ValueError):
			eta_minutes(-1)
		with self.assertRaises(ValueError):
			eta_minutes(math.nan)

	def test_validate_coordinates(self):
		self.assertEqual(validate_coordinates('47.5', -52), (47.5, -52.0))
		for lat, lon in [(91, 0), (0, 181), (math.nan, 0), (0, math.inf), (None, 0), ('north', 0)]:
			with self.assertRaises(ValueError):
				validate_coordinates(lat, lon)
