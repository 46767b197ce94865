#!/usr/bin/env python3
"""Test suite for coordinate transformations"""

import unittest

import numpy as np

from pyrtk.coordinate.transforms import (covecef2enu, covenu2ecef, ecef2enu, ecef2llh,
                                         enu2ecef, enu2ecef_vector, enu_rotation, geodist,
                                         llh2ecef, satazel)
from pyrtk.core.constants import RE_WGS84


class TestGeodetic(unittest.TestCase):
    """ECEF <-> geodetic"""

    def test_equator_prime_meridian(self):
        xyz = llh2ecef(np.array([0.0, 0.0, 0.0]))
        np.testing.assert_allclose(xyz, [RE_WGS84, 0.0, 0.0], atol=1e-6)

    def test_known_point(self):
        llh = np.array([np.radians(35.0), np.radians(139.0), 50.0])
        xyz = llh2ecef(llh)
        back = ecef2llh(xyz)
        np.testing.assert_allclose(back[:2], llh[:2], atol=1e-11)
        self.assertAlmostEqual(back[2], 50.0, places=4)

    def test_southern_hemisphere(self):
        llh = np.array([np.radians(-33.9), np.radians(-70.7), 500.0])
        back = ecef2llh(llh2ecef(llh))
        np.testing.assert_allclose(back, llh, atol=1e-6)

    def test_pole(self):
        llh = ecef2llh(np.array([0.0, 0.0, 6356752.314]))
        self.assertAlmostEqual(llh[0], np.pi / 2)
        self.assertAlmostEqual(llh[2], 0.0, places=2)


class TestLocalFrame(unittest.TestCase):

    def setUp(self):
        self.llh = np.array([np.radians(45.0), np.radians(10.0), 100.0])
        self.origin = llh2ecef(self.llh)

    def test_rotation_orthonormal(self):
        R = enu_rotation(self.llh[0], self.llh[1])
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)

    def test_up_points_out(self):
        up = enu2ecef_vector(np.array([0.0, 0.0, 1.0]), self.llh)
        self.assertGreater(up @ self.origin, 0.0)

    def test_enu_round_trip(self):
        enu = np.array([12.0, -5.0, 3.0])
        xyz = enu2ecef(enu, self.llh)
        np.testing.assert_allclose(ecef2enu(xyz, self.llh), enu, atol=1e-6)

    def test_covariance_round_trip(self):
        P = np.array([[4.0, 1.0, 0.5], [1.0, 9.0, 0.2], [0.5, 0.2, 16.0]])
        Penu = covecef2enu(self.llh, P)
        self.assertAlmostEqual(np.trace(Penu), np.trace(P))
        np.testing.assert_allclose(covenu2ecef(self.llh, Penu), P, atol=1e-9)


class TestLineOfSight(unittest.TestCase):

    def test_geodist(self):
        r, e = geodist(np.array([3.0, 4.0, 0.0]), np.zeros(3))
        self.assertEqual(r, 5.0)
        np.testing.assert_allclose(e, [0.6, 0.8, 0.0])

    def test_zenith(self):
        llh = np.array([np.radians(20.0), np.radians(-30.0), 0.0])
        up = enu2ecef_vector(np.array([0.0, 0.0, 1.0]), llh)
        az, el = satazel(llh, up)
        self.assertAlmostEqual(el, np.pi / 2)

    def test_north_east(self):
        llh = np.array([np.radians(20.0), np.radians(-30.0), 0.0])
        east = enu2ecef_vector(np.array([1.0, 0.0, 0.0]), llh)
        az, el = satazel(llh, east)
        self.assertAlmostEqual(az, np.pi / 2)
        self.assertAlmostEqual(el, 0.0)
        north = enu2ecef_vector(np.array([0.0, 1.0, 0.0]), llh)
        az, _ = satazel(llh, north)
        self.assertAlmostEqual(np.cos(az), 1.0)


if __name__ == '__main__':
    unittest.main()
