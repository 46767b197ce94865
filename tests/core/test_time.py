#!/usr/bin/env python3
"""Test suite for GPS time helpers"""

import unittest
from datetime import datetime

from pyrtk.core.time import (datetime2gpst, day_of_year, gpst2datetime, gpst2weektow,
                             weektow2gpst)


class TestGPSTime(unittest.TestCase):

    def test_week_tow(self):
        t = weektow2gpst(2300, 172800.5)
        week, tow = gpst2weektow(t)
        self.assertEqual(week, 2300)
        self.assertAlmostEqual(tow, 172800.5)

    def test_epoch(self):
        self.assertEqual(gpst2datetime(0.0), datetime(1980, 1, 6))
        self.assertEqual(datetime2gpst(datetime(1980, 1, 13)), 604800.0)

    def test_day_of_year(self):
        t = datetime2gpst(datetime(2024, 1, 1, 12, 0, 0))
        self.assertAlmostEqual(day_of_year(t), 1.5)
        t = datetime2gpst(datetime(2024, 12, 31))
        self.assertAlmostEqual(day_of_year(t), 366.0)


if __name__ == '__main__':
    unittest.main()
