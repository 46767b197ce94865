#!/usr/bin/env python3
"""Test suite for solution logs"""

import json
import os
import tempfile
import unittest
from dataclasses import replace

import numpy as np

from pyrtk.core.config import ProcessingConfig
from pyrtk.core.data_structures import NoSolution, SignalId
from pyrtk.core.exceptions import ReasonCode
from pyrtk.io.solution_log import (COLUMNS, read_solutions, satellites_of, solution_to_record,
                                   solutions_to_dataframe, write_solutions)
from pyrtk.navigation.session import NavigationSession
from pyrtk.utils.simulation import SyntheticScenario


class TestSolutionLog(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        scenario = SyntheticScenario(config=ProcessingConfig(ionosphere_model='off'))
        session = NavigationSession(scenario.provider, scenario.config)
        cls.results = list(session.process(scenario.epochs(3)))
        cls.results.append(NoSolution(scenario.t0 + 3.0, ReasonCode.INSUFFICIENT_OBSERVATIONS,
                                      "3 < 4", predicted_position=cls.results[-1].position))

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def path(self, name):
        return os.path.join(self.tmpdir.name, name)

    def test_record(self):
        record = solution_to_record(self.results[0])
        self.assertEqual(list(record), COLUMNS)
        self.assertEqual(record['week'], 2300)
        self.assertAlmostEqual(record['tow'], 2 * 86400.0)
        self.assertAlmostEqual(record['lat_deg'], 35.0, places=5)
        self.assertEqual(record['num_sats'], 8)
        self.assertEqual(satellites_of(record['satellites_used'])[0], 'G01')
        self.assertIsNone(record['reason'])

    def test_no_solution_record(self):
        record = solution_to_record(self.results[-1])
        self.assertEqual(record['status'], 'NoSolution')
        self.assertEqual(record['reason'], 'insufficient_observations')
        self.assertIsNone(record['lat_deg'])
        self.assertAlmostEqual(record['x'], float(self.results[-2].position[0]))

    def test_dataframe(self):
        df = solutions_to_dataframe(self.results)
        self.assertEqual(len(df), 4)
        self.assertEqual(list(df.columns), COLUMNS)

    def test_csv_round_trip(self):
        path = write_solutions(self.path('out.csv'), self.results)
        df = read_solutions(path)
        self.assertEqual(len(df), 4)
        self.assertEqual(df['status'].iloc[-1], 'NoSolution')
        self.assertEqual(df['reason'].iloc[-1], 'insufficient_observations')
        self.assertAlmostEqual(df['x'].iloc[0], float(self.results[0].position[0]), places=3)
        self.assertEqual(len(satellites_of(df['satellites_used'].iloc[0])), 8)
        self.assertEqual(satellites_of(df['satellites_excluded'].iloc[0]), [])
        self.assertTrue(np.isnan(df['lat_deg'].iloc[-1]))

    def test_rejected_signals_column(self):
        screened = replace(self.results[1], rejected_signals=(SignalId('G05', 'L1', 'C'),
                                                              SignalId('G02', 'L1', 'C')))
        record = solution_to_record(screened)
        self.assertEqual(satellites_of(record['rejected_signals']), ['G02:L1C', 'G05:L1C'])
        self.assertEqual(satellites_of(solution_to_record(self.results[0])['rejected_signals']), [])

        path = write_solutions(self.path('screened.csv'), [self.results[0], screened])
        df = read_solutions(path)
        self.assertEqual(satellites_of(df['rejected_signals'].iloc[0]), [])
        self.assertEqual(satellites_of(df['rejected_signals'].iloc[1]), ['G02:L1C', 'G05:L1C'])

    def test_jsonl(self):
        path = write_solutions(self.path('out.jsonl'), self.results)
        with open(path) as fh:
            lines = [json.loads(line) for line in fh]
        self.assertEqual(len(lines), 4)
        self.assertEqual(lines[-1]['status'], 'NoSolution')
        self.assertIsNone(lines[-1]['lat_deg'])
        df = read_solutions(path)
        self.assertEqual(list(df.columns), COLUMNS)
        self.assertAlmostEqual(df['height'].iloc[0], 50.0, places=1)

    def test_unsupported_suffix(self):
        with self.assertRaises(ValueError):
            write_solutions(self.path('out.pos'), self.results)
        with open(self.path('out.pos'), 'w') as fh:
            fh.write('x')
        with self.assertRaises(ValueError):
            read_solutions(self.path('out.pos'))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            read_solutions(self.path('missing.csv'))


if __name__ == '__main__':
    unittest.main()
