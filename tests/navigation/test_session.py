#!/usr/bin/env python3
"""Test suite for the navigation session on a synthetic constellation"""

import os
import tempfile
import unittest

import numpy as np

from pyrtk.core.config import ProcessingConfig
from pyrtk.core.constants import CLIGHT
from pyrtk.core.data_structures import (Epoch, FilterStatus, FixStatus, IntegrityStatus,
                                       NoSolution, Observation, SignalId, Solution)
from pyrtk.core.exceptions import FilterDivergedError, IllConditionedGeometry, ReasonCode
from pyrtk.estimation.state import isb_key
from pyrtk.estimation.strategies import BatchUpdate
from pyrtk.navigation.session import NavigationSession
from pyrtk.utils.simulation import DEFAULT_SKY, SyntheticScenario

FIVE_SATS = {sat: DEFAULT_SKY[sat] for sat in ('G01', 'G02', 'G03', 'G04', 'G05')}


def make_config(**overrides):
    # L1-only data carries no ionosphere
    return ProcessingConfig(ionosphere_model='off', **overrides)


class SessionTestCase(unittest.TestCase):

    def run_session(self, scenario, epochs, **kwargs):
        session = NavigationSession(scenario.provider, scenario.config, **kwargs)
        return session, list(session.process(epochs))

    def assertNearTruth(self, scenario, solution, tol=0.05):
        self.assertIsInstance(solution, Solution)
        err = np.linalg.norm(solution.position - scenario.truth_position(solution.time))
        self.assertLess(err, tol)


class TestConvergence(SessionTestCase):

    def setUp(self):
        self.scenario = SyntheticScenario(config=make_config())
        self.epochs = self.scenario.epochs(30)

    def test_static_receiver(self):
        session, results = self.run_session(self.scenario, self.epochs)
        for sol in results:
            self.assertNearTruth(self.scenario, sol)
        last = results[-1]
        self.assertAlmostEqual(last.clock_bias * CLIGHT, self.scenario.truth_clock(last.time),
                               delta=0.05)
        self.assertAlmostEqual(last.clock_drift * CLIGHT, self.scenario.clock_drift, delta=0.01)
        np.testing.assert_allclose(last.velocity, np.zeros(3), atol=0.01)
        self.assertEqual(last.satellites_used, tuple(sorted(DEFAULT_SKY)))
        self.assertIs(last.integrity, IntegrityStatus.NOMINAL)
        self.assertEqual(session.last_time, last.time)
        self.assertIsNot(session.status, FilterStatus.UNINITIALIZED)

    def test_ambiguities_fixed(self):
        session, results = self.run_session(self.scenario, self.epochs)
        for sol in results[-10:]:
            self.assertIs(sol.fix_status, FixStatus.FIXED)
            self.assertEqual(sol.num_fixed, len(DEFAULT_SKY) - 1)
        self.assertTrue(session.ambiguity_set.is_fixed)

    def test_float_without_resolution(self):
        scenario = SyntheticScenario(config=make_config(ar_mode='off'))
        _, results = self.run_session(scenario, scenario.epochs(5))
        self.assertTrue(all(r.fix_status is FixStatus.FLOAT for r in results))

    def test_code_only(self):
        scenario = SyntheticScenario(config=make_config(use_carrier_phase=False))
        _, results = self.run_session(scenario, scenario.epochs(5, with_phase=False))
        for sol in results:
            self.assertIs(sol.fix_status, FixStatus.NO_FIX)
            self.assertNearTruth(scenario, sol)

    def test_moving_receiver(self):
        scenario = SyntheticScenario(config=make_config(), receiver_velocity=[3.0, -1.0, 2.0])
        _, results = self.run_session(scenario, scenario.epochs(20))
        for sol in results[5:]:
            self.assertNearTruth(scenario, sol)
        np.testing.assert_allclose(results[-1].velocity, [3.0, -1.0, 2.0], atol=0.01)

    def test_batch_strategy_matches(self):
        _, sequential = self.run_session(self.scenario, self.epochs[:10])
        _, batch = self.run_session(self.scenario, self.epochs[:10], strategy=BatchUpdate())
        for a, b in zip(sequential, batch):
            np.testing.assert_allclose(a.position, b.position, atol=1e-4)

    def test_repeatable(self):
        session, first = self.run_session(self.scenario, self.epochs[:10])
        session.reset()
        self.assertIsNone(session.state)
        self.assertIsNone(session.last_time)
        self.assertIs(session.status, FilterStatus.UNINITIALIZED)
        second = list(session.process(self.epochs[:10]))
        for a, b in zip(first, second):
            np.testing.assert_allclose(a.position, b.position, atol=1e-9)
            self.assertIs(a.fix_status, b.fix_status)

    def test_time_must_increase(self):
        session, _ = self.run_session(self.scenario, self.epochs[:3])
        with self.assertRaises(ValueError):
            session.process_epoch(self.epochs[2])
        with self.assertRaises(ValueError):
            session.process_epoch(self.epochs[0])

    def test_state_is_a_copy(self):
        session, _ = self.run_session(self.scenario, self.epochs[:3])
        state = session.state
        state.x[:] = 0.0
        self.assertGreater(np.linalg.norm(session.state.position), 6e6)


class TestFaults(SessionTestCase):

    def test_fault_excluded(self):
        scenario = SyntheticScenario(config=make_config(outlier_threshold=None))
        epochs = scenario.epochs(10)
        epochs[6] = scenario.make_epoch(epochs[6].time, code_faults={'G05': 100.0})
        _, results = self.run_session(scenario, epochs)

        faulty = results[6]
        self.assertIs(faulty.integrity, IntegrityStatus.FAULT_EXCLUDED)
        self.assertEqual(faulty.satellites_excluded, ('G05',))
        self.assertNotIn('G05', faulty.satellites_used)
        self.assertNearTruth(scenario, faulty)
        for sol in results[:6]:
            self.assertIs(sol.integrity, IntegrityStatus.NOMINAL)
        self.assertNearTruth(scenario, results[-1])

    def test_screened_code_reported(self):
        scenario = SyntheticScenario(config=make_config())
        epochs = scenario.epochs(8)
        epochs[6] = scenario.make_epoch(epochs[6].time, code_faults={'G05': 200.0})
        _, results = self.run_session(scenario, epochs)

        screened = results[6]
        self.assertEqual(screened.rejected_signals, (SignalId('G05', 'L1', 'C'),))
        self.assertEqual(screened.to_dict()['rejected_signals'], ['G05:L1C'])
        # the phase row still carries the satellite
        self.assertIn('G05', screened.satellites_used)
        self.assertNearTruth(scenario, screened)
        for sol in results[:6] + results[7:]:
            self.assertEqual(sol.rejected_signals, ())

    def test_suspected_fault_without_exclusion(self):
        scenario = SyntheticScenario(config=make_config(outlier_threshold=None, max_exclusions=0))
        epochs = scenario.epochs(8)
        epochs[6] = scenario.make_epoch(epochs[6].time, code_faults={'G05': 100.0})
        _, results = self.run_session(scenario, epochs)
        self.assertIs(results[6].integrity, IntegrityStatus.SUSPECTED_FAULT)
        self.assertTrue(results[6].suspected_fault)
        self.assertEqual(results[6].satellites_excluded, ())

    def test_ill_conditioned_geometry(self):
        scenario = SyntheticScenario(config=make_config(condition_ceiling=1.0001))
        session = NavigationSession(scenario.provider, scenario.config)
        epochs = scenario.epochs(2)
        with self.assertRaises(IllConditionedGeometry):
            session.process_epoch(epochs[0])
        self.assertIs(session.status, FilterStatus.DIVERGED)
        self.assertIsNone(session.state)
        with self.assertRaises(FilterDivergedError):
            session.process_epoch(epochs[1])
        session.reset()
        self.assertIs(session.status, FilterStatus.UNINITIALIZED)


class TestGeometry(SessionTestCase):

    def test_degraded_geometry(self):
        sky = {'G01': (0.0, 60.0), 'G02': (10.0, 62.0), 'G03': (20.0, 58.0),
               'G04': (5.0, 70.0), 'G05': (15.0, 65.0)}
        scenario = SyntheticScenario(sky=sky, config=make_config(dop_ceiling=5.0))
        approx = scenario.truth_position(scenario.t0)
        _, results = self.run_session(scenario, scenario.epochs(3, approx_position=approx))
        for sol in results:
            self.assertIs(sol.fix_status, FixStatus.DEGRADED_GEOMETRY)
            self.assertGreater(sol.dop.gdop, 5.0)

    def test_minimum_satellites_boundary(self):
        scenario = SyntheticScenario(sky=FIVE_SATS, config=make_config(min_satellites=5))
        _, results = self.run_session(scenario, scenario.epochs(3))
        self.assertTrue(all(isinstance(r, Solution) for r in results))

        scenario = SyntheticScenario(sky=FIVE_SATS, config=make_config(min_satellites=6))
        session, results = self.run_session(scenario, scenario.epochs(2))
        for r in results:
            self.assertIsInstance(r, NoSolution)
            self.assertIs(r.reason, ReasonCode.INSUFFICIENT_OBSERVATIONS)
        self.assertIsNone(session.state)
        self.assertIsNone(session.last_time)

    def test_gap_leaves_state_unchanged(self):
        scenario = SyntheticScenario(config=make_config(min_satellites=5))
        epochs = scenario.epochs(6)
        session, _ = self.run_session(scenario, epochs[:5])
        before = session.state
        gap = scenario.make_epoch(epochs[5].time, drop=('G01', 'G02', 'G03', 'G04'))
        result = session.process_epoch(gap)
        self.assertIsInstance(result, NoSolution)
        self.assertIs(result.reason, ReasonCode.INSUFFICIENT_OBSERVATIONS)
        self.assertIsNotNone(result.predicted_position)
        np.testing.assert_array_equal(session.state.x, before.x)
        self.assertEqual(session.last_time, epochs[4].time)

    def test_no_pseudorange(self):
        scenario = SyntheticScenario(config=make_config())
        session = NavigationSession(scenario.provider, scenario.config)
        empty = scenario.make_epoch(scenario.t0, drop=tuple(DEFAULT_SKY))
        result = session.process_epoch(empty)
        self.assertIsInstance(result, NoSolution)
        self.assertIs(result.reason, ReasonCode.NO_PSEUDORANGE)


class TestAmbiguityBookkeeping(SessionTestCase):

    def test_cycle_slip_resets_ambiguity(self):
        scenario = SyntheticScenario(config=make_config())
        signal = SignalId('G03', 'L1', 'C')
        epochs = [scenario.make_epoch(scenario.t0 + k,
                                      slips={signal: 50.0} if k >= 5 else None)
                  for k in range(10)]
        session = NavigationSession(scenario.provider, scenario.config)
        results = []
        for k, epoch in enumerate(epochs):
            results.append(session.process_epoch(epoch))
            if k == 5:
                # re-initialized from the slipped phase in the same epoch
                self.assertAlmostEqual(session.state.get(signal),
                                       scenario.ambiguities[signal] + 50, delta=0.01)
        self.assertAlmostEqual(session.state.get(signal), scenario.ambiguities[signal] + 50,
                               delta=0.01)
        self.assertNearTruth(scenario, results[-1])

        # the other satellites see the same ambiguities and residuals as without the slip
        clean, clean_results = self.run_session(scenario, scenario.epochs(10))
        others = [s for s in session.state.ambiguity_keys() if s != signal]
        self.assertEqual(others, [s for s in clean.state.ambiguity_keys() if s != signal])
        for other in others:
            self.assertAlmostEqual(session.state.get(other), clean.state.get(other), delta=0.02)
        residuals = {d.sat: d.code_residual for d in clean_results[-1].satellite_data}
        for data in results[-1].satellite_data:
            if data.sat != signal.sat:
                self.assertAlmostEqual(data.code_residual, residuals[data.sat], delta=0.01)

    def test_ephemeris_outage(self):
        scenario = SyntheticScenario(config=make_config())
        epochs = scenario.epochs(10)
        t0 = scenario.t0
        scenario.provider.outages['G03'] = (t0 + 4.5, t0 + 6.5)
        session, results = self.run_session(scenario, epochs)
        for k in (5, 6):
            self.assertNotIn('G03', results[k].satellites_used)
            self.assertNearTruth(scenario, results[k])
        self.assertIn('G03', results[9].satellites_used)
        self.assertIn(SignalId('G03', 'L1', 'C'), session.state.ambiguity_keys())

    def test_inter_system_bias(self):
        sky = dict(DEFAULT_SKY, E11=(60.0, 50.0), E12=(200.0, 40.0))
        scenario = SyntheticScenario(sky=sky, config=make_config(), isb={'E': 12.0})
        session, results = self.run_session(scenario, scenario.epochs(10))
        self.assertAlmostEqual(session.state.get(isb_key('E')), 12.0, delta=0.05)
        self.assertNearTruth(scenario, results[-1])
        self.assertIn('E11', results[-1].satellites_used)


class TestSignals(SessionTestCase):

    def test_unknown_band_rejected(self):
        scenario = SyntheticScenario(config=make_config())
        session = NavigationSession(scenario.provider, scenario.config)
        results = []
        for epoch in scenario.epochs(3):
            l6 = Observation('G01', 'L6', 'X', pseudorange=2.2e7, carrier_phase=1e8, cn0=45.0)
            extended = Epoch(epoch.time, epoch.observations + (l6,))
            results.append(session.process_epoch(extended))
        for sol in results:
            self.assertNearTruth(scenario, sol)
            self.assertIn('G01', sol.satellites_used)
        self.assertNotIn(SignalId('G01', 'L6', 'X'), session.state)
        self.assertNotIn(SignalId('G01', 'L6', 'X'), session.slip_history.phases)

    def test_glonass_channels_stay_float(self):
        sky = dict(DEFAULT_SKY, R01=(100.0, 50.0), R02=(250.0, 35.0))
        scenario = SyntheticScenario(sky=sky, config=make_config(),
                                     channels={'R01': 1, 'R02': -4})
        session, results = self.run_session(scenario, scenario.epochs(30))
        last = results[-1]
        self.assertNearTruth(scenario, last)
        self.assertIs(last.fix_status, FixStatus.FIXED)
        self.assertEqual(last.num_fixed, len(DEFAULT_SKY) - 1)
        for sat in ('R01', 'R02'):
            signal = SignalId(sat, 'G1', 'C')
            self.assertIn(sat, last.satellites_used)
            self.assertNotIn(signal, session.ambiguity_set)
            # channel wavelength: the float ambiguity is the true integer
            self.assertAlmostEqual(session.state.get(signal), scenario.ambiguities[signal],
                                   delta=0.1)

    def test_glonass_same_channel_resolved(self):
        sky = dict(DEFAULT_SKY, R01=(100.0, 50.0), R02=(250.0, 35.0))
        scenario = SyntheticScenario(sky=sky, config=make_config(glonass_ar=True),
                                     channels={'R01': 2, 'R02': 2})
        session, results = self.run_session(scenario, scenario.epochs(30))
        self.assertEqual(results[-1].num_fixed, len(DEFAULT_SKY))
        fixed = [s for s in session.ambiguity_set.signals() if s.system == 'R']
        self.assertEqual(len(fixed), 1)

        scenario = SyntheticScenario(sky=sky, config=make_config(glonass_ar=True),
                                     channels={'R01': 2, 'R02': -1})
        session, results = self.run_session(scenario, scenario.epochs(30))
        self.assertEqual(results[-1].num_fixed, len(DEFAULT_SKY) - 1)


class TestTiming(SessionTestCase):

    def timing_epochs(self, scenario, n):
        approx = scenario.truth_position(scenario.t0)
        return scenario.epochs(n, approx_position=approx)

    def test_time_only(self):
        scenario = SyntheticScenario(config=make_config(solution_type='time_only'))
        _, results = self.run_session(scenario, self.timing_epochs(scenario, 10))
        for sol in results:
            self.assertIsInstance(sol, Solution)
            np.testing.assert_array_equal(sol.position, scenario.truth_position(sol.time))
            np.testing.assert_array_equal(sol.velocity, np.zeros(3))
            self.assertAlmostEqual(sol.clock_bias * CLIGHT, scenario.truth_clock(sol.time),
                                   delta=0.05)
            self.assertEqual(sol.dop.pdop, 0.0)
            self.assertGreater(sol.dop.tdop, 0.0)
        self.assertAlmostEqual(results[-1].clock_drift * CLIGHT, scenario.clock_drift,
                               delta=0.01)

    def test_single_satellite(self):
        scenario = SyntheticScenario(sky={'G01': DEFAULT_SKY['G01']},
                                     config=make_config(solution_type='time_only'))
        _, results = self.run_session(scenario, self.timing_epochs(scenario, 5))
        for sol in results:
            self.assertIsInstance(sol, Solution)
            self.assertEqual(sol.satellites_used, ('G01',))
            self.assertAlmostEqual(sol.clock_bias * CLIGHT, scenario.truth_clock(sol.time),
                                   delta=0.05)

        pvt = SyntheticScenario(sky={'G01': DEFAULT_SKY['G01']}, config=make_config())
        _, results = self.run_session(pvt, self.timing_epochs(pvt, 2))
        self.assertTrue(all(isinstance(r, NoSolution) for r in results))

    def test_requires_approximate_position(self):
        scenario = SyntheticScenario(config=make_config(solution_type='time_only'))
        session, results = self.run_session(scenario, scenario.epochs(2))
        for r in results:
            self.assertIsInstance(r, NoSolution)
            self.assertIs(r.reason, ReasonCode.NO_APPROXIMATE_POSITION)
        self.assertIsNone(session.state)


class TestReceiverDelays(SessionTestCase):

    def test_internal_delay_in_code(self):
        scenario = SyntheticScenario(config=make_config())
        delay = 1e-8
        session = NavigationSession(scenario.provider, make_config(internal_delays={'L1': delay}))
        results = list(session.process(scenario.epochs(10)))
        for sol in results:
            self.assertNearTruth(scenario, sol)
        last = results[-1]
        # a delay common to every code is seen as receiver clock
        self.assertAlmostEqual(last.clock_bias * CLIGHT,
                               scenario.truth_clock(last.time) - CLIGHT * delay, delta=0.05)


class TestConfigRoundTrip(SessionTestCase):

    def test_reloaded_config_gives_same_solutions(self):
        config = make_config(elevation_mask_deg=10.0, outlier_threshold=None,
                             internal_delays={'L1': 2e-9})
        scenario = SyntheticScenario(config=config)
        epochs = scenario.epochs(8)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'session.yaml')
            config.save(path)
            reloaded = ProcessingConfig.load(path)

        first = list(NavigationSession(scenario.provider, config).process(epochs))
        second = list(NavigationSession(scenario.provider, reloaded).process(epochs))
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.position, b.position)
            np.testing.assert_array_equal(a.covariance, b.covariance)
            self.assertEqual(a.clock_bias, b.clock_bias)
            self.assertIs(a.fix_status, b.fix_status)
            self.assertEqual(a.satellites_used, b.satellites_used)


if __name__ == '__main__':
    unittest.main()
