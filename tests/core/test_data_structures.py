#!/usr/bin/env python3
"""Test suite for core data structures"""

import unittest

import numpy as np

from pyrtk.core.constants import CLIGHT, DFRQ1_GLO, FREQ_G1, FREQ_L1, FREQ_L2
from pyrtk.core.data_structures import (DOP, AmbiguitySet, Bias, BiasSource, Epoch,
                                        FilterStatus, FixedAmbiguity, FixStatus,
                                        IntegrityStatus, KlobucharParameters, NoSolution,
                                        Observation, SignalId, Solution)
from pyrtk.core.exceptions import ReasonCode


class TestObservation(unittest.TestCase):

    def test_signal_and_frequency(self):
        obs = Observation('G05', 'L2', 'W', pseudorange=2.1e7)
        self.assertEqual(obs.signal, SignalId('G05', 'L2', 'W'))
        self.assertEqual(obs.system, 'G')
        self.assertEqual(obs.frequency, FREQ_L2)
        self.assertAlmostEqual(obs.wavelength, CLIGHT / FREQ_L2)

    def test_usable(self):
        self.assertTrue(Observation('G01', 'L1', pseudorange=2e7).is_usable)
        self.assertTrue(Observation('G01', 'L1', carrier_phase=1e8).is_usable)
        self.assertFalse(Observation('G01', 'L1', doppler=-100.0).is_usable)

    def test_unknown_band(self):
        obs = Observation('G01', 'E5b', pseudorange=2e7)
        with self.assertRaises(KeyError):
            obs.frequency
        self.assertFalse(obs.has_known_band)
        self.assertTrue(Observation('G01', 'L1', pseudorange=2e7).has_known_band)

    def test_glonass_channel(self):
        obs = Observation('R03', 'G1', carrier_phase=1e8, fcn=2)
        self.assertEqual(obs.frequency, FREQ_G1 + 2 * DFRQ1_GLO)
        self.assertAlmostEqual(obs.wavelength, CLIGHT / (FREQ_G1 + 2 * DFRQ1_GLO))
        self.assertTrue(obs.channel_known)
        self.assertFalse(Observation('R03', 'G1', carrier_phase=1e8).channel_known)
        self.assertTrue(Observation('G03', 'L1', carrier_phase=1e8).channel_known)


class TestEpoch(unittest.TestCase):

    def test_sorted_observations(self):
        epoch = Epoch(100.0, (Observation('G07', 'L1', pseudorange=2.2e7),
                              Observation('E11', 'E1', pseudorange=2.4e7),
                              Observation('G02', 'L1', pseudorange=2.1e7)))
        self.assertEqual([o.sat for o in epoch.observations], ['E11', 'G02', 'G07'])
        self.assertEqual(epoch.satellites(), ['E11', 'G02', 'G07'])

    def test_duplicate_signal(self):
        with self.assertRaises(ValueError):
            Epoch(0.0, (Observation('G01', 'L1', pseudorange=2e7),
                        Observation('G01', 'L1', pseudorange=2e7 + 1)))

    def test_satellites_skip_unusable(self):
        epoch = Epoch(0.0, (Observation('G01', 'L1', doppler=10.0),
                            Observation('G02', 'L1', pseudorange=2e7)))
        self.assertEqual(epoch.satellites(), ['G02'])

    def test_preferred_pseudorange(self):
        epoch = Epoch(0.0, (Observation('G01', 'L1', pseudorange=100.0, cn0=40.0),
                            Observation('G01', 'L2', pseudorange=101.0, cn0=45.0),
                            Observation('G02', 'L1', carrier_phase=1.0)))
        self.assertEqual(epoch.preferred_pseudorange('G01'), 101.0)
        self.assertIsNone(epoch.preferred_pseudorange('G02'))

    def test_without(self):
        epoch = Epoch(0.0, (Observation('G01', 'L1', pseudorange=100.0),
                            Observation('G01', 'L2', pseudorange=101.0)))
        reduced = epoch.without([SignalId('G01', 'L2')])
        self.assertEqual(len(reduced.observations), 1)
        self.assertEqual(len(epoch.observations), 2)

    def test_approx_position_read_only(self):
        epoch = Epoch(0.0, (), approx_position=[1.0, 2.0, 3.0])
        with self.assertRaises(ValueError):
            epoch.approx_position[0] = 5.0

    def test_klobuchar_length(self):
        with self.assertRaises(ValueError):
            KlobucharParameters((1e-8, 0.0, 0.0), (9e4, 0.0, 0.0, 0.0))


class TestBias(unittest.TestCase):

    def test_scaled(self):
        bias = Bias(2.0, 0.5, BiasSource.MODELED).scaled(2.0)
        self.assertEqual(bias.value, 4.0)
        self.assertEqual(bias.variance, 2.0)
        self.assertIs(bias.source, BiasSource.MODELED)

    def test_select(self):
        measured = Bias(1.0, 0.1, BiasSource.MEASURED)
        modeled = Bias(2.0, 1.0, BiasSource.MODELED)
        self.assertIs(Bias.select(measured, modeled), measured)
        self.assertIs(Bias.select(None, modeled), modeled)


class TestAmbiguitySet(unittest.TestCase):

    def test_empty(self):
        amb = AmbiguitySet.empty()
        self.assertFalse(amb.is_fixed)
        self.assertEqual(len(amb), 0)

    def test_sorted_and_read_only(self):
        ref = SignalId('G01', 'L1')
        lam = CLIGHT / FREQ_L1
        amb = AmbiguitySet({SignalId('G09', 'L1'): FixedAmbiguity(3, ref, lam),
                            SignalId('G03', 'L1'): FixedAmbiguity(-2, ref, lam)}, ratio=5.0)
        self.assertEqual(amb.signals(), [SignalId('G03', 'L1'), SignalId('G09', 'L1')])
        self.assertEqual(amb.references(), [ref])
        self.assertEqual(amb[SignalId('G09', 'L1')].value, 3)
        with self.assertRaises(TypeError):
            amb.ambiguities[SignalId('G04', 'L1')] = FixedAmbiguity(0, ref, lam)


class TestSolution(unittest.TestCase):

    def _solution(self):
        cov = np.diag([4.0, 9.0, 16.0, 1.0, 1.0, 1.0, 25.0, 1.0])
        return Solution(time=1000.0, position=[-3947762.0, 3364399.0, 3699428.0],
                        velocity=np.zeros(3), clock_bias=1e-7, clock_drift=0.0,
                        covariance=cov, dop=DOP(2.0, 1.8, 1.0, 1.5, 0.8),
                        fix_status=FixStatus.FLOAT, satellites_used=('G01', 'G02'),
                        filter_status=FilterStatus.CONVERGED)

    def test_read_only(self):
        sol = self._solution()
        with self.assertRaises(ValueError):
            sol.position[0] = 0.0
        with self.assertRaises(ValueError):
            sol.covariance[0, 0] = 0.0

    def test_enu_std(self):
        sol = self._solution()
        cov = sol.get_enu_cov()
        self.assertAlmostEqual(np.trace(cov), 29.0)
        self.assertEqual(sol.position_std_enu().shape, (3,))

    def test_to_dict(self):
        data = self._solution().to_dict()
        self.assertEqual(data['fix_status'], 'FloatAmbiguity')
        self.assertEqual(data['integrity'], IntegrityStatus.NOMINAL.value)
        self.assertEqual(data['satellites_used'], ['G01', 'G02'])
        self.assertEqual(len(data['covariance']), 8)
        self.assertFalse(self._solution().suspected_fault)
        self.assertEqual(data['rejected_signals'], [])

    def test_rejected_signals(self):
        sol = Solution(time=1000.0, position=np.zeros(3), velocity=np.zeros(3), clock_bias=0.0,
                       clock_drift=0.0, covariance=np.eye(8), dop=DOP(2.0, 1.8, 1.0, 1.5, 0.8),
                       fix_status=FixStatus.NO_FIX,
                       rejected_signals=(SignalId('G05', 'L1'), SignalId('G02', 'L1'),
                                         SignalId('G05', 'L1')))
        self.assertEqual(sol.rejected_signals, (SignalId('G02', 'L1'), SignalId('G05', 'L1')))
        self.assertEqual(sol.to_dict()['rejected_signals'], ['G02:L1C', 'G05:L1C'])

    def test_no_solution(self):
        ns = NoSolution(5.0, ReasonCode.NO_PSEUDORANGE, predicted_position=[1.0, 2.0, 3.0])
        data = ns.to_dict()
        self.assertEqual(data['reason'], 'no_pseudorange')
        self.assertEqual(data['predicted_position'], [1.0, 2.0, 3.0])

    def test_dop_unavailable(self):
        dop = DOP.unavailable()
        self.assertTrue(np.isinf(dop.gdop))


if __name__ == '__main__':
    unittest.main()
