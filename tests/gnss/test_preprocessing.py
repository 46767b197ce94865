#!/usr/bin/env python3
"""Test suite for observation screening"""

import unittest

import numpy as np

from pyrtk.core.config import ProcessingConfig
from pyrtk.core.data_structures import Epoch, Observation, SatelliteState, SignalId
from pyrtk.core.exceptions import InsufficientObservations, ReasonCode
from pyrtk.core.stats import compute_obs_variance, observation_weight
from pyrtk.gnss.cycle_slip import SlipHistory
from pyrtk.gnss.preprocessing import ObservationPreprocessor


def make_state(sat, elevation):
    return SatelliteState(sat=sat, transmit_time=0.0, position=np.array([1.5e7, 1e7, 2e7]),
                          velocity=np.zeros(3), clock_bias=0.0, clock_drift=0.0,
                          relativistic_correction=0.0, sagnac_correction=0.0,
                          geometric_range=2.1e7, elevation=np.radians(elevation), azimuth=0.0)


class TestObservationWeight(unittest.TestCase):

    def setUp(self):
        self.config = ProcessingConfig()

    def test_zenith_strong_signal(self):
        self.assertAlmostEqual(observation_weight(np.pi / 2, 50.0, self.config), 1.0)

    def test_monotonic(self):
        w_high = observation_weight(np.radians(60.0), 45.0, self.config)
        w_low = observation_weight(np.radians(15.0), 45.0, self.config)
        w_weak = observation_weight(np.radians(60.0), 30.0, self.config)
        self.assertGreater(w_high, w_low)
        self.assertGreater(w_high, w_weak)

    def test_variances(self):
        zenith = self.config.err_phase_a + self.config.err_phase_b
        self.assertAlmostEqual(compute_obs_variance(1.0, 'phase', self.config), zenith**2)
        self.assertAlmostEqual(compute_obs_variance(0.5, 'code', self.config),
                               2.0 * (zenith * self.config.code_phase_ratio)**2)
        with self.assertRaises(ValueError):
            compute_obs_variance(1.0, 'range', self.config)


class TestObservationPreprocessor(unittest.TestCase):

    def setUp(self):
        self.states = {f'G0{k}': make_state(f'G0{k}', 20.0 + 10.0 * k) for k in range(1, 6)}
        self.config = ProcessingConfig(min_satellites=4)

    def epoch(self, **overrides):
        obs = []
        for sat in sorted(self.states):
            kwargs = dict(pseudorange=2.2e7, carrier_phase=1.1e8, cn0=45.0)
            kwargs.update(overrides.get(sat, {}))
            obs.append(Observation(sat, 'L1', **kwargs))
        return Epoch(100.0, tuple(obs))

    def test_all_admitted(self):
        result = ObservationPreprocessor(self.config).process(self.epoch(), self.states,
                                                              SlipHistory.empty())
        self.assertEqual(result.satellites, sorted(self.states))
        self.assertEqual(len(result.rejected), 0)
        adm = result.for_satellite('G05')[0]
        self.assertAlmostEqual(adm.code_variance,
                               compute_obs_variance(adm.weight, 'code', self.config))
        self.assertIn(SignalId('G01', 'L1'), result.history.phases)

    def test_elevation_mask(self):
        config = self.config.replace(elevation_mask_deg=35.0)
        result = ObservationPreprocessor(config).process(self.epoch(), self.states,
                                                         SlipHistory.empty())
        self.assertNotIn('G01', result.satellites)
        self.assertIn(SignalId('G01', 'L1'), result.rejected)

    def test_snr_mask(self):
        epoch = self.epoch(G02={'cn0': 15.0})
        result = ObservationPreprocessor(self.config).process(epoch, self.states,
                                                              SlipHistory.empty())
        self.assertNotIn('G02', result.satellites)

    def test_snr_mask_disabled(self):
        epoch = self.epoch(G02={'cn0': 15.0})
        result = ObservationPreprocessor(self.config.replace(snr_mask_dbhz=None)).process(
            epoch, self.states, SlipHistory.empty())
        self.assertIn('G02', result.satellites)

    def test_missing_cn0_not_masked(self):
        epoch = self.epoch(G02={'cn0': None})
        result = ObservationPreprocessor(self.config).process(epoch, self.states,
                                                              SlipHistory.empty())
        self.assertIn('G02', result.satellites)

    def test_no_satellite_state(self):
        states = dict(self.states)
        del states['G03']
        result = ObservationPreprocessor(self.config).process(self.epoch(), states,
                                                              SlipHistory.empty())
        self.assertNotIn('G03', result.satellites)
        self.assertEqual(result.rejected[SignalId('G03', 'L1')], "no satellite state")

    def test_minimum_satellites_boundary(self):
        config = self.config.replace(min_satellites=5)
        result = ObservationPreprocessor(config).process(self.epoch(), self.states,
                                                         SlipHistory.empty())
        self.assertEqual(len(result.satellites), 5)

        epoch = self.epoch(G04={'cn0': 10.0})
        with self.assertRaises(InsufficientObservations) as ctx:
            ObservationPreprocessor(config).process(epoch, self.states, SlipHistory.empty())
        self.assertEqual(ctx.exception.count, 4)
        self.assertEqual(ctx.exception.minimum, 5)
        self.assertIs(ctx.exception.reason, ReasonCode.INSUFFICIENT_OBSERVATIONS)

    def test_unknown_band_rejected(self):
        epoch = self.epoch()
        l6 = Observation('G01', 'L6', 'X', pseudorange=2.2e7, carrier_phase=1e8, cn0=45.0)
        epoch = Epoch(epoch.time, epoch.observations + (l6,))
        result = ObservationPreprocessor(self.config).process(epoch, self.states,
                                                              SlipHistory.empty())
        self.assertEqual(result.rejected[l6.signal], "unknown band L6")
        self.assertIn('G01', result.satellites)
        self.assertNotIn(l6.signal, result.history.phases)
        self.assertIn(SignalId('G01', 'L1'), result.history.phases)

    def test_glonass_without_channel_is_code_only(self):
        states = dict(self.states)
        states['R07'] = make_state('R07', 50.0)
        states['R08'] = make_state('R08', 55.0)
        epoch = self.epoch()
        glonass = (Observation('R07', 'G1', pseudorange=2.2e7, carrier_phase=1.1e8,
                               doppler=100.0, cn0=45.0),
                   Observation('R08', 'G1', carrier_phase=1.1e8, cn0=45.0))
        epoch = Epoch(epoch.time, epoch.observations + glonass)
        result = ObservationPreprocessor(self.config).process(epoch, states, SlipHistory.empty())

        r07 = result.for_satellite('R07')[0].observation
        self.assertEqual(r07.pseudorange, 2.2e7)
        self.assertIsNone(r07.carrier_phase)
        self.assertIsNone(r07.doppler)
        self.assertIn(SignalId('R08', 'G1'), result.rejected)
        self.assertNotIn(SignalId('R07', 'G1'), result.history.phases)

    def test_glonass_with_channel_keeps_phase(self):
        states = dict(self.states)
        states['R07'] = make_state('R07', 50.0)
        epoch = self.epoch()
        obs = Observation('R07', 'G1', pseudorange=2.2e7, carrier_phase=1.1e8, cn0=45.0, fcn=-3)
        epoch = Epoch(epoch.time, epoch.observations + (obs,))
        result = ObservationPreprocessor(self.config).process(epoch, states, SlipHistory.empty())
        self.assertEqual(result.for_satellite('R07')[0].observation.carrier_phase, 1.1e8)
        self.assertIn(obs.signal, result.history.phases)

    def test_without_satellites(self):
        result = ObservationPreprocessor(self.config).process(self.epoch(), self.states,
                                                              SlipHistory.empty())
        reduced = result.without_satellites(['G01'])
        self.assertNotIn('G01', reduced.satellites)
        self.assertEqual(len(result.satellites), 5)


if __name__ == '__main__':
    unittest.main()
