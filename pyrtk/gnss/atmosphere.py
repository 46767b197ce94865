# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Atmospheric corrections per signal path.

The model never fails: missing ancillary data falls back to a zero-mean,
large-variance ionosphere so that downstream weighting discounts it. When a
satellite has two code bands, the measured geometry-free ionosphere takes
precedence over the broadcast model (configurable through
``iono_precedence``).
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..core.config import ProcessingConfig
from ..core.constants import CLIGHT, ERR_BRDCI, ERR_ION, FREQ_L1
from ..core.data_structures import (AtmosphericDelay, Bias, BiasSource, KlobucharParameters,
                                   Observation, SatelliteState)
from ..core.stats import compute_obs_variance, observation_weight
from ..core.time import day_of_year, gpst2weektow
from .ionosphere import (geometry_free_ionosphere, geometry_free_ionosphere_variance,
                         ionosphere_klobuchar, iono_scale)
from .troposphere import tropospheric_delay, tropospheric_variance

logger = logging.getLogger(__name__)


def dual_frequency_pair(observations: Sequence[Observation]) -> Optional[Tuple[Observation, Observation]]:
    """Two code observations on the highest distinct frequencies of a satellite"""
    by_freq = {}
    for obs in sorted(observations, key=lambda o: o.signal):
        if obs.pseudorange is None or not obs.has_known_band:
            continue
        by_freq.setdefault(obs.frequency, obs)
    if len(by_freq) < 2:
        return None
    freqs = sorted(by_freq, reverse=True)
    return by_freq[freqs[0]], by_freq[freqs[1]]


class AtmosphericModel:
    """Tropospheric and ionospheric delays with variances.

    Parameters
    ----------
    config : ProcessingConfig
        ``troposphere_model``, ``ionosphere_model``, ``iono_precedence``,
        ``relative_humidity`` and ``internal_delays`` are used
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config

    def troposphere(self, state: SatelliteState, receiver_llh: np.ndarray, time: float) -> Bias:
        if self.config.troposphere_model == 'off':
            return Bias()
        el = state.elevation
        delay = tropospheric_delay(el, receiver_llh, day_of_year(time), self.config.relative_humidity)
        return Bias(delay, tropospheric_variance(el), BiasSource.MODELED)

    def modeled_ionosphere(self, state: SatelliteState, receiver_llh: np.ndarray, time: float,
                           iono_parameters: Optional[KlobucharParameters]) -> Bias:
        """Ionospheric delay on L1 from the broadcast model, or the fallback"""
        if iono_parameters is None:
            return Bias(0.0, ERR_ION**2, BiasSource.FALLBACK)
        _, tow = gpst2weektow(time)
        delay = ionosphere_klobuchar(receiver_llh[0], receiver_llh[1], state.azimuth,
                                     state.elevation, tow, iono_parameters.alpha,
                                     iono_parameters.beta)
        return Bias(delay, (ERR_BRDCI * delay)**2, BiasSource.MODELED)

    def measured_ionosphere(self, state: SatelliteState,
                            observations: Sequence[Observation]) -> Optional[Tuple[Bias, float]]:
        """Ionospheric delay measured from two codes, with its reference frequency"""
        pair = dual_frequency_pair(observations)
        if pair is None:
            return None
        o1, o2 = pair
        f1, f2 = o1.frequency, o2.frequency
        var1 = compute_obs_variance(observation_weight(state.elevation, o1.cn0, self.config),
                                    'code', self.config)
        var2 = compute_obs_variance(observation_weight(state.elevation, o2.cn0, self.config),
                                    'code', self.config)
        p1 = o1.pseudorange - CLIGHT * self.config.internal_delay(o1.band)
        p2 = o2.pseudorange - CLIGHT * self.config.internal_delay(o2.band)
        delay = geometry_free_ionosphere(p1, p2, f1, f2)
        var = geometry_free_ionosphere_variance(var1, var2, f1, f2)
        return Bias(delay, var, BiasSource.MEASURED), f1

    def evaluate(self, state: SatelliteState, receiver_llh: np.ndarray, time: float,
                 observations: Sequence[Observation],
                 iono_parameters: Optional[KlobucharParameters] = None) -> Dict[str, AtmosphericDelay]:
        """Delays for every band a satellite is observed on.

        Parameters
        ----------
        state : SatelliteState
            For elevation and azimuth
        receiver_llh : np.ndarray
            Approximate receiver position [lat, lon, h] (rad, rad, m)
        time : float
            GPS seconds
        observations : sequence of Observation
            Observations of this satellite (their bands and codes)
        iono_parameters : KlobucharParameters, optional

        Returns
        -------
        dict
            band -> AtmosphericDelay
        """
        trop = self.troposphere(state, receiver_llh, time)

        if self.config.ionosphere_model == 'off':
            iono_ref, f_ref = Bias(), FREQ_L1
        else:
            modeled = self.modeled_ionosphere(state, receiver_llh, time, iono_parameters)
            measured = self.measured_ionosphere(state, observations)
            if measured is not None and (self.config.iono_precedence == 'measured'
                                         or modeled.source is not BiasSource.MODELED):
                iono_ref, f_ref = measured
            else:
                iono_ref, f_ref = modeled, FREQ_L1

        delays = {}
        for obs in observations:
            if obs.band in delays or not obs.has_known_band:
                continue
            delays[obs.band] = AtmosphericDelay(obs.sat, obs.band, trop,
                                                iono_ref.scaled(iono_scale(f_ref, obs.frequency)))
        return delays
