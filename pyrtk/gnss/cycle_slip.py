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

"""Cycle slip detection

The detector itself keeps no state: the previous epoch's phases are passed in
as a :class:`SlipHistory` and a new history is returned, so a session can
commit it together with the filter state.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set, Tuple

from ..core.config import ProcessingConfig
from ..core.data_structures import Epoch, Observation, SignalId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseRecord:
    """Last carrier phase of a signal"""
    time: float
    phase: float                       # cycles
    wavelength: float                  # m
    pseudorange: Optional[float] = None
    doppler: Optional[float] = None


@dataclass(frozen=True)
class GeometryFreeRecord:
    """Last geometry-free phase combination of a satellite"""
    time: float
    value: float                       # m
    signals: Tuple[SignalId, SignalId]


@dataclass(frozen=True)
class SlipHistory:
    phases: Mapping[SignalId, PhaseRecord] = field(default_factory=dict)
    geometry_free: Mapping[str, GeometryFreeRecord] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'phases', MappingProxyType(dict(self.phases)))
        object.__setattr__(self, 'geometry_free', MappingProxyType(dict(self.geometry_free)))

    @classmethod
    def empty(cls) -> 'SlipHistory':
        return cls()


def geometry_free_phase(obs1: Observation, obs2: Observation) -> float:
    """Geometry-free phase combination L1*lambda1 - L2*lambda2 (m)"""
    return obs1.carrier_phase * obs1.wavelength - obs2.carrier_phase * obs2.wavelength


class CycleSlipDetector:
    """Detect cycle slips in carrier phase measurements.

    Checks, per carrier-phase signal:

    - loss of lock indicator (bit 0)
    - data gap longer than ``slip_max_gap``
    - phase jump against the Doppler-integrated prediction (cycles), or
      code-minus-carrier jump (m) when Doppler is missing
    - geometry-free jump (m) when two phase bands are tracked; both bands
      are flagged since the combination cannot tell which one slipped

    Phases of unknown bands and GLONASS phases without a frequency channel
    are not checked and do not enter the history.
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config

    def detect(self, epoch: Epoch, history: SlipHistory) -> Tuple[Set[SignalId], SlipHistory]:
        """
        Detect cycle slips for all satellites

        Parameters
        ----------
        epoch : Epoch
            Current epoch
        history : SlipHistory
            Phases of the previous epoch

        Returns
        -------
        slipped : set of SignalId
            Signals whose ambiguity must be reset
        history : SlipHistory
            History to use for the next epoch
        """
        slipped = set()
        phases: Dict[SignalId, PhaseRecord] = {}
        gf_records: Dict[str, GeometryFreeRecord] = {}

        for sat, observations in epoch.by_satellite().items():
            # wavelength unknown: left to the preprocessor to reject
            phase_obs = [o for o in observations
                         if o.carrier_phase is not None and o.has_known_band and o.channel_known]

            for obs in phase_obs:
                reason = self._check_signal(obs, history.phases.get(obs.signal), epoch.time)
                if reason:
                    logger.debug(f"Cycle slip {obs.signal} at t={epoch.time:.1f}: {reason}")
                    slipped.add(obs.signal)
                phases[obs.signal] = PhaseRecord(epoch.time, obs.carrier_phase, obs.wavelength,
                                                 obs.pseudorange, obs.doppler)

            pair = self._geometry_free_pair(phase_obs)
            if pair is None:
                continue
            gf = geometry_free_phase(*pair)
            signals = (pair[0].signal, pair[1].signal)
            prev = history.geometry_free.get(sat)
            if (prev is not None and prev.signals == signals
                    and 0.0 < epoch.time - prev.time <= self.config.slip_max_gap
                    and abs(gf - prev.value) > self.config.slip_threshold_gf):
                logger.debug(f"Cycle slip {sat} at t={epoch.time:.1f}: "
                             f"geometry-free jump {gf - prev.value:.3f} m")
                slipped.update(signals)
            gf_records[sat] = GeometryFreeRecord(epoch.time, gf, signals)

        return slipped, SlipHistory(phases, gf_records)

    def _check_signal(self, obs: Observation, prev: Optional[PhaseRecord], time: float) -> Optional[str]:
        if obs.lli & 1:
            return "loss of lock indicator"
        if prev is None:
            return None

        dt = time - prev.time
        if dt <= 0.0:
            return None
        if dt > self.config.slip_max_gap:
            return f"data gap {dt:.1f} s"

        if obs.doppler is not None and prev.doppler is not None:
            # phase decreases with positive Doppler
            predicted = prev.phase - 0.5 * (prev.doppler + obs.doppler) * dt
            jump = obs.carrier_phase - predicted
            if abs(jump) > self.config.slip_threshold_doppler:
                return f"phase-rate jump {jump:.2f} cycles"
        elif obs.pseudorange is not None and prev.pseudorange is not None:
            cmc = obs.carrier_phase * obs.wavelength - obs.pseudorange
            cmc_prev = prev.phase * prev.wavelength - prev.pseudorange
            if abs(cmc - cmc_prev) > self.config.slip_threshold_cmc:
                return f"code-minus-carrier jump {cmc - cmc_prev:.2f} m"
        return None

    @staticmethod
    def _geometry_free_pair(phase_obs: List[Observation]) -> Optional[Tuple[Observation, Observation]]:
        # highest and second highest distinct frequencies
        by_freq = {}
        for obs in sorted(phase_obs, key=lambda o: o.signal):
            by_freq.setdefault(obs.frequency, obs)
        if len(by_freq) < 2:
            return None
        freqs = sorted(by_freq, reverse=True)
        return by_freq[freqs[0]], by_freq[freqs[1]]
