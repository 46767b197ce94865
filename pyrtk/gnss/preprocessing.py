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

"""Observation quality screening"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Tuple

import numpy as np

from ..core.config import ProcessingConfig
from ..core.data_structures import Epoch, Observation, SatelliteState, SignalId
from ..core.exceptions import InsufficientObservations
from ..core.stats import compute_obs_variance, observation_weight
from .cycle_slip import CycleSlipDetector, SlipHistory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmittedObservation:
    """An observation that passed screening, with its weight and satellite state"""
    observation: Observation
    state: SatelliteState
    weight: float
    code_variance: float = 0.0        # m^2
    phase_variance: float = 0.0       # m^2
    doppler_variance: float = 0.0     # (m/s)^2

    @property
    def signal(self) -> SignalId:
        return self.observation.signal

    @property
    def sat(self) -> str:
        return self.observation.sat

    @property
    def elevation(self) -> float:
        return self.state.elevation


@dataclass(frozen=True)
class PreprocessResult:
    admitted: Tuple[AdmittedObservation, ...]
    slipped: FrozenSet[SignalId]
    rejected: Mapping[SignalId, str]
    history: SlipHistory = field(default_factory=SlipHistory.empty)

    def __post_init__(self):
        object.__setattr__(self, 'rejected', MappingProxyType(dict(self.rejected)))

    @property
    def satellites(self) -> List[str]:
        return sorted({a.sat for a in self.admitted})

    def for_satellite(self, sat: str) -> Tuple[AdmittedObservation, ...]:
        return tuple(a for a in self.admitted if a.sat == sat)

    def without_satellites(self, sats) -> 'PreprocessResult':
        drop = set(sats)
        return PreprocessResult(tuple(a for a in self.admitted if a.sat not in drop),
                                self.slipped, self.rejected, self.history)


class ObservationPreprocessor:
    """Elevation/SNR masks, weighting and cycle slip detection.

    Parameters
    ----------
    config : ProcessingConfig
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config
        self.slip_detector = CycleSlipDetector(config)

    def process(self, epoch: Epoch, sat_states: Mapping[str, SatelliteState],
                history: SlipHistory) -> PreprocessResult:
        """Screen an epoch.

        Raises
        ------
        InsufficientObservations
            If fewer than ``required_satellites`` satellites keep an admitted
            observation
        """
        slipped, new_history = self.slip_detector.detect(epoch, history)

        el_mask = np.radians(self.config.elevation_mask_deg)
        snr_mask = self.config.snr_mask_dbhz

        admitted = []
        rejected: Dict[SignalId, str] = {}
        for obs in epoch.observations:
            reason = None
            state = sat_states.get(obs.sat)
            if not obs.is_usable:
                reason = "no pseudorange or carrier phase"
            elif state is None:
                reason = "no satellite state"
            elif state.elevation < el_mask:
                reason = f"elevation {np.degrees(state.elevation):.1f} deg below mask"
            elif snr_mask is not None and obs.cn0 is not None and obs.cn0 < snr_mask:
                reason = f"C/N0 {obs.cn0:.1f} dB-Hz below mask"
            elif not obs.has_known_band:
                reason = f"unknown band {obs.band}"
            elif not obs.channel_known and obs.pseudorange is None:
                reason = "GLONASS phase without frequency channel"

            if reason is not None:
                rejected[obs.signal] = reason
                logger.trace(f"Rejected {obs.signal}: {reason}")
                continue

            if not obs.channel_known and (obs.carrier_phase is not None or obs.doppler is not None):
                # wavelength unknown: code only
                logger.debug(f"{obs.signal}: no frequency channel, phase and Doppler dropped")
                obs = replace(obs, carrier_phase=None, doppler=None)

            weight = observation_weight(state.elevation, obs.cn0, self.config)
            admitted.append(AdmittedObservation(
                obs, state, weight,
                code_variance=compute_obs_variance(weight, 'code', self.config),
                phase_variance=compute_obs_variance(weight, 'phase', self.config),
                doppler_variance=compute_obs_variance(weight, 'doppler', self.config)))

        n_sats = len({a.sat for a in admitted})
        if n_sats < self.config.required_satellites:
            raise InsufficientObservations(n_sats, self.config.required_satellites)

        return PreprocessResult(tuple(admitted), frozenset(slipped), rejected, new_history)
