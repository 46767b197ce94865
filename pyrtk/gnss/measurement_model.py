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

"""Measurement model: predicted observables, residuals and Jacobians

Observation equations (meters, receiver clock ``cdt`` and inter-system bias
``isb`` in meters)::

    P  = rho + cdt + isb - c dts + T + I_b + c TGD (f_L1/f_b)^2 + c d_ext + c d_int,b
    Lλ = rho + cdt + isb - c dts + T - I_b + λ N
    -Dλ = e.(v_s - v_r) + cdt_dot - c ddts

Jacobian entries are ``-e`` for position, 1 for clock and ISB, λ for the
ambiguity (cycles) and ``-e``/1 for velocity/drift on Doppler rows. Columns of
states a row does not observe are exactly zero.
Time-only solutions leave the position and velocity columns at zero.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..coordinate.transforms import ecef2llh, enu2ecef_vector, geodist
from ..core.config import ProcessingConfig
from ..core.constants import CLIGHT, FREQ_L1, RE_WGS84
from ..core.data_structures import AmbiguitySet, AtmosphericDelay, Bias, SignalId
from ..estimation.state import IDX_CLK, IDX_DRIFT, IDX_POS, IDX_VEL, FilterState, isb_key
from .atmosphere import dual_frequency_pair
from .ionosphere import ionosphere_free_variance
from .preprocessing import AdmittedObservation

logger = logging.getLogger(__name__)

KIND_ORDER = {'code': 0, 'phase': 1, 'doppler': 2, 'hold': 3}


def antenna_position(marker: np.ndarray, offset_enu: Optional[np.ndarray]) -> np.ndarray:
    """Antenna reference point from the marker position and an ENU offset"""
    marker = np.asarray(marker, dtype=float)
    if offset_enu is None or not np.any(offset_enu) or np.linalg.norm(marker) < RE_WGS84 / 2:
        return marker.copy()
    return marker + enu2ecef_vector(offset_enu, ecef2llh(marker))


def initial_ambiguity(adm: AdmittedObservation, delay: Optional[AtmosphericDelay],
                      pseudorange: float, external_delay: float = 0.0,
                      internal_delay: float = 0.0) -> float:
    """Float ambiguity (cycles) from phase minus code, removing the modeled code-only terms"""
    obs = adm.observation
    lam = obs.wavelength
    iono = delay.ionosphere.value if delay is not None else 0.0
    code_terms = (CLIGHT * adm.state.tgd * (FREQ_L1 / obs.frequency) ** 2
                  + CLIGHT * (external_delay + internal_delay))
    return obs.carrier_phase - (pseudorange - 2.0 * iono - code_terms) / lam


@dataclass(frozen=True, eq=False)
class MeasurementRow:
    """One linearized observation"""
    kind: str                    # 'code', 'phase', 'doppler' or 'hold'
    signal: SignalId
    observed: float
    predicted: float
    h: np.ndarray
    variance: float

    @property
    def sat(self) -> str:
        return self.signal.sat

    @property
    def residual(self) -> float:
        return self.observed - self.predicted


class MeasurementSet:
    """Ordered rows with stacked ``H``, residual and variance arrays"""

    def __init__(self, rows: Sequence[MeasurementRow], nx: int):
        self.rows: Tuple[MeasurementRow, ...] = tuple(rows)
        self.nx = nx
        if self.rows:
            self.H = np.vstack([r.h for r in self.rows])
        else:
            self.H = np.zeros((0, nx))
        self.residuals = np.array([r.residual for r in self.rows], dtype=float)
        self.variances = np.array([r.variance for r in self.rows], dtype=float)

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    @property
    def R(self) -> np.ndarray:
        return np.diag(self.variances)

    @property
    def kinds(self) -> List[str]:
        return [r.kind for r in self.rows]

    @property
    def satellites(self) -> List[str]:
        return sorted({r.sat for r in self.rows if r.kind != 'hold'})

    def code_satellites(self) -> List[str]:
        return sorted({r.sat for r in self.rows if r.kind == 'code'})

    def select(self, keep: Iterable[bool]) -> 'MeasurementSet':
        return MeasurementSet([r for r, k in zip(self.rows, keep) if k], self.nx)

    def of_kind(self, *kinds: str) -> 'MeasurementSet':
        return MeasurementSet([r for r in self.rows if r.kind in kinds], self.nx)


class MeasurementModel:
    """Build measurement rows for the current state.

    Parameters
    ----------
    config : ProcessingConfig
        ``use_carrier_phase``, ``use_doppler``, ``reference_system``,
        ``solution_type``, ``internal_delays``, ``ar_mode`` and
        ``ar_hold_variance`` are used
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config

    def build(self, admitted: Sequence[AdmittedObservation],
              atmosphere: Mapping[str, Mapping[str, AtmosphericDelay]],
              state: FilterState,
              ambiguity_set: Optional[AmbiguitySet] = None,
              exclude: Iterable[str] = (),
              antenna_offset: Optional[np.ndarray] = None,
              external_delay: float = 0.0) -> MeasurementSet:
        """
        Linearize all admitted observations about ``state``

        Parameters
        ----------
        admitted : sequence of AdmittedObservation
            Screened observations
        atmosphere : mapping
            sat -> band -> AtmosphericDelay
        state : FilterState
            Linearization point; ambiguities must already be present for
            phase rows to be formed
        ambiguity_set : AmbiguitySet, optional
            Held integers, turned into constraint rows in fix-and-hold mode
        exclude : iterable of str
            Satellites left out (fault exclusion)
        antenna_offset : np.ndarray, optional
            ENU antenna reference point offset (m)
        external_delay : float
            Delay common to every code (s)

        Returns
        -------
        MeasurementSet
        """
        exclude = set(exclude)
        rr = antenna_position(state.position, antenna_offset)

        by_sat: Dict[str, List[AdmittedObservation]] = {}
        for adm in admitted:
            if adm.sat in exclude:
                continue
            by_sat.setdefault(adm.sat, []).append(adm)

        rows: List[MeasurementRow] = []
        for sat in sorted(by_sat):
            rows.extend(self._satellite_rows(by_sat[sat], atmosphere.get(sat, {}),
                                             state, rr, external_delay))
        rows.sort(key=lambda r: (r.signal, KIND_ORDER[r.kind]))

        if ambiguity_set is not None and self.config.ar_mode == 'fix_and_hold':
            rows.extend(self.hold_rows(ambiguity_set, state, exclude))

        return MeasurementSet(rows, state.size)

    def _common(self, adm: AdmittedObservation, state: FilterState, rr: np.ndarray):
        """Geometry and clock part shared by code and phase rows"""
        sat_state = adm.state
        rho, e = geodist(sat_state.position, rr)
        h = np.zeros(state.size)
        if not self.config.time_only:
            h[IDX_POS] = -e
        h[IDX_CLK] = 1.0
        pred = rho + state.clock - CLIGHT * sat_state.clock_bias

        system = adm.observation.system
        if system != self.config.reference_system:
            key = isb_key(system)
            if key in state:
                h[state.index_of(key)] = 1.0
                pred += state.get(key)
        return pred, h, e

    def _satellite_rows(self, group: List[AdmittedObservation],
                        delays: Mapping[str, AtmosphericDelay], state: FilterState,
                        rr: np.ndarray, external_delay: float) -> List[MeasurementRow]:
        rows = []
        eph_var = group[0].state.variance

        iono_free = None
        codes = [a for a in group if a.observation.pseudorange is not None]
        pair = dual_frequency_pair([a.observation for a in codes])
        if pair is not None:
            band = pair[0].band
            if band in delays and delays[band].iono_measured:
                iono_free = (pair[0].signal, pair[1].signal)

        for adm in group:
            obs = adm.observation
            atm = delays.get(obs.band)
            if atm is None:
                trop = iono = Bias()
            else:
                trop, iono = atm.troposphere, atm.ionosphere

            if obs.pseudorange is not None and (iono_free is None or obs.signal == iono_free[0]):
                pred, h, _ = self._common(adm, state, rr)
                pred += (trop.value + iono.value
                         + CLIGHT * (external_delay + self.config.internal_delay(obs.band)))
                if iono_free is None:
                    pred += CLIGHT * adm.state.tgd * (FREQ_L1 / obs.frequency) ** 2
                    var = adm.code_variance + iono.variance
                else:
                    other = next(a for a in codes if a.signal == iono_free[1])
                    var = ionosphere_free_variance(adm.code_variance, other.code_variance,
                                                   obs.frequency, other.observation.frequency)
                var += trop.variance + eph_var
                rows.append(MeasurementRow('code', obs.signal, obs.pseudorange, pred, h, var))

            if (self.config.use_carrier_phase and obs.carrier_phase is not None
                    and obs.signal in state):
                lam = obs.wavelength
                pred, h, _ = self._common(adm, state, rr)
                idx = state.index_of(obs.signal)
                h[idx] = lam
                pred += trop.value - iono.value + lam * state.x[idx]
                var = adm.phase_variance + trop.variance + iono.variance + eph_var
                rows.append(MeasurementRow('phase', obs.signal, obs.carrier_phase * lam,
                                           pred, h, var))

            if self.config.use_doppler and obs.doppler is not None:
                rows.append(self._doppler_row(adm, state, rr))

        return rows

    def _doppler_row(self, adm: AdmittedObservation, state: FilterState,
                     rr: np.ndarray) -> MeasurementRow:
        obs, sat_state = adm.observation, adm.state
        _, e = geodist(sat_state.position, rr)
        h = np.zeros(state.size)
        if not self.config.time_only:
            h[IDX_VEL] = -e
        h[IDX_DRIFT] = 1.0
        pred = (float(e @ (sat_state.velocity - state.velocity)) + state.drift
                - CLIGHT * sat_state.clock_drift)
        return MeasurementRow('doppler', obs.signal, -obs.doppler * obs.wavelength, pred, h,
                              adm.doppler_variance)

    def hold_rows(self, ambiguity_set: AmbiguitySet, state: FilterState,
                  exclude=()) -> List[MeasurementRow]:
        """Constraint rows N_i - N_ref = z for held integer single differences"""
        rows = []
        for signal, fixed in ambiguity_set.ambiguities.items():
            if signal.sat in exclude or fixed.reference.sat in exclude:
                continue
            if signal not in state or fixed.reference not in state:
                continue
            i, j = state.index_of(signal), state.index_of(fixed.reference)
            h = np.zeros(state.size)
            h[i] = 1.0
            h[j] = -1.0
            pred = state.x[i] - state.x[j]
            rows.append(MeasurementRow('hold', signal, float(fixed.value), float(pred), h,
                                       self.config.ar_hold_variance))
        return rows
