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

"""Per-epoch navigation pipeline

One call of :meth:`NavigationSession.process_epoch` runs prediction,
satellite states, atmosphere, screening, measurement update, fault exclusion,
ambiguity resolution and quality assessment on a working copy of the filter
state. The committed state, slip history, ambiguity set and epoch time are
replaced together at the end, so an exception part way through leaves the
session exactly as it was.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

import numpy as np

from ..coordinate.transforms import ecef2llh
from ..core.config import ProcessingConfig, default_config
from ..core.constants import CLIGHT
from ..core.data_structures import (AmbiguitySet, AtmosphericDelay, Epoch, FilterStatus,
                                   NoSolution, SatelliteSolutionData, SatelliteState, Solution)
from ..core.exceptions import InsufficientObservations, ReasonCode, SolverError
from ..core.stats import compute_obs_variance
from ..estimation.filter import EstimationFilter, UpdateResult
from ..estimation.state import NX_CORE, FilterState
from ..estimation.strategies import UpdateStrategy
from ..gnss.atmosphere import AtmosphericModel
from ..gnss.cycle_slip import SlipHistory
from ..gnss.measurement_model import MeasurementModel, antenna_position, initial_ambiguity
from ..gnss.preprocessing import AdmittedObservation, ObservationPreprocessor, PreprocessResult
from ..gnss.quality import QualityAssessor, compute_dop
from ..rtk.ambiguity_resolution import AmbiguityResolution, AmbiguityResolver
from ..satellite.adapter import SatelliteStateAdapter, SatelliteStateProvider

logger = logging.getLogger(__name__)

EpochResult = Union[Solution, NoSolution]


class NavigationSession:
    """
    Sequential PVT/RTK estimation over a stream of epochs

    Parameters
    ----------
    provider : SatelliteStateProvider
        Ephemeris service with ``state_at(sat, time)``
    config : ProcessingConfig, optional
    strategy : UpdateStrategy, optional
        Measurement update variant; from ``config.filter_mode`` by default

    Examples
    --------
    >>> session = NavigationSession(BroadcastEphemerisProvider(nav), config)
    >>> for solution in session.process(epochs):
    ...     print(solution.to_dict())
    """

    def __init__(self, provider: SatelliteStateProvider,
                 config: Optional[ProcessingConfig] = None,
                 strategy: Optional[UpdateStrategy] = None):
        self.config = config if config is not None else default_config()
        self.adapter = SatelliteStateAdapter(provider, self.config)
        self.atmosphere_model = AtmosphericModel(self.config)
        self.preprocessor = ObservationPreprocessor(self.config)
        self.measurement_model = MeasurementModel(self.config)
        self.filter = EstimationFilter(self.config, strategy)
        self.resolver = AmbiguityResolver(self.config)
        self.quality = QualityAssessor(self.config)
        self.reset()

    def reset(self):
        """Back to the uninitialized state"""
        self._state: Optional[FilterState] = None
        self._history = SlipHistory.empty()
        self._ambiguities = AmbiguitySet.empty()
        self._last_time: Optional[float] = None
        self.filter.reset()

    @property
    def status(self) -> FilterStatus:
        return self.filter.status

    @property
    def state(self) -> Optional[FilterState]:
        return None if self._state is None else self._state.copy()

    @property
    def ambiguity_set(self) -> AmbiguitySet:
        return self._ambiguities

    @property
    def slip_history(self) -> SlipHistory:
        return self._history

    @property
    def last_time(self) -> Optional[float]:
        return self._last_time

    def process(self, epochs: Iterable[Epoch]) -> Iterator[EpochResult]:
        """Process epochs in order, yielding one result per epoch"""
        for epoch in epochs:
            yield self.process_epoch(epoch)

    def process_epoch(self, epoch: Epoch) -> EpochResult:
        """
        Estimate the solution of one epoch

        Returns
        -------
        Solution or NoSolution

        Raises
        ------
        FilterDivergedError
            The filter diverged earlier and was not reset
        IllConditionedGeometry
            The update produced an unstable covariance; the filter is now
            DIVERGED
        ValueError
            Epoch not later than the last processed one
        """
        self.filter.ensure_usable()
        if self._last_time is not None and epoch.time <= self._last_time:
            raise ValueError(f"epoch t={epoch.time} is not after t={self._last_time}")

        initialized = self._state is not None
        if self.config.time_only and epoch.approx_position is None:
            logger.info(f"No solution at t={epoch.time:.1f}: time-only needs a known position")
            return NoSolution(epoch.time, ReasonCode.NO_APPROXIMATE_POSITION,
                              "time-only solution without approximate position")

        # 1. prediction
        state = self.filter.predict(self._state, epoch.time) if initialized else None
        if initialized and self.config.time_only:
            state = self.filter.pin_position(state, epoch.approx_position)

        # 2. satellite states
        if initialized:
            marker, clock = state.position, state.clock
        else:
            marker = epoch.approx_position if epoch.approx_position is not None else np.zeros(3)
            clock = 0.0
        sat_states, _ = self.adapter.compute_all(
            epoch, antenna_position(marker, epoch.antenna_offset), clock)

        # 3. first fix
        if not initialized:
            try:
                state, sat_states = self._bootstrap(epoch, sat_states)
                if self.config.time_only:
                    state = self.filter.pin_position(state, epoch.approx_position)
            except InsufficientObservations as e:
                logger.info(f"No solution at t={epoch.time:.1f}: {e}")
                return NoSolution(epoch.time, e.reason, str(e))
            except SolverError as e:
                logger.info(f"No solution at t={epoch.time:.1f}: {e}")
                return NoSolution(epoch.time, ReasonCode.SOLVER_FAILED, str(e))

        # 4. atmosphere
        llh = ecef2llh(antenna_position(state.position, epoch.antenna_offset))
        atmosphere = {
            sat: self.atmosphere_model.evaluate(sat_state, llh, epoch.time,
                                                epoch.observations_for(sat), epoch.iono_parameters)
            for sat, sat_state in sat_states.items()
        }

        # 5. screening
        try:
            pre = self.preprocessor.process(epoch, sat_states, self._history)
        except InsufficientObservations as e:
            logger.info(f"No solution at t={epoch.time:.1f}: {e}")
            if initialized and self.config.predict_on_gap:
                self._state = state
                self._last_time = epoch.time
            return NoSolution(epoch.time, e.reason, str(e), predicted_position=state.position)

        # 6. ambiguity and inter-system bias bookkeeping
        state = self._prepare_states(state, pre, atmosphere, epoch)
        held = self._held_ambiguities(state, pre)

        # 7-9. measurement update with fault exclusion
        result, excluded, fault = self._update_with_exclusion(epoch, state, pre, atmosphere, held)

        # 10. ambiguity resolution
        resolution = None
        ambiguities = AmbiguitySet.empty()
        if self.config.ar_mode != 'off' and self.config.use_carrier_phase:
            used = [a for a in pre.admitted if a.sat not in excluded]
            resolution = self.resolver.resolve(result.state, used, epoch.time)
            ambiguities = resolution.ambiguity_set

        # 11. quality
        dop = compute_dop(result.measurements, result.state)
        fixed = resolution is not None and resolution.fixed
        fix_status = self.quality.fix_status(dop, fixed, bool(result.state.ambiguity_keys()))
        integrity = self.quality.integrity(fault, excluded)

        # 12. commit
        self._state = result.state
        self._history = pre.history
        self._ambiguities = ambiguities
        self._last_time = epoch.time
        self.filter.status = result.status

        output = resolution.fixed_state if fixed else result.state
        return self._solution(epoch, output, result, resolution, dop, fix_status, integrity,
                              excluded, pre, sat_states, atmosphere)

    # ------------------------------------------------------------------
    # pipeline steps
    # ------------------------------------------------------------------

    def _bootstrap(self, epoch: Epoch, sat_states: Dict[str, SatelliteState]):
        """Least-squares first fix; satellite states are recomputed at the result"""
        passes = 1 if epoch.approx_position is not None else 2
        approx = epoch.approx_position
        for _ in range(passes):
            admitted = self._unscreened(epoch, sat_states)
            systems = {a.observation.system for a in admitted
                       if a.observation.pseudorange is not None}
            systems.discard(self.config.reference_system)

            def build(s, admitted=admitted):
                return self.measurement_model.build(admitted, {}, s, None, (),
                                                    epoch.antenna_offset, epoch.external_delay)

            state = self.filter.bootstrap(epoch.time, build, approx, systems)
            approx = state.position
            sat_states, _ = self.adapter.compute_all(
                epoch, antenna_position(state.position, epoch.antenna_offset), state.clock)
        return state, sat_states

    def _unscreened(self, epoch: Epoch, sat_states: Dict[str, SatelliteState]):
        """All observations with unit weight, for the first fix"""
        cfg = self.config
        out = []
        for obs in epoch.observations:
            sat_state = sat_states.get(obs.sat)
            if sat_state is None or not obs.is_usable or not obs.has_known_band:
                continue
            if not obs.channel_known:
                if obs.pseudorange is None:
                    continue
                obs = replace(obs, carrier_phase=None, doppler=None)
            out.append(AdmittedObservation(obs, sat_state, 1.0,
                                           compute_obs_variance(1.0, 'code', cfg),
                                           compute_obs_variance(1.0, 'phase', cfg),
                                           compute_obs_variance(1.0, 'doppler', cfg)))
        return out

    def _prepare_states(self, state: FilterState, pre: PreprocessResult,
                        atmosphere: Dict[str, Dict[str, AtmosphericDelay]],
                        epoch: Epoch) -> FilterState:
        initial = {}
        if self.config.use_carrier_phase:
            for adm in pre.admitted:
                obs = adm.observation
                if obs.carrier_phase is None:
                    continue
                code = obs.pseudorange
                if code is None:
                    code = epoch.preferred_pseudorange(obs.sat)
                if code is None:
                    continue
                delay = atmosphere.get(obs.sat, {}).get(obs.band)
                initial[obs.signal] = initial_ambiguity(adm, delay, code, epoch.external_delay,
                                                        self.config.internal_delay(obs.band))

        state = self.filter.prepare_ambiguities(state, initial, pre.slipped)
        return self.filter.prepare_isb(state, {a.observation.system for a in pre.admitted})

    def _held_ambiguities(self, state: FilterState, pre: PreprocessResult) -> Optional[AmbiguitySet]:
        """Previous integers still valid: no slip and both signals still tracked"""
        if self.config.ar_mode != 'fix_and_hold' or not self._ambiguities.is_fixed:
            return None
        kept = {
            sig: fixed for sig, fixed in self._ambiguities.ambiguities.items()
            if sig in state and fixed.reference in state
            and sig not in pre.slipped and fixed.reference not in pre.slipped
        }
        return AmbiguitySet(kept, self._ambiguities.ratio, self._ambiguities.time)

    def _update_with_exclusion(self, epoch: Epoch, state: FilterState, pre: PreprocessResult,
                               atmosphere, held) -> Tuple[UpdateResult, Tuple[str, ...], bool]:
        """
        Update, then leave-one-out exclusion while the chi-square test fails

        At most ``max_exclusions`` rounds. Each round tries the remaining
        satellites in identifier order and takes the passing candidate with
        the smallest chi-square; without a passing candidate the worst
        satellite is set aside for the next round. When no round passes the
        unexcluded result is kept and the fault stays flagged.
        """
        def run(exclude):
            ms = self.measurement_model.build(pre.admitted, atmosphere, state, held, exclude,
                                              epoch.antenna_offset, epoch.external_delay)
            return self.filter.update(state, ms)

        result = run(())
        fault = self.quality.detect_fault(result)
        if not fault:
            return result, (), False

        satellites = result.measurements.satellites
        tried: Tuple[str, ...] = ()
        attempt = 0
        while attempt < self.config.max_exclusions:
            attempt += 1
            if len(satellites) - len(tried) - 1 < self.config.required_satellites:
                break
            trials = [(sat, run(tried + (sat,))) for sat in satellites if sat not in tried]
            passing = [t for t in trials if not self.quality.detect_fault(t[1])]
            if passing:
                sat, trial = min(passing, key=lambda t: t[1].chi_square)
                excluded = tried + (sat,)
                logger.warning(f"Fault excluded at t={epoch.time:.1f}: {', '.join(excluded)}")
                return trial, excluded, False
            sat, _ = min(trials, key=lambda t: t[1].chi_square)
            tried = tried + (sat,)

        logger.warning(f"Suspected fault at t={epoch.time:.1f}, exclusion exhausted")
        return result, (), True

    def _solution(self, epoch: Epoch, output: FilterState, result: UpdateResult,
                  resolution: Optional[AmbiguityResolution], dop, fix_status, integrity,
                  excluded, pre: PreprocessResult, sat_states, atmosphere) -> Solution:
        code_residual = {}
        for row, v in zip(result.measurements.rows, result.residuals):
            if row.kind == 'code' and row.sat not in code_residual:
                code_residual[row.sat] = float(v)

        used = result.measurements.satellites
        satellite_data = []
        for sat in pre.satellites:
            sat_state = sat_states[sat]
            band = pre.for_satellite(sat)[0].observation.band
            delay = atmosphere.get(sat, {}).get(band)
            if delay is None:
                continue
            satellite_data.append(SatelliteSolutionData(
                sat, sat_state.azimuth, sat_state.elevation, delay.troposphere, delay.ionosphere,
                code_residual.get(sat), sat in used))

        x = output.x
        return Solution(
            time=epoch.time,
            position=x[0:3],
            velocity=x[3:6],
            clock_bias=float(x[6] / CLIGHT),
            clock_drift=float(x[7] / CLIGHT),
            covariance=output.P[:NX_CORE, :NX_CORE],
            dop=dop,
            fix_status=fix_status,
            integrity=integrity,
            satellites_used=tuple(used),
            satellites_excluded=tuple(excluded),
            ratio=resolution.ratio if resolution is not None else 0.0,
            num_fixed=resolution.num_fixed if resolution is not None else 0,
            chi_square=result.chi_square,
            dof=result.dof,
            filter_status=result.status,
            satellite_data=tuple(satellite_data),
            rejected_signals=tuple(r.signal for r in result.rejected),
        )
