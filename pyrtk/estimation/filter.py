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

"""Recursive state estimator for the receiver PVT, ambiguities and biases"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Tuple

import numpy as np

from ..coordinate.transforms import ecef2llh, enu_rotation
from ..core.config import ProcessingConfig
from ..core.constants import RE_WGS84
from ..core.data_structures import FilterStatus, SignalId
from ..core.exceptions import (FilterDivergedError, IllConditionedGeometry,
                               InsufficientObservations, ReasonCode, SolverError)
from .state import IDX_CLK, IDX_DRIFT, IDX_POS, IDX_VEL, NX_CORE, FilterState, isb_key
from .strategies import UpdateStrategy, make_strategy

logger = logging.getLogger(__name__)

PINNED_VARIANCE = 1e-8    # m^2, position and velocity of time-only solutions


@dataclass(frozen=True, eq=False)
class UpdateResult:
    """Posterior of one measurement update"""
    state: FilterState
    measurements: object                 # MeasurementSet actually applied
    rejected: Tuple = ()                 # rows dropped by innovation screening
    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))
    chi_square: float = 0.0
    dof: int = 0
    condition_number: float = 1.0
    status: FilterStatus = FilterStatus.INITIALIZED


def count_observed_states(H: np.ndarray) -> int:
    """Number of state columns with at least one nonzero entry"""
    if H.size == 0:
        return 0
    return int(np.count_nonzero(np.any(H != 0.0, axis=0)))


class EstimationFilter:
    """
    Kalman filter over position, velocity, clock and auxiliary states

    Status machine::

        UNINITIALIZED -> INITIALIZED <-> CONVERGED
                              \\-> DIVERGED (until reset)

    The filter does not own a state: every operation takes a
    :class:`FilterState` and returns a new one, so callers can commit
    atomically.

    Parameters
    ----------
    config : ProcessingConfig
    strategy : UpdateStrategy, optional
        Defaults to the strategy named by ``config.filter_mode``
    """

    def __init__(self, config: ProcessingConfig, strategy: Optional[UpdateStrategy] = None):
        self.config = config
        self.strategy = strategy if strategy is not None else make_strategy(config.filter_mode)
        self.status = FilterStatus.UNINITIALIZED

    def reset(self):
        self.status = FilterStatus.UNINITIALIZED

    def ensure_usable(self):
        if self.status is FilterStatus.DIVERGED:
            raise FilterDivergedError("filter diverged; call reset() before further use")

    def mark_diverged(self, reason: str = ''):
        logger.warning(f"Filter diverged{': ' + reason if reason else ''}")
        self.status = FilterStatus.DIVERGED

    # ------------------------------------------------------------------
    # initialization
    # ------------------------------------------------------------------

    def initial_covariance(self, n: int = NX_CORE) -> np.ndarray:
        cfg = self.config
        P = np.zeros((n, n))
        P[IDX_POS, IDX_POS] = np.eye(3) * cfg.init_position_std**2
        P[IDX_VEL, IDX_VEL] = np.eye(3) * cfg.init_velocity_std**2
        P[IDX_CLK, IDX_CLK] = cfg.init_clock_std**2
        P[IDX_DRIFT, IDX_DRIFT] = cfg.init_drift_std**2
        return P

    def initialize(self, time: float, position: np.ndarray, clock: float = 0.0,
                   velocity: Optional[np.ndarray] = None, drift: float = 0.0) -> FilterState:
        """State with core values and the configured initial uncertainty"""
        x = np.zeros(NX_CORE)
        x[IDX_POS] = position
        if velocity is not None:
            x[IDX_VEL] = velocity
        x[IDX_CLK] = clock
        x[IDX_DRIFT] = drift
        return FilterState(x, self.initial_covariance(), time)

    def bootstrap(self, time: float, build: Callable[[FilterState], object],
                  approx_position: Optional[np.ndarray] = None,
                  isb_systems: Iterable[str] = ()) -> FilterState:
        """
        First fix by iterative weighted least squares on code and Doppler

        Parameters
        ----------
        time : float
            Epoch time
        build : callable
            ``build(state) -> MeasurementSet`` linearizing about ``state``
        approx_position : np.ndarray, optional
            Starting point; the Earth center otherwise
        isb_systems : iterable of str
            Non-reference constellations, each adding a bias column

        Returns
        -------
        FilterState
            Initialized state carrying the configured initial covariance

        Raises
        ------
        InsufficientObservations
            Too few code satellites for the unknowns
        SolverError
            Normal equations singular or solution not finite
        """
        state = FilterState(time=time)
        if approx_position is not None:
            state.x[IDX_POS] = approx_position
        isb_systems = sorted(set(isb_systems))
        for system in isb_systems:
            state.add_state(isb_key(system), 0.0, self.config.init_isb_std**2)

        unknowns = (1 if self.config.time_only else 4) + len(isb_systems)
        minimum = max(self.config.required_satellites, unknowns)
        for i in range(self.config.bootstrap_max_iterations):
            ms = build(state).of_kind('code', 'doppler')
            n_sats = len(ms.code_satellites())
            if n_sats < minimum:
                reason = (ReasonCode.NO_PSEUDORANGE if n_sats == 0
                          else ReasonCode.INSUFFICIENT_OBSERVATIONS)
                raise InsufficientObservations(n_sats, minimum, reason)

            H, v = ms.H, ms.residuals
            W = np.diag(1.0 / ms.variances)

            # solve only for the observed columns
            active_idx = np.where(np.any(H != 0.0, axis=0))[0]
            H_reduced = H[:, active_idx]
            try:
                N = H_reduced.T @ W @ H_reduced
                b = H_reduced.T @ W @ v
                dx_reduced = np.linalg.solve(N, b)
            except np.linalg.LinAlgError as e:
                raise SolverError(f"bootstrap normal equations singular: {e}") from e

            dx = np.zeros(state.size)
            dx[active_idx] = dx_reduced
            state.x += dx
            if not np.all(np.isfinite(state.x)):
                raise SolverError("bootstrap diverged")
            if np.linalg.norm(dx[IDX_POS]) < 1e-4 and abs(dx[IDX_CLK]) < 1e-4:
                break

        logger.info(f"Bootstrap fix at t={time:.1f} after {i + 1} iterations: "
                    f"{np.round(state.position, 3)}")

        P = self.initial_covariance(state.size)
        for system in isb_systems:
            j = state.index_of(isb_key(system))
            P[j, j] = self.config.init_isb_std**2
        state.P = P
        return state

    def pin_position(self, state: FilterState, position: np.ndarray) -> FilterState:
        """
        Hold the position at a known point with zero velocity

        Position and velocity lose their correlations and keep a small
        variance, so updates whose rows leave those columns at zero cannot
        move them.
        """
        state.x[IDX_POS] = position
        state.x[IDX_VEL] = 0.0
        state.P[:IDX_CLK, :] = 0.0
        state.P[:, :IDX_CLK] = 0.0
        state.P[:IDX_CLK, :IDX_CLK] = np.eye(IDX_CLK) * PINNED_VARIANCE
        return state

    # ------------------------------------------------------------------
    # time update
    # ------------------------------------------------------------------

    def predict(self, state: FilterState, time: float) -> FilterState:
        """Propagate a copy of ``state`` to ``time``"""
        new = state.copy()
        if state.time is None:
            new.time = time
            return new
        dt = time - state.time
        new.time = time
        if dt <= 0.0:
            return new

        cfg = self.config
        n = state.size
        F = np.eye(n)
        Q = np.zeros((n, n))

        if cfg.motion_model == 'constant_velocity':
            F[IDX_POS, IDX_VEL] = np.eye(3) * dt
            if np.linalg.norm(state.position) > RE_WGS84 / 2:
                llh = ecef2llh(state.position)
                R = enu_rotation(float(llh[0]), float(llh[1]))
            else:
                R = np.eye(3)
            # white acceleration noise, horizontal/vertical in ENU
            Qa = R.T @ np.diag([cfg.accel_noise_h**2, cfg.accel_noise_h**2,
                                cfg.accel_noise_v**2]) @ R
            Q[IDX_POS, IDX_POS] = Qa * dt**3 / 3.0 + np.eye(3) * cfg.position_noise**2 * dt
            Q[IDX_POS, IDX_VEL] = Qa * dt**2 / 2.0
            Q[IDX_VEL, IDX_POS] = Qa * dt**2 / 2.0
            Q[IDX_VEL, IDX_VEL] = Qa * dt
        else:
            Q[IDX_POS, IDX_POS] = np.eye(3) * cfg.position_noise**2 * dt

        F[IDX_CLK, IDX_DRIFT] = dt
        Q[IDX_CLK, IDX_CLK] = cfg.clock_bias_noise**2 * dt
        Q[IDX_DRIFT, IDX_DRIFT] = cfg.clock_drift_noise**2 * dt

        for key in state.keys():
            i = state.index_of(key)
            if isinstance(key, SignalId):
                Q[i, i] = cfg.ambiguity_noise**2 * dt
            else:
                Q[i, i] = cfg.isb_noise**2 * dt

        new.x = F @ state.x
        new.P = F @ state.P @ F.T + Q
        return new

    # ------------------------------------------------------------------
    # auxiliary state bookkeeping
    # ------------------------------------------------------------------

    def prepare_ambiguities(self, state: FilterState, initial_values: Mapping[SignalId, float],
                            slipped: Iterable[SignalId] = ()) -> FilterState:
        """
        Align ambiguity states with the tracked carrier phases

        States of signals no longer tracked are removed, slipped ones are
        re-initialized and new ones are appended in signal order.
        """
        slipped = set(slipped)
        variance = self.config.init_ambiguity_std**2
        for key in state.ambiguity_keys():
            if key not in initial_values:
                state.remove_state(key)
        for signal in sorted(initial_values):
            if signal not in state:
                state.add_state(signal, initial_values[signal], variance)
            elif signal in slipped:
                logger.debug(f"Reset ambiguity {signal}")
                state.reset_state(signal, initial_values[signal], variance)
        return state

    def prepare_isb(self, state: FilterState, systems: Iterable[str]) -> FilterState:
        """Keep one inter-system bias per non-reference constellation in view"""
        wanted = {s for s in systems if s != self.config.reference_system}
        for system in state.isb_systems():
            if system not in wanted:
                state.remove_state(isb_key(system))
        for system in sorted(wanted):
            if isb_key(system) not in state:
                state.add_state(isb_key(system), 0.0, self.config.init_isb_std**2)
        return state

    # ------------------------------------------------------------------
    # measurement update
    # ------------------------------------------------------------------

    def screen(self, state: FilterState, measurements):
        """Keep-mask of rows whose normalized prior innovation is within threshold"""
        threshold = self.config.outlier_threshold
        m = len(measurements)
        if threshold is None or m == 0:
            return np.ones(m, dtype=bool)
        H = measurements.H
        s = np.einsum('ij,jk,ik->i', H, state.P, H) + measurements.variances
        normalized = np.abs(measurements.residuals) / np.sqrt(s)
        return normalized <= threshold

    def check_covariance(self, P: np.ndarray) -> float:
        """Condition number of the correlation matrix of ``P``

        Raises
        ------
        IllConditionedGeometry
            On non-finite or non-positive variances or a condition number
            above ``condition_ceiling``
        """
        d = np.diag(P)
        if not np.all(np.isfinite(P)) or np.any(d <= 0.0):
            raise IllConditionedGeometry(np.inf, self.config.condition_ceiling)
        s = np.sqrt(d)
        corr = P / np.outer(s, s)
        cond = float(np.linalg.cond(corr))
        if not np.isfinite(cond) or cond > self.config.condition_ceiling:
            raise IllConditionedGeometry(cond, self.config.condition_ceiling)
        return cond

    def update(self, state: FilterState, measurements) -> UpdateResult:
        """
        Measurement update of a copy of ``state``

        Rows failing the innovation screen are removed before anything is
        modified. The weighted post-fit residual sum uses
        ``dof = rows - observed states`` (at least 1).

        Raises
        ------
        IllConditionedGeometry
            The posterior covariance failed the stability check; the filter
            is then DIVERGED
        """
        self.ensure_usable()
        keep = self.screen(state, measurements)
        rejected = tuple(r for r, k in zip(measurements.rows, keep) if not k)
        for r in rejected:
            logger.debug(f"Innovation outlier {r.kind} {r.signal}: {r.residual:.3f}")
        used = measurements.select(keep) if rejected else measurements

        new = state.copy()
        if len(used) == 0:
            return UpdateResult(new, used, rejected, status=self._status_for(new))

        x0 = state.x
        try:
            x, P = self.strategy.update(state.x, state.P, used.H, used.residuals, used.variances)
        except np.linalg.LinAlgError as e:
            self.mark_diverged(str(e))
            raise IllConditionedGeometry(np.inf, self.config.condition_ceiling) from e

        try:
            cond = self.check_covariance(P)
        except IllConditionedGeometry as e:
            self.mark_diverged(str(e))
            raise

        new.x, new.P = x, P
        post = used.residuals - used.H @ (x - x0)
        chi2 = float(np.sum(post**2 / used.variances))
        dof = max(len(used) - count_observed_states(used.H), 1)
        return UpdateResult(new, used, rejected, post, chi2, dof, cond, self._status_for(new))

    def _status_for(self, state: FilterState) -> FilterStatus:
        if self.config.time_only:
            std = np.sqrt(state.P[IDX_CLK, IDX_CLK])
        else:
            std = np.sqrt(np.trace(state.P[IDX_POS, IDX_POS]))
        if std < self.config.convergence_threshold:
            return FilterStatus.CONVERGED
        return FilterStatus.INITIALIZED
