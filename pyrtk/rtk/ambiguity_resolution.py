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

"""
Integer ambiguity resolution

Undifferenced ambiguities share the receiver clock, so integers are searched
on between-satellite single differences formed per (system, band) against the
signal with the smallest float variance.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from ..core.config import ProcessingConfig
from ..core.constants import wavelength as carrier_wavelength
from ..core.data_structures import AmbiguitySet, FixedAmbiguity, SignalId
from ..estimation.state import FilterState
from ..gnss.preprocessing import AdmittedObservation
from .lambda_search import mlambda, success_rate

logger = logging.getLogger(__name__)


class AmbiguityResolutionRejected(Enum):
    """Why a float solution was not fixed"""
    TOO_FEW_AMBIGUITIES = "too_few_ambiguities"
    SINGULAR_COVARIANCE = "singular_covariance"
    TIE = "tie"
    RATIO_TEST = "ratio_test"
    RESIDUAL_TEST = "residual_test"


@dataclass(frozen=True, eq=False)
class IntegerSearchResult:
    """Outcome of an integer search on one float vector"""
    float_ambiguities: np.ndarray
    best: Optional[np.ndarray] = None
    second: Optional[np.ndarray] = None
    best_norm: float = np.inf
    second_norm: float = np.inf
    ratio: float = 0.0
    success_rate: float = 0.0
    accepted: bool = False
    reason: Optional[AmbiguityResolutionRejected] = None


@dataclass(frozen=True, eq=False)
class AmbiguityResolution:
    """Result of one resolution attempt"""
    ambiguity_set: AmbiguitySet
    search: Optional[IntegerSearchResult] = None
    fixed_state: Optional[FilterState] = None
    reason: Optional[AmbiguityResolutionRejected] = None

    @property
    def fixed(self) -> bool:
        return self.fixed_state is not None

    @property
    def ratio(self) -> float:
        return self.search.ratio if self.search is not None else 0.0

    @property
    def num_fixed(self) -> int:
        return len(self.ambiguity_set)


class AmbiguityResolver:
    """
    LAMBDA search with ratio/residual validation

    GLONASS ambiguities stay float unless ``glonass_ar`` is set, in which
    case they are differenced only within one frequency channel.

    Parameters
    ----------
    config : ProcessingConfig
        ``ar_ratio_threshold``, ``ar_max_residual``, ``ar_min_ambiguities``,
        ``ar_tie_tolerance``, ``ar_elevation_mask_deg`` and ``glonass_ar``
        are used
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config

    def search(self, a: np.ndarray, Q: np.ndarray) -> IntegerSearchResult:
        """
        Best and second-best integer vectors for float ambiguities ``a``

        Two candidates whose quadratic forms agree within
        ``ar_tie_tolerance`` (relative) leave the search unresolved.
        """
        a = np.asarray(a, dtype=float)
        if a.size == 0:
            return IntegerSearchResult(a, reason=AmbiguityResolutionRejected.TOO_FEW_AMBIGUITIES)

        try:
            afix, s = mlambda(a, Q, m=2)
            psr = success_rate(Q)
        except np.linalg.LinAlgError as e:
            logger.debug(f"Integer search failed: {e}")
            return IntegerSearchResult(a, reason=AmbiguityResolutionRejected.SINGULAR_COVARIANCE)

        best = afix[:, 0]
        s0 = float(s[0])
        if afix.shape[1] > 1:
            second, s1 = afix[:, 1], float(s[1])
        else:
            second, s1 = None, np.inf

        ratio = np.inf if s0 < 1e-12 else s1 / s0
        result = dict(float_ambiguities=a, best=best, second=second, best_norm=s0,
                      second_norm=s1, ratio=float(ratio), success_rate=psr)

        if np.isfinite(s1) and abs(s1 - s0) <= self.config.ar_tie_tolerance * max(s0, s1):
            logger.debug(f"Integer search tie: {s0:.6g} vs {s1:.6g}")
            return IntegerSearchResult(**result, reason=AmbiguityResolutionRejected.TIE)
        if ratio < self.config.ar_ratio_threshold:
            return IntegerSearchResult(**result, reason=AmbiguityResolutionRejected.RATIO_TEST)
        if np.max(np.abs(a - best)) > self.config.ar_max_residual:
            return IntegerSearchResult(**result, reason=AmbiguityResolutionRejected.RESIDUAL_TEST)
        return IntegerSearchResult(**result, accepted=True)

    def single_differences(self, state: FilterState,
                           admitted: Sequence[AdmittedObservation]) -> Tuple[np.ndarray, List[Tuple[SignalId, SignalId]]]:
        """
        Single-difference operator over the ambiguity states

        Returns
        -------
        D : np.ndarray
            (m x n) rows ``e_i - e_ref``
        pairs : list of (signal, reference)
        """
        el_mask = np.radians(self.config.ar_elevation_mask_deg)
        elevation = {a.signal: a.elevation for a in admitted}
        channel = {a.signal: a.observation.fcn for a in admitted}

        groups: Dict[Tuple[str, str, Optional[int]], List[SignalId]] = {}
        for key in state.ambiguity_keys():
            el = elevation.get(key)
            if el is None or el < el_mask:
                continue
            if key.system == 'R':
                # FDMA: only equal wavelengths difference to an integer
                if not self.config.glonass_ar:
                    continue
                groups.setdefault((key.system, key.band, channel.get(key)), []).append(key)
            else:
                groups.setdefault((key.system, key.band, None), []).append(key)

        pairs = []
        for group_key in sorted(groups):
            signals = sorted(groups[group_key])
            if len(signals) < 2:
                continue
            ref = min(signals, key=lambda s: (state.variance(s), s))
            pairs.extend((s, ref) for s in signals if s != ref)

        D = np.zeros((len(pairs), state.size))
        for row, (sig, ref) in enumerate(pairs):
            D[row, state.index_of(sig)] = 1.0
            D[row, state.index_of(ref)] = -1.0
        return D, pairs

    def resolve(self, state: FilterState, admitted: Sequence[AdmittedObservation],
                time: Optional[float] = None) -> AmbiguityResolution:
        """
        Attempt to fix the float ambiguities of ``state``

        Returns
        -------
        AmbiguityResolution
            With the fixed state ``x + P D' Qsd^-1 (z - D x)`` and a new
            AmbiguitySet when validated, an empty set otherwise
        """
        D, pairs = self.single_differences(state, admitted)
        if len(pairs) < self.config.ar_min_ambiguities:
            return AmbiguityResolution(AmbiguitySet.empty(),
                                       reason=AmbiguityResolutionRejected.TOO_FEW_AMBIGUITIES)

        a = D @ state.x
        PD = state.P @ D.T
        Qsd = D @ PD
        Qsd = 0.5 * (Qsd + Qsd.T)

        result = self.search(a, Qsd)
        if not result.accepted:
            logger.debug(f"Ambiguities not fixed ({result.reason.value}), ratio={result.ratio:.2f}")
            return AmbiguityResolution(AmbiguitySet.empty(), result, reason=result.reason)

        c = cho_factor(Qsd)
        fixed = state.copy()
        fixed.x = state.x + PD @ cho_solve(c, result.best - a)
        fixed.P = state.P - PD @ cho_solve(c, PD.T)
        fixed.P = 0.5 * (fixed.P + fixed.P.T)

        wavelengths = {adm.signal: adm.observation.wavelength for adm in admitted}
        ambiguities = {}
        for (sig, ref), z in zip(pairs, result.best):
            lam = wavelengths.get(sig) or carrier_wavelength(sig.sat, sig.band)
            ambiguities[sig] = FixedAmbiguity(int(z), ref, lam)

        logger.info(f"Fixed {len(ambiguities)} ambiguities, ratio={result.ratio:.2f}")
        return AmbiguityResolution(AmbiguitySet(ambiguities, result.ratio, time), result, fixed)
