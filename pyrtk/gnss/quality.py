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

"""Solution quality: dilution of precision, fault detection and fix status"""

import logging

import numpy as np
from scipy.stats import chi2

from ..coordinate.transforms import ecef2llh, enu_rotation
from ..core.config import ProcessingConfig
from ..core.constants import RE_WGS84
from ..core.data_structures import DOP, FixStatus, IntegrityStatus
from ..estimation.state import IDX_CLK, IDX_POS

logger = logging.getLogger(__name__)


def compute_dop(measurements, state) -> DOP:
    """
    DOP from the unweighted code geometry

    One row per satellite; columns are position, receiver clock and any
    observed inter-system biases. HDOP/VDOP are taken in the local ENU frame
    at the state position. Rows without position columns (time-only
    solutions) give position DOPs of zero.

    Returns
    -------
    DOP
        ``DOP.unavailable()`` when the geometry is singular
    """
    seen = set()
    rows = []
    for r in measurements:
        if r.kind != 'code' or r.sat in seen:
            continue
        seen.add(r.sat)
        rows.append(r.h)
    if not rows:
        return DOP.unavailable()
    H = np.vstack(rows)

    timing = not np.any(H[:, IDX_POS] != 0.0)
    isb_cols = [state.index_of(('isb', s)) for s in state.isb_systems()]
    cols = ([] if timing else [0, 1, 2]) + [IDX_CLK]
    cols += [c for c in isb_cols if np.any(H[:, c] != 0.0)]
    G = H[:, cols]
    if G.shape[0] < G.shape[1]:
        return DOP.unavailable()

    try:
        Q = np.linalg.inv(G.T @ G)
    except np.linalg.LinAlgError:
        return DOP.unavailable()
    if not np.all(np.isfinite(Q)) or np.any(np.diag(Q) < 0.0):
        return DOP.unavailable()

    if timing:
        return DOP(gdop=float(np.sqrt(np.trace(Q))), pdop=0.0, hdop=0.0, vdop=0.0,
                   tdop=float(np.sqrt(Q[0, 0])))

    pos = state.position
    if np.linalg.norm(pos) > RE_WGS84 / 2:
        llh = ecef2llh(pos)
        R = enu_rotation(float(llh[0]), float(llh[1]))
    else:
        R = np.eye(3)
    Qenu = R @ Q[IDX_POS, IDX_POS] @ R.T

    return DOP(gdop=float(np.sqrt(np.trace(Q))),
               pdop=float(np.sqrt(np.trace(Q[IDX_POS, IDX_POS]))),
               hdop=float(np.sqrt(Qenu[0, 0] + Qenu[1, 1])),
               vdop=float(np.sqrt(Qenu[2, 2])),
               tdop=float(np.sqrt(Q[3, 3])))


class QualityAssessor:
    """
    Chi-square fault detection and fix status

    Parameters
    ----------
    config : ProcessingConfig
        ``raim_enabled``, ``raim_false_alarm`` and ``dop_ceiling`` are used
    """

    def __init__(self, config: ProcessingConfig):
        self.config = config

    def chi_square_threshold(self, dof: int) -> float:
        return float(chi2.ppf(1.0 - self.config.raim_false_alarm, max(int(dof), 1)))

    def detect_fault(self, update) -> bool:
        """True when the weighted post-fit residual sum fails the chi-square test"""
        if not self.config.raim_enabled or len(update.measurements) == 0:
            return False
        threshold = self.chi_square_threshold(update.dof)
        if update.chi_square > threshold:
            logger.debug(f"Chi-square {update.chi_square:.2f} exceeds {threshold:.2f} "
                         f"(dof={update.dof})")
            return True
        return False

    def fix_status(self, dop: DOP, fixed: bool, has_ambiguities: bool) -> FixStatus:
        """Degraded geometry > fixed > float > no fix"""
        if not dop.gdop <= self.config.dop_ceiling:
            return FixStatus.DEGRADED_GEOMETRY
        if fixed:
            return FixStatus.FIXED
        if has_ambiguities:
            return FixStatus.FLOAT
        return FixStatus.NO_FIX

    @staticmethod
    def integrity(fault_detected: bool, excluded) -> IntegrityStatus:
        if excluded:
            return IntegrityStatus.FAULT_EXCLUDED
        if fault_detected:
            return IntegrityStatus.SUSPECTED_FAULT
        return IntegrityStatus.NOMINAL
