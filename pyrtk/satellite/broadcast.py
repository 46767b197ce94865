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

"""Broadcast ephemeris provider backed by cssrlib"""

import logging

import numpy as np
from cssrlib.ephemeris import satpos
from cssrlib.gnss import gpst2time, id2sat, timeadd

from ..core.data_structures import OrbitState
from ..core.exceptions import EphemerisUnavailable
from ..core.time import gpst2weektow

logger = logging.getLogger(__name__)

# Broadcast orbit + clock error (m), used as the ephemeris variance
ERR_BRDC_EPH = 3.0


def _to_gtime(seconds: float):
    week, tow = gpst2weektow(seconds)
    return gpst2time(week, tow)


class BroadcastEphemerisProvider:
    """Satellite states from cssrlib navigation data.

    Parameters
    ----------
    nav : cssrlib.gnss.Nav
        Navigation data with broadcast ephemerides loaded
    clock_step : float
        Half-interval (s) of the central difference used for the clock drift
    """

    def __init__(self, nav, clock_step: float = 0.5):
        self.nav = nav
        self.clock_step = clock_step

    def _evaluate(self, sat_no: int, sat: str, t, time: float):
        rs, vs, dts, svh = satpos(sat_no, t, self.nav)
        if rs is None or dts is None:
            raise EphemerisUnavailable(sat, time, "no broadcast ephemeris")
        rs = np.asarray(rs, dtype=float).reshape(-1, 3)[0]
        vs = np.asarray(vs, dtype=float).reshape(-1, 3)[0]
        dts = float(np.ravel(dts)[0])
        if np.isnan(rs).any() or np.isnan(dts) or np.linalg.norm(rs) == 0.0:
            raise EphemerisUnavailable(sat, time, "invalid broadcast ephemeris")
        health = int(np.ravel(svh)[0]) if svh is not None else 0
        return rs, vs, dts, health

    def state_at(self, sat: str, time: float) -> OrbitState:
        sat_no = id2sat(sat)
        if sat_no is None or sat_no <= 0:
            raise EphemerisUnavailable(sat, time, "unknown satellite")

        t = _to_gtime(time)
        rs, vs, dts, health = self._evaluate(sat_no, sat, t, time)
        _, _, dts_next, _ = self._evaluate(sat_no, sat, timeadd(t, self.clock_step), time)
        _, _, dts_prev, _ = self._evaluate(sat_no, sat, timeadd(t, -self.clock_step), time)

        if health != 0:
            raise EphemerisUnavailable(sat, time, f"unhealthy (svh={health})")

        drift = (dts_next - dts_prev) / (2.0 * self.clock_step)
        # broadcast clocks from cssrlib already carry the relativistic term
        return OrbitState(position=rs, velocity=vs, clock_bias=dts, clock_drift=drift,
                          variance=ERR_BRDC_EPH**2, relativity_included=True)
