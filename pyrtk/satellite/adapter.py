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

"""Satellite state at signal transmission time

Wraps an ephemeris service (anything with a ``state_at(sat, time)`` method
returning an :class:`~pyrtk.core.data_structures.OrbitState`) and solves the
light-time equation so the returned state is evaluated at the true
transmission time and expressed in the ECEF frame at reception.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Protocol, Tuple

import numpy as np
from numba import njit

from ..coordinate.transforms import ecef2llh, satazel
from ..core.config import ProcessingConfig
from ..core.constants import CLIGHT, OMGE
from ..core.data_structures import Epoch, OrbitState, SatelliteState
from ..core.exceptions import EphemerisUnavailable

logger = logging.getLogger(__name__)

# Nominal GNSS signal travel time used to start the iteration (s)
NOMINAL_LIGHT_TIME = 0.075


class SatelliteStateProvider(Protocol):
    """Ephemeris capability consumed by the adapter"""

    def state_at(self, sat: str, time: float) -> OrbitState:
        """Satellite state at GPS time, or raise EphemerisUnavailable"""
        ...


@njit(cache=True)
def earth_rotation(vec, angle):
    """Rotate an ECEF vector about the z axis by ``angle`` (rad) into a later frame"""
    c = np.cos(angle)
    s = np.sin(angle)
    out = np.empty(3)
    out[0] = c * vec[0] + s * vec[1]
    out[1] = -s * vec[0] + c * vec[1]
    out[2] = vec[2]
    return out


def relativistic_clock_correction(position: np.ndarray, velocity: np.ndarray) -> float:
    """Periodic relativistic clock term -2 r.v / c^2 (s)"""
    return float(-2.0 * np.dot(position, velocity) / CLIGHT**2)


class SatelliteStateAdapter:
    """Light-time corrected satellite states for one receiver.

    Parameters
    ----------
    provider : SatelliteStateProvider
        Ephemeris service
    config : ProcessingConfig
        Uses the light-time tolerance/iteration limit, the relativistic
        correction switch and ``max_workers``
    """

    def __init__(self, provider: SatelliteStateProvider, config: ProcessingConfig):
        self.provider = provider
        self.config = config

    def compute(self, sat: str, reception_time: float, receiver_position: np.ndarray,
                receiver_clock: float = 0.0,
                pseudorange: Optional[float] = None) -> SatelliteState:
        """Satellite state for a signal received at ``reception_time``.

        Parameters
        ----------
        sat : str
            Satellite identifier
        reception_time : float
            Receiver time tag (GPS seconds)
        receiver_position : np.ndarray
            Approximate receiver antenna position (ECEF, m)
        receiver_clock : float
            Receiver clock bias estimate (m), removed from the time tag
        pseudorange : float, optional
            Used only to seed the light time

        Raises
        ------
        EphemerisUnavailable
            When the provider has no data for the transmission time
        """
        rr = np.asarray(receiver_position, dtype=float)
        t_rx = reception_time - receiver_clock / CLIGHT
        tau = pseudorange / CLIGHT if pseudorange is not None and pseudorange > 0 else NOMINAL_LIGHT_TIME
        tol = self.config.light_time_tolerance

        orbit = None
        position = None
        rho = 0.0
        iterations = 0
        converged = False
        while iterations < self.config.light_time_max_iterations:
            iterations += 1
            t_tx = t_rx - tau
            orbit = self.provider.state_at(sat, t_tx)
            if orbit is None:
                raise EphemerisUnavailable(sat, t_tx)
            position = earth_rotation(np.array(orbit.position, dtype=float), OMGE * tau)
            rho = float(np.linalg.norm(position - rr))
            tau_new = rho / CLIGHT
            converged = abs(tau_new - tau) < tol
            tau_used = tau
            tau = tau_new
            if converged:
                break
        if not converged:
            logger.debug(f"{sat}: light time not converged after {iterations} iterations")

        velocity = earth_rotation(np.array(orbit.velocity, dtype=float), OMGE * tau_used)

        relativistic = 0.0
        if self.config.relativistic_correction and not orbit.relativity_included:
            relativistic = relativistic_clock_correction(orbit.position, orbit.velocity)

        sagnac = rho - float(np.linalg.norm(orbit.position - rr))

        if np.linalg.norm(rr) > 1e6:
            az, el = satazel(ecef2llh(rr), (position - rr) / rho)
        else:
            # receiver position unknown, geometry is not meaningful yet
            az, el = 0.0, np.pi / 2.0

        return SatelliteState(
            sat=sat,
            transmit_time=t_rx - tau_used,
            position=position,
            velocity=velocity,
            clock_bias=orbit.clock_bias + relativistic,
            clock_drift=orbit.clock_drift,
            relativistic_correction=relativistic,
            sagnac_correction=sagnac,
            geometric_range=rho,
            elevation=el,
            azimuth=az,
            variance=orbit.variance,
            tgd=orbit.tgd,
            iterations=iterations,
        )

    def compute_all(self, epoch: Epoch, receiver_position: np.ndarray,
                    receiver_clock: float = 0.0) -> Tuple[Dict[str, SatelliteState], Dict[str, str]]:
        """States of all satellites in an epoch, ordered by satellite identifier.

        Returns
        -------
        states : dict
            sat -> SatelliteState
        dropped : dict
            sat -> reason, for satellites without ephemeris
        """
        sats = epoch.satellites()

        def one(sat):
            try:
                return self.compute(sat, epoch.time, receiver_position, receiver_clock,
                                    epoch.preferred_pseudorange(sat))
            except EphemerisUnavailable as e:
                return e

        if self.config.max_workers > 1 and len(sats) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                results = list(pool.map(one, sats))
        else:
            results = [one(sat) for sat in sats]

        states = {}
        dropped = {}
        for sat, result in zip(sats, results):
            if isinstance(result, EphemerisUnavailable):
                logger.info(f"Dropping {sat}: {result}")
                dropped[sat] = str(result)
            else:
                states[sat] = result
        return states, dropped
