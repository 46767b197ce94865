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
Deterministic synthetic constellation

Satellites move on straight lines with linear clocks, placed at given
azimuth/elevation over a reference receiver. Observations are generated from
the same satellite state adapter and observation equations used by the
estimator, without noise, so a correct estimator recovers the truth.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple

import numpy as np

from ..coordinate.transforms import ecef2llh, enu_rotation, geodist, llh2ecef
from ..core.config import ProcessingConfig, default_config
from ..core.constants import CLIGHT, FREQ_L1, carrier_frequency
from ..core.data_structures import Epoch, KlobucharParameters, Observation, OrbitState, SignalId
from ..core.exceptions import EphemerisUnavailable
from ..core.time import day_of_year
from ..gnss.troposphere import tropospheric_delay
from ..satellite.adapter import SatelliteStateAdapter

ORBIT_RADIUS = 26560e3        # GNSS orbit radius (m)
ORBIT_SPEED = 3874.0          # m/s

# GPS week 2300, Tuesday 00:00
DEFAULT_T0 = 2300 * 604800.0 + 2 * 86400.0

DEFAULT_LLH = (np.radians(35.0), np.radians(139.0), 50.0)

# azimuth, elevation (deg)
DEFAULT_SKY = {
    'G01': (10.0, 80.0),
    'G02': (45.0, 40.0),
    'G03': (135.0, 35.0),
    'G04': (225.0, 30.0),
    'G05': (315.0, 45.0),
    'G06': (90.0, 60.0),
    'G07': (180.0, 25.0),
    'G08': (270.0, 55.0),
}

DEFAULT_BANDS = {'G': ('L1',), 'E': ('E1',), 'J': ('L1',), 'C': ('B1I',), 'R': ('G1',)}


def place_satellite(receiver: np.ndarray, azimuth: float, elevation: float,
                    radius: float = ORBIT_RADIUS) -> np.ndarray:
    """ECEF point at ``radius`` seen from ``receiver`` at azimuth/elevation (rad)"""
    llh = ecef2llh(receiver)
    enu = np.array([np.cos(elevation) * np.sin(azimuth),
                    np.cos(elevation) * np.cos(azimuth),
                    np.sin(elevation)])
    u = enu_rotation(float(llh[0]), float(llh[1])).T @ enu
    b = float(receiver @ u)
    rho = -b + np.sqrt(b * b - receiver @ receiver + radius**2)
    return receiver + rho * u


class SyntheticOrbitProvider:
    """
    Satellites on straight lines with linear clocks

    Parameters
    ----------
    orbits : dict
        sat -> (position at t0, velocity, clock bias at t0 (s), clock drift (s/s))
    t0 : float
        Reference time (GPS seconds)
    outages : dict, optional
        sat -> (start, end) interval of transmission times without ephemeris
    """

    def __init__(self, orbits: Mapping[str, Tuple[np.ndarray, np.ndarray, float, float]],
                 t0: float, outages: Optional[Dict[str, Tuple[float, float]]] = None):
        self.orbits = {sat: (np.asarray(p, dtype=float), np.asarray(v, dtype=float), float(c), float(d))
                       for sat, (p, v, c, d) in orbits.items()}
        self.t0 = t0
        self.outages = dict(outages or {})

    def state_at(self, sat: str, time: float) -> OrbitState:
        if sat not in self.orbits:
            raise EphemerisUnavailable(sat, time, "unknown satellite")
        window = self.outages.get(sat)
        if window is not None and window[0] <= time <= window[1]:
            raise EphemerisUnavailable(sat, time, "outage")
        p, v, clk, drift = self.orbits[sat]
        dt = time - self.t0
        return OrbitState(position=p + v * dt, velocity=v, clock_bias=clk + drift * dt,
                          clock_drift=drift)


class SyntheticScenario:
    """
    Static or constant-velocity receiver under a synthetic constellation

    Parameters
    ----------
    sky : dict, optional
        sat -> (azimuth, elevation) in degrees at t0
    config : ProcessingConfig, optional
        Troposphere on/off and light-time settings are taken from it
    receiver_llh : tuple, optional
        Receiver position (rad, rad, m)
    receiver_velocity : np.ndarray, optional
        ECEF velocity (m/s)
    clock_bias, clock_drift : float
        Receiver clock (m, m/s)
    bands : dict, optional
        system -> bands tracked
    iono_l1 : float or dict
        L1 ionospheric delay (m), per satellite when a dict
    isb : dict, optional
        system -> inter-system bias (m)
    channels : dict, optional
        GLONASS sat -> frequency channel number
    t0 : float
        Start time (GPS seconds)
    """

    def __init__(self, sky: Optional[Mapping[str, Tuple[float, float]]] = None,
                 config: Optional[ProcessingConfig] = None,
                 receiver_llh=DEFAULT_LLH, receiver_velocity=None,
                 clock_bias: float = 150.0, clock_drift: float = 0.2,
                 bands: Optional[Mapping[str, Iterable[str]]] = None,
                 iono_l1=0.0, isb: Optional[Mapping[str, float]] = None,
                 channels: Optional[Mapping[str, int]] = None,
                 t0: float = DEFAULT_T0):
        self.sky = dict(DEFAULT_SKY if sky is None else sky)
        self.config = config if config is not None else default_config()
        self.t0 = t0
        self.receiver0 = llh2ecef(np.asarray(receiver_llh, dtype=float))
        self.receiver_velocity = (np.zeros(3) if receiver_velocity is None
                                  else np.asarray(receiver_velocity, dtype=float))
        self.clock_bias = clock_bias
        self.clock_drift = clock_drift
        self.bands = dict(DEFAULT_BANDS)
        if bands is not None:
            self.bands.update({k: tuple(v) for k, v in bands.items()})
        self.iono_l1 = iono_l1
        self.isb = dict(isb or {})
        self.channels = dict(channels or {})

        orbits = {}
        for k, sat in enumerate(sorted(self.sky)):
            az, el = self.sky[sat]
            p = place_satellite(self.receiver0, np.radians(az), np.radians(el))
            axis = np.cross(p, [0.0, 0.0, 1.0])
            if np.linalg.norm(axis) < 1.0:
                axis = np.cross(p, [1.0, 0.0, 0.0])
            v = ORBIT_SPEED * axis / np.linalg.norm(axis)
            orbits[sat] = (p, v, 1e-4 * (k + 1), 1e-11 * (k - 3))
        self.provider = SyntheticOrbitProvider(orbits, t0)
        self.adapter = SatelliteStateAdapter(self.provider, self.config)

        # deterministic integer ambiguities
        self.ambiguities: Dict[SignalId, int] = {}
        for k, sat in enumerate(sorted(self.sky)):
            for j, band in enumerate(self.bands[sat[0]]):
                self.ambiguities[SignalId(sat, band, 'C')] = 1000 + 37 * k - 11 * j

    def truth_position(self, t: float) -> np.ndarray:
        return self.receiver0 + self.receiver_velocity * (t - self.t0)

    def truth_clock(self, t: float) -> float:
        return self.clock_bias + self.clock_drift * (t - self.t0)

    def iono(self, sat: str) -> float:
        if isinstance(self.iono_l1, Mapping):
            return float(self.iono_l1.get(sat, 0.0))
        return float(self.iono_l1)

    def make_epoch(self, t: float,
                   code_faults: Optional[Mapping[str, float]] = None,
                   slips: Optional[Mapping[SignalId, float]] = None,
                   lli: Iterable[SignalId] = (),
                   cn0=45.0,
                   drop: Iterable[str] = (),
                   with_phase: bool = True,
                   with_doppler: bool = True,
                   approx_position: Optional[np.ndarray] = None,
                   iono_parameters: Optional[KlobucharParameters] = None) -> Epoch:
        """
        Noise-free observations at time ``t``

        Parameters
        ----------
        code_faults : dict, optional
            sat -> bias (m) added to every code of the satellite
        slips : dict, optional
            signal -> cycles added to the carrier phase
        lli : iterable of SignalId
            Signals flagged with a loss of lock
        cn0 : float or dict
            C/N0 (dB-Hz), per satellite when a dict
        drop : iterable of str
            Satellites left out of the epoch
        """
        code_faults = code_faults or {}
        slips = slips or {}
        lli = set(lli)
        drop = set(drop)
        rr = self.truth_position(t)
        clk = self.truth_clock(t)
        llh = ecef2llh(rr)
        doy = day_of_year(t)

        observations = []
        for sat in sorted(self.sky):
            if sat in drop:
                continue
            state = self.adapter.compute(sat, t, rr, clk)
            rho, e = geodist(state.position, rr)
            system = sat[0]
            common = rho + clk + self.isb.get(system, 0.0) - CLIGHT * state.clock_bias
            if self.config.troposphere_model != 'off':
                common += tropospheric_delay(state.elevation, llh, doy,
                                             self.config.relative_humidity)
            rate = (float(e @ (state.velocity - self.receiver_velocity)) + self.clock_drift
                    - CLIGHT * state.clock_drift)
            snr = cn0.get(sat, 45.0) if isinstance(cn0, Mapping) else cn0

            for band in self.bands[system]:
                signal = SignalId(sat, band, 'C')
                fcn = self.channels.get(sat) if system == 'R' else None
                f = carrier_frequency(sat, band, fcn)
                lam = CLIGHT / f
                iono = self.iono(sat) * (FREQ_L1 / f) ** 2
                P = common + iono + code_faults.get(sat, 0.0)
                L = None
                if with_phase:
                    L = (common - iono) / lam + self.ambiguities[signal] + slips.get(signal, 0.0)
                D = -rate / lam if with_doppler else None
                observations.append(Observation(sat, band, 'C', pseudorange=P, carrier_phase=L,
                                                doppler=D, cn0=snr,
                                                lli=1 if signal in lli else 0, fcn=fcn))

        return Epoch(t, tuple(observations), approx_position=approx_position,
                     iono_parameters=iono_parameters)

    def epochs(self, n: int, interval: float = 1.0, **kwargs):
        """``n`` consecutive epochs starting at t0"""
        return [self.make_epoch(self.t0 + k * interval, **kwargs) for k in range(n)]
