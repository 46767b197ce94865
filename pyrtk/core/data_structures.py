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

"""Core data structures for GNSS processing"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np

from .constants import CLIGHT, carrier_frequency, sat_system
from .exceptions import ReasonCode


def _frozen_vector(value, size: int = 3) -> Optional[np.ndarray]:
    if value is None:
        return None
    arr = np.array(value, dtype=float).reshape(size)
    arr.setflags(write=False)
    return arr


class SignalId(NamedTuple):
    """Identifier of one tracked signal: satellite, frequency band and tracking code"""
    sat: str
    band: str
    code: str = 'C'

    @property
    def system(self) -> str:
        return sat_system(self.sat)

    def __str__(self):
        return f"{self.sat}:{self.band}{self.code}"


@dataclass(frozen=True)
class Observation:
    """Raw observables of one signal at one epoch.

    Attributes
    ----------
    sat : str
        Satellite identifier (RINEX style, e.g. ``G05``)
    band : str
        Frequency band (``L1``, ``L2``, ``E5a``, ...)
    code : str
        Tracking code / signal type (``C``, ``W``, ``Q``, ...)
    pseudorange : float, optional
        Code pseudorange (m)
    carrier_phase : float, optional
        Carrier phase (cycles)
    doppler : float, optional
        Doppler (Hz), positive for an approaching satellite
    cn0 : float, optional
        Carrier-to-noise density (dB-Hz)
    lli : int
        Loss of lock indicator (bit 0 set on a possible cycle slip)
    fcn : int, optional
        GLONASS frequency channel number (-7 ... +6)
    """
    sat: str
    band: str
    code: str = 'C'
    pseudorange: Optional[float] = None
    carrier_phase: Optional[float] = None
    doppler: Optional[float] = None
    cn0: Optional[float] = None
    lli: int = 0
    fcn: Optional[int] = None

    @property
    def signal(self) -> SignalId:
        return SignalId(self.sat, self.band, self.code)

    @property
    def system(self) -> str:
        return sat_system(self.sat)

    @property
    def frequency(self) -> float:
        return carrier_frequency(self.sat, self.band, self.fcn)

    @property
    def wavelength(self) -> float:
        return CLIGHT / self.frequency

    @property
    def has_known_band(self) -> bool:
        """Whether the band is defined for the satellite's constellation"""
        try:
            self.frequency
        except KeyError:
            return False
        return True

    @property
    def channel_known(self) -> bool:
        """False for a GLONASS signal without its frequency channel number"""
        return self.fcn is not None or self.system != 'R'

    @property
    def is_usable(self) -> bool:
        """An observation participates only with a pseudorange or a carrier phase"""
        return self.pseudorange is not None or self.carrier_phase is not None


@dataclass(frozen=True)
class KlobucharParameters:
    """Broadcast ionosphere coefficients (alpha in s, s/sc, ...; beta in s, ...)"""
    alpha: Tuple[float, float, float, float]
    beta: Tuple[float, float, float, float]

    def __post_init__(self):
        object.__setattr__(self, 'alpha', tuple(float(a) for a in self.alpha))
        object.__setattr__(self, 'beta', tuple(float(b) for b in self.beta))
        if len(self.alpha) != 4 or len(self.beta) != 4:
            raise ValueError("Klobuchar alpha and beta need 4 coefficients each")


@dataclass(frozen=True, eq=False)
class Epoch:
    """All observations valid at one instant plus receiver metadata.

    Observations are stored sorted by signal identifier so that every
    downstream ordering is reproducible.
    """
    time: float
    observations: Tuple[Observation, ...]
    approx_position: Optional[np.ndarray] = None
    antenna_offset: Optional[np.ndarray] = None       # ARP offset, ENU (m)
    iono_parameters: Optional[KlobucharParameters] = None
    external_delay: float = 0.0                        # reference/cable delay (s)

    def __post_init__(self):
        obs = tuple(sorted(self.observations, key=lambda o: o.signal))
        signals = [o.signal for o in obs]
        if len(set(signals)) != len(signals):
            raise ValueError(f"duplicate signals in epoch at t={self.time}")
        object.__setattr__(self, 'observations', obs)
        object.__setattr__(self, 'time', float(self.time))
        object.__setattr__(self, 'approx_position', _frozen_vector(self.approx_position))
        object.__setattr__(self, 'antenna_offset', _frozen_vector(self.antenna_offset))

    def satellites(self) -> List[str]:
        """Satellites with at least one usable observation, sorted"""
        return sorted({o.sat for o in self.observations if o.is_usable})

    def observations_for(self, sat: str) -> Tuple[Observation, ...]:
        return tuple(o for o in self.observations if o.sat == sat)

    def by_satellite(self) -> Dict[str, Tuple[Observation, ...]]:
        out: Dict[str, List[Observation]] = {}
        for o in self.observations:
            out.setdefault(o.sat, []).append(o)
        return {sat: tuple(out[sat]) for sat in sorted(out)}

    def preferred_pseudorange(self, sat: str) -> Optional[float]:
        """Pseudorange of the strongest tracked code of a satellite"""
        best = None
        for o in self.observations_for(sat):
            if o.pseudorange is None:
                continue
            snr = o.cn0 if o.cn0 is not None else -np.inf
            if best is None or snr > best[0]:
                best = (snr, o.pseudorange)
        return None if best is None else best[1]

    def without(self, signals: Iterable[SignalId]) -> 'Epoch':
        """Copy of the epoch without the given signals"""
        drop = set(signals)
        return Epoch(self.time, tuple(o for o in self.observations if o.signal not in drop),
                     self.approx_position, self.antenna_offset, self.iono_parameters,
                     self.external_delay)


@dataclass(frozen=True, eq=False)
class OrbitState:
    """Satellite state as delivered by an ephemeris service at one GPS time.

    Position and velocity are ECEF at the evaluation time. ``clock_bias`` is in
    seconds and excludes the relativistic term unless ``relativity_included``.
    """
    position: np.ndarray
    velocity: np.ndarray
    clock_bias: float
    clock_drift: float = 0.0
    variance: float = 0.0                  # orbit/clock error variance (m^2)
    tgd: float = 0.0                       # total group delay (s)
    relativity_included: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'position', _frozen_vector(self.position))
        object.__setattr__(self, 'velocity', _frozen_vector(self.velocity))


@dataclass(frozen=True, eq=False)
class SatelliteState:
    """Satellite state at signal transmission, expressed in the ECEF frame at reception"""
    sat: str
    transmit_time: float
    position: np.ndarray
    velocity: np.ndarray
    clock_bias: float                      # includes relativistic correction (s)
    clock_drift: float                     # (s/s)
    relativistic_correction: float        # (s)
    sagnac_correction: float               # range change from earth rotation (m)
    geometric_range: float                 # (m)
    elevation: float                       # (rad)
    azimuth: float                         # (rad)
    variance: float = 0.0                  # ephemeris variance (m^2)
    tgd: float = 0.0                       # (s)
    iterations: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'position', _frozen_vector(self.position))
        object.__setattr__(self, 'velocity', _frozen_vector(self.velocity))

    @property
    def system(self) -> str:
        return sat_system(self.sat)


class BiasSource(Enum):
    """Origin of a delay estimate. Measured values take precedence over modeled ones."""
    MEASURED = "measured"
    MODELED = "modeled"
    FALLBACK = "fallback"
    OFF = "off"


@dataclass(frozen=True)
class Bias:
    """A delay estimate (m) with its variance (m^2) and where it came from"""
    value: float = 0.0
    variance: float = 0.0
    source: BiasSource = BiasSource.OFF

    @staticmethod
    def select(measured: Optional['Bias'], modeled: 'Bias') -> 'Bias':
        return measured if measured is not None else modeled

    def scaled(self, factor: float) -> 'Bias':
        """Same bias at another frequency (value * factor, variance * factor^2)"""
        return Bias(self.value * factor, self.variance * factor * factor, self.source)

    def to_dict(self) -> dict:
        return {'value': self.value, 'variance': self.variance, 'source': self.source.value}


@dataclass(frozen=True)
class AtmosphericDelay:
    """Tropospheric and ionospheric delay of one (satellite, band) path.

    ``ionosphere`` is the group delay on this band: added to code, subtracted
    from phase.
    """
    sat: str
    band: str
    troposphere: Bias
    ionosphere: Bias

    @property
    def iono_measured(self) -> bool:
        return self.ionosphere.source is BiasSource.MEASURED


@dataclass(frozen=True)
class FixedAmbiguity:
    """Integer single difference ``N(signal) - N(reference)`` in cycles"""
    value: int
    reference: SignalId
    wavelength: float


@dataclass(frozen=True, eq=False)
class AmbiguitySet:
    """Validated integer ambiguities. Replaced wholesale, never patched."""
    ambiguities: Mapping[SignalId, FixedAmbiguity] = field(default_factory=dict)
    ratio: float = 0.0
    time: Optional[float] = None

    def __post_init__(self):
        ordered = {k: self.ambiguities[k] for k in sorted(self.ambiguities)}
        object.__setattr__(self, 'ambiguities', MappingProxyType(ordered))

    @classmethod
    def empty(cls) -> 'AmbiguitySet':
        return cls()

    @property
    def is_fixed(self) -> bool:
        return len(self.ambiguities) > 0

    def __len__(self):
        return len(self.ambiguities)

    def __contains__(self, signal):
        return signal in self.ambiguities

    def __getitem__(self, signal) -> FixedAmbiguity:
        return self.ambiguities[signal]

    def signals(self) -> List[SignalId]:
        return list(self.ambiguities)

    def references(self) -> List[SignalId]:
        return sorted({a.reference for a in self.ambiguities.values()})


class FixStatus(Enum):
    NO_FIX = "NoFix"
    FLOAT = "FloatAmbiguity"
    FIXED = "FixedAmbiguity"
    DEGRADED_GEOMETRY = "DegradedGeometry"


class IntegrityStatus(Enum):
    NOMINAL = "Nominal"
    SUSPECTED_FAULT = "SuspectedFault"          # detected, exclusion exhausted or impossible
    FAULT_EXCLUDED = "FaultExcluded"            # detected and a satellite was dropped


class FilterStatus(Enum):
    UNINITIALIZED = "Uninitialized"
    INITIALIZED = "Initialized"
    CONVERGED = "Converged"
    DIVERGED = "Diverged"


@dataclass(frozen=True)
class DOP:
    """Dilution of precision (HDOP/VDOP in the local ENU frame)"""
    gdop: float
    pdop: float
    hdop: float
    vdop: float
    tdop: float

    @classmethod
    def unavailable(cls) -> 'DOP':
        return cls(np.inf, np.inf, np.inf, np.inf, np.inf)

    def to_dict(self) -> dict:
        return {'gdop': self.gdop, 'pdop': self.pdop, 'hdop': self.hdop,
                'vdop': self.vdop, 'tdop': self.tdop}


@dataclass(frozen=True)
class SatelliteSolutionData:
    """Per-satellite contribution to a solution"""
    sat: str
    azimuth: float
    elevation: float
    troposphere: Bias
    ionosphere: Bias
    code_residual: Optional[float] = None
    used: bool = True

    def to_dict(self) -> dict:
        return {
            'sat': self.sat,
            'azimuth_deg': float(np.degrees(self.azimuth)),
            'elevation_deg': float(np.degrees(self.elevation)),
            'troposphere': self.troposphere.to_dict(),
            'ionosphere': self.ionosphere.to_dict(),
            'code_residual': self.code_residual,
            'used': self.used,
        }


@dataclass(frozen=True, eq=False)
class Solution:
    """Position/velocity/time solution of one epoch.

    Attributes
    ----------
    time : float
        Epoch time (GPS seconds)
    position, velocity : np.ndarray
        ECEF (m, m/s)
    clock_bias : float
        Receiver clock bias (s)
    clock_drift : float
        Receiver clock drift (s/s)
    covariance : np.ndarray
        8x8 covariance of [position, velocity, clock bias (m), clock drift (m/s)]
    dop : DOP
    fix_status : FixStatus
    integrity : IntegrityStatus
    satellites_used, satellites_excluded : tuple of str
    rejected_signals : tuple of SignalId
        Signals with at least one row dropped by innovation screening
    ratio : float
        Ambiguity validation ratio (0 when no search ran)
    chi_square, dof :
        Weighted post-fit residual sum and its degrees of freedom
    """
    time: float
    position: np.ndarray
    velocity: np.ndarray
    clock_bias: float
    clock_drift: float
    covariance: np.ndarray
    dop: DOP
    fix_status: FixStatus
    integrity: IntegrityStatus = IntegrityStatus.NOMINAL
    satellites_used: Tuple[str, ...] = ()
    satellites_excluded: Tuple[str, ...] = ()
    ratio: float = 0.0
    num_fixed: int = 0
    chi_square: float = 0.0
    dof: int = 0
    filter_status: FilterStatus = FilterStatus.INITIALIZED
    satellite_data: Tuple[SatelliteSolutionData, ...] = ()
    rejected_signals: Tuple[SignalId, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'position', _frozen_vector(self.position))
        object.__setattr__(self, 'velocity', _frozen_vector(self.velocity))
        object.__setattr__(self, 'rejected_signals', tuple(sorted(set(self.rejected_signals))))
        cov = np.array(self.covariance, dtype=float).reshape(8, 8)
        cov.setflags(write=False)
        object.__setattr__(self, 'covariance', cov)

    @property
    def suspected_fault(self) -> bool:
        return self.integrity is not IntegrityStatus.NOMINAL

    def get_llh(self) -> np.ndarray:
        """Geodetic position [lat (rad), lon (rad), height (m)]"""
        from ..coordinate.transforms import ecef2llh
        return ecef2llh(self.position)

    def get_enu_cov(self) -> np.ndarray:
        """Position covariance rotated to the local ENU frame"""
        from ..coordinate.transforms import covecef2enu
        return covecef2enu(self.get_llh(), self.covariance[:3, :3])

    def position_std_enu(self) -> np.ndarray:
        return np.sqrt(np.maximum(np.diag(self.get_enu_cov()), 0.0))

    def to_dict(self) -> dict:
        """Field-stable plain representation for logging and replay"""
        return {
            'time': self.time,
            'position': self.position.tolist(),
            'velocity': self.velocity.tolist(),
            'clock_bias': self.clock_bias,
            'clock_drift': self.clock_drift,
            'covariance': self.covariance.tolist(),
            'dop': self.dop.to_dict(),
            'fix_status': self.fix_status.value,
            'integrity': self.integrity.value,
            'satellites_used': list(self.satellites_used),
            'satellites_excluded': list(self.satellites_excluded),
            'ratio': self.ratio,
            'num_fixed': self.num_fixed,
            'chi_square': self.chi_square,
            'dof': self.dof,
            'filter_status': self.filter_status.value,
            'satellite_data': [d.to_dict() for d in self.satellite_data],
            'rejected_signals': [str(s) for s in self.rejected_signals],
        }


@dataclass(frozen=True, eq=False)
class NoSolution:
    """Explicit no-solution signal for an epoch that failed its preconditions"""
    time: float
    reason: ReasonCode
    message: str = ''
    predicted_position: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, 'predicted_position', _frozen_vector(self.predicted_position))

    def to_dict(self) -> dict:
        return {
            'time': self.time,
            'reason': self.reason.value,
            'message': self.message,
            'predicted_position': (None if self.predicted_position is None
                                   else self.predicted_position.tolist()),
        }
