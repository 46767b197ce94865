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

"""Processing configuration

A single immutable :class:`ProcessingConfig` is passed explicitly to every
component. It can be saved to and loaded from YAML or JSON; a round trip
reproduces an equal object.
"""

import dataclasses
import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from . import stats
from .exceptions import ConfigurationError

MOTION_MODELS = ('constant_velocity', 'static')
FILTER_MODES = ('sequential', 'least_squares')
AR_MODES = ('off', 'continuous', 'fix_and_hold')
TROPOSPHERE_MODELS = ('saastamoinen', 'off')
IONOSPHERE_MODELS = ('broadcast', 'off')
IONO_PRECEDENCE = ('measured', 'modeled')
SOLUTION_TYPES = ('pvt', 'time_only')
FILE_FORMATS = {'.yaml': 'yaml', '.yml': 'yaml', '.json': 'json'}


@dataclass(frozen=True)
class ProcessingConfig:
    """Options of the per-epoch estimation pipeline.

    Angles are in degrees, distances in meters, noise densities per
    sqrt(second). ``None`` for ``snr_mask_dbhz`` or ``outlier_threshold``
    disables that check. ``internal_delays`` maps a band to the receiver
    group delay (s) of its code; ``time_only`` solutions hold the position at
    the epoch's approximate position and estimate the clock alone.
    """
    solution_type: str = 'pvt'

    # masks
    elevation_mask_deg: float = stats.ELMASK
    snr_mask_dbhz: Optional[float] = stats.SNRMASK
    ar_elevation_mask_deg: float = stats.ELMASKAR
    min_satellites: int = 4

    # observation error model
    err_phase_a: float = stats.ERR_CONSTANT
    err_phase_b: float = stats.ERR_ELEVATION
    err_snr: float = stats.ERR_SNR
    snr_reference_dbhz: float = stats.ERR_SNR_REF
    code_phase_ratio: float = stats.ERATIO
    doppler_sigma: float = stats.ERR_DOPPLER

    # process noise
    accel_noise_h: float = stats.PRN_ACCH
    accel_noise_v: float = stats.PRN_ACCV
    position_noise: float = stats.PRN_POS
    clock_bias_noise: float = stats.PRN_CLK
    clock_drift_noise: float = stats.PRN_CLK_DRIFT
    ambiguity_noise: float = stats.PRN_BIAS
    isb_noise: float = stats.PRN_ISB

    # initial standard deviations
    init_position_std: float = stats.STD_POS
    init_velocity_std: float = stats.STD_VEL
    init_clock_std: float = stats.STD_CLK
    init_drift_std: float = stats.STD_CLK_DRIFT
    init_ambiguity_std: float = stats.STD_BIAS
    init_isb_std: float = stats.STD_ISB

    # estimation filter
    motion_model: str = 'constant_velocity'
    filter_mode: str = 'sequential'
    outlier_threshold: Optional[float] = 5.0
    condition_ceiling: float = 1e12
    convergence_threshold: float = 1.0
    bootstrap_max_iterations: int = 10

    # ambiguity resolution
    ar_mode: str = 'fix_and_hold'
    ar_ratio_threshold: float = stats.THRESAR_RATIO
    ar_max_residual: float = stats.THRESAR_RESIDUAL
    ar_min_ambiguities: int = 4
    ar_hold_variance: float = stats.VARHOLDAMB
    ar_tie_tolerance: float = 1e-9
    glonass_ar: bool = False

    # solution quality
    dop_ceiling: float = 30.0
    raim_enabled: bool = True
    raim_false_alarm: float = 1e-3
    max_exclusions: int = 1

    # atmosphere
    troposphere_model: str = 'saastamoinen'
    ionosphere_model: str = 'broadcast'
    iono_precedence: str = 'measured'
    relative_humidity: float = 0.7

    # receiver
    internal_delays: Dict[str, float] = field(default_factory=dict)

    # cycle slips
    slip_threshold_gf: float = stats.THRESSLIP_GF
    slip_threshold_doppler: float = stats.THRESSLIP_DOP
    slip_threshold_cmc: float = stats.THRESSLIP_CMC
    slip_max_gap: float = 30.0

    # satellite states
    light_time_tolerance: float = 1e-12
    light_time_max_iterations: int = 10
    relativistic_correction: bool = True

    # observables and session behaviour
    use_carrier_phase: bool = True
    use_doppler: bool = True
    reference_system: str = 'G'
    predict_on_gap: bool = False
    max_workers: int = 1

    def __post_init__(self):
        self._check_choice('solution_type', SOLUTION_TYPES)
        self._check_choice('motion_model', MOTION_MODELS)
        self._check_choice('filter_mode', FILTER_MODES)
        self._check_choice('ar_mode', AR_MODES)
        self._check_choice('troposphere_model', TROPOSPHERE_MODELS)
        self._check_choice('ionosphere_model', IONOSPHERE_MODELS)
        self._check_choice('iono_precedence', IONO_PRECEDENCE)

        if not 0.0 <= self.elevation_mask_deg < 90.0:
            raise ConfigurationError("elevation_mask_deg must be in [0, 90)")
        if not 0.0 <= self.ar_elevation_mask_deg < 90.0:
            raise ConfigurationError("ar_elevation_mask_deg must be in [0, 90)")
        if self.min_satellites < 1:
            raise ConfigurationError("min_satellites must be >= 1")
        if self.err_phase_a + self.err_phase_b <= 0.0:
            raise ConfigurationError("phase error model must be positive")
        if self.code_phase_ratio <= 0.0 or self.doppler_sigma <= 0.0:
            raise ConfigurationError("code_phase_ratio and doppler_sigma must be positive")
        for name in ('init_position_std', 'init_velocity_std', 'init_clock_std',
                     'init_drift_std', 'init_ambiguity_std', 'init_isb_std'):
            if getattr(self, name) <= 0.0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ('accel_noise_h', 'accel_noise_v', 'position_noise', 'clock_bias_noise',
                     'clock_drift_noise', 'ambiguity_noise', 'isb_noise'):
            if getattr(self, name) < 0.0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.outlier_threshold is not None and self.outlier_threshold <= 0.0:
            raise ConfigurationError("outlier_threshold must be positive or None")
        if self.condition_ceiling <= 1.0:
            raise ConfigurationError("condition_ceiling must be > 1")
        if self.ar_ratio_threshold < 1.0:
            raise ConfigurationError("ar_ratio_threshold must be >= 1")
        if self.ar_max_residual <= 0.0 or self.ar_hold_variance <= 0.0:
            raise ConfigurationError("ar_max_residual and ar_hold_variance must be positive")
        if self.ar_min_ambiguities < 1:
            raise ConfigurationError("ar_min_ambiguities must be >= 1")
        if self.dop_ceiling <= 0.0:
            raise ConfigurationError("dop_ceiling must be positive")
        if not 0.0 < self.raim_false_alarm < 1.0:
            raise ConfigurationError("raim_false_alarm must be in (0, 1)")
        if self.max_exclusions < 0:
            raise ConfigurationError("max_exclusions must not be negative")
        if not 0.0 <= self.relative_humidity <= 1.0:
            raise ConfigurationError("relative_humidity must be in [0, 1]")
        if self.light_time_max_iterations < 1 or self.light_time_tolerance <= 0.0:
            raise ConfigurationError("invalid light-time iteration settings")
        if self.bootstrap_max_iterations < 1:
            raise ConfigurationError("bootstrap_max_iterations must be >= 1")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1")
        if len(self.reference_system) != 1:
            raise ConfigurationError("reference_system must be a constellation character")
        try:
            delays = {str(band): float(delay) for band, delay in dict(self.internal_delays).items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"internal_delays must map bands to seconds: {e}") from e
        object.__setattr__(self, 'internal_delays', delays)

    @property
    def time_only(self) -> bool:
        return self.solution_type == 'time_only'

    @property
    def required_satellites(self) -> int:
        """Satellites needed for a solution; one is enough to solve the clock alone"""
        return 1 if self.time_only else self.min_satellites

    def internal_delay(self, band: str) -> float:
        """Receiver code delay of a band (s)"""
        return self.internal_delays.get(band, 0.0)

    def _check_choice(self, name: str, choices):
        if getattr(self, name) not in choices:
            raise ConfigurationError(
                f"{name}={getattr(self, name)!r} not in {', '.join(choices)}")

    def replace(self, **changes) -> 'ProcessingConfig':
        """Copy with some options changed"""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_preset(cls, name: str, **overrides) -> 'ProcessingConfig':
        """Configuration from a named statistics preset"""
        if name not in stats.PRESETS:
            raise ConfigurationError(f"unknown preset {name!r}")
        values = dict(stats.PRESETS[name])
        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessingConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    def save(self, filepath: Union[str, Path], format: Optional[str] = None):
        """Save to a YAML or JSON file (format from the suffix when not given)"""
        filepath = Path(filepath)
        format = _file_format(filepath, format)
        data = self.to_dict()

        with open(filepath, 'w') as f:
            if format == 'yaml':
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(data, f, indent=2)

    @classmethod
    def load(cls, filepath: Union[str, Path], format: Optional[str] = None) -> 'ProcessingConfig':
        """Load from a YAML or JSON file (format from the suffix when not given)"""
        filepath = Path(filepath)
        format = _file_format(filepath, format)

        with open(filepath, 'r') as f:
            if format == 'yaml':
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        return cls.from_dict(data or {})


def _file_format(filepath: Path, format: Optional[str]) -> str:
    if format is None:
        format = FILE_FORMATS.get(filepath.suffix.lower())
        if format is None:
            raise ValueError(f"Unsupported file format: {filepath.suffix!r}")
    elif format not in ('yaml', 'json'):
        raise ValueError(f"Unsupported format: {format}")
    return format


def default_config() -> ProcessingConfig:
    """Default processing configuration"""
    return ProcessingConfig()
