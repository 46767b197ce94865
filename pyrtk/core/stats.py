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
Observation Statistics
======================

RTKLIB-style error model and default statistical parameters. The error
model gives the standard deviation of a carrier phase as

    sigma = a + b / sin(el) + err_snr * (snr_ref - cn0) / 10

with the SNR term only applied below ``snr_ref``. Code sigmas are the phase
sigma times the code/phase error ratio.
"""

import numpy as np

# ============================================================================
# OBSERVATION ERROR MODEL
# ============================================================================
ERR_CONSTANT = 0.003    # Base phase error constant (m)
ERR_ELEVATION = 0.003   # Phase error per 1/sin(elevation) (m)
ERR_SNR = 0.003         # SNR-based phase error (m per 10 dB-Hz)
ERR_SNR_REF = 45.0      # SNR above which no SNR term applies (dB-Hz)
ERATIO = 300.0          # Code/phase error ratio
ERR_DOPPLER = 0.1       # Range-rate error at zenith (m/s)

# ============================================================================
# INITIAL STATE STANDARD DEVIATIONS
# ============================================================================
STD_POS = 30.0       # Position (m)
STD_VEL = 10.0       # Velocity (m/s)
STD_CLK = 30.0       # Clock bias (m)
STD_CLK_DRIFT = 10.0 # Clock drift (m/s)
STD_BIAS = 30.0      # Ambiguity bias (cycles)
STD_ISB = 100.0      # Inter-system bias (m)

# ============================================================================
# PROCESS NOISE STANDARD DEVIATIONS
# ============================================================================
PRN_BIAS = 1e-4      # Ambiguity bias process noise (cycles/sqrt(s))
PRN_ACCH = 1.0       # Horizontal acceleration process noise (m/s^2/sqrt(s))
PRN_ACCV = 1.0       # Vertical acceleration process noise (m/s^2/sqrt(s))
PRN_POS = 0.0        # Position random walk for the static model (m/sqrt(s))
PRN_CLK = 10.0       # Clock bias random walk (m/sqrt(s))
PRN_CLK_DRIFT = 1.0  # Clock drift random walk (m/s/sqrt(s))
PRN_ISB = 1e-3       # Inter-system bias random walk (m/sqrt(s))

# ============================================================================
# AMBIGUITY RESOLUTION THRESHOLDS
# ============================================================================
THRESAR_RATIO = 3.0      # Ratio test threshold
THRESAR_RESIDUAL = 0.25  # Max |float - integer| of the best candidate (cycles)
VARHOLDAMB = 0.1         # Variance for fix-and-hold pseudo measurements (cycle^2)

# ============================================================================
# MASKS AND CYCLE SLIP THRESHOLDS
# ============================================================================
ELMASK = 15.0            # Elevation mask angle (degrees)
ELMASKAR = 0.0           # Elevation mask for AR (degrees)
SNRMASK = 20.0           # C/N0 mask (dB-Hz)
THRESSLIP_GF = 0.05      # Geometry-free phase slip threshold (m)
THRESSLIP_DOP = 3.0      # Doppler-predicted phase slip threshold (cycles)
THRESSLIP_CMC = 10.0     # Code-minus-carrier jump threshold (m)

# ============================================================================
# PRESETS
# ============================================================================

DEFAULT_STATS = {}

# High precision configuration
HIGH_PRECISION_STATS = {
    'code_phase_ratio': 100.0,
    'err_phase_a': 0.001,
    'err_phase_b': 0.001,
    'init_ambiguity_std': 10.0,
    'ambiguity_noise': 5e-5,
    'accel_noise_h': 0.5,
    'accel_noise_v': 0.5,
    'ar_max_residual': 0.15,
    'elevation_mask_deg': 10.0,
}

# Robust configuration for challenging conditions
ROBUST_STATS = {
    'code_phase_ratio': 500.0,
    'err_phase_a': 0.005,
    'err_phase_b': 0.005,
    'init_ambiguity_std': 50.0,
    'ambiguity_noise': 2e-4,
    'accel_noise_h': 2.0,
    'accel_noise_v': 2.0,
    'ar_ratio_threshold': 2.5,
    'ar_max_residual': 0.30,
    'elevation_mask_deg': 20.0,
}

PRESETS = {
    'default': DEFAULT_STATS,
    'high_precision': HIGH_PRECISION_STATS,
    'robust': ROBUST_STATS,
}

# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def phase_sigma(elevation, cn0, config):
    """Carrier phase standard deviation (m) from the error model"""
    sigma = config.err_phase_a
    if elevation > 0:
        sigma += config.err_phase_b / np.sin(elevation)
    else:
        sigma += config.err_phase_b / np.sin(np.radians(1.0))
    if cn0 is not None and config.err_snr > 0 and cn0 < config.snr_reference_dbhz:
        sigma += config.err_snr * (config.snr_reference_dbhz - cn0) / 10.0
    return sigma


def observation_weight(elevation, cn0, config):
    """Relative weight in (0, 1]: 1 at zenith with a strong signal

    Decreases monotonically as the elevation approaches the horizon and as
    C/N0 drops below the configured reference.
    """
    zenith = config.err_phase_a + config.err_phase_b
    return (zenith / phase_sigma(elevation, cn0, config)) ** 2


def compute_obs_variance(weight, kind, config):
    """Observation variance for a weight

    Parameters
    ----------
    weight : float
        Relative weight from :func:`observation_weight`
    kind : str
        'phase', 'code' or 'doppler'
    config : ProcessingConfig

    Returns
    -------
    float
        Variance (m^2, or m^2/s^2 for Doppler range rate)
    """
    zenith = config.err_phase_a + config.err_phase_b
    if kind == 'phase':
        sigma = zenith
    elif kind == 'code':
        sigma = zenith * config.code_phase_ratio
    elif kind == 'doppler':
        sigma = config.doppler_sigma
    else:
        raise ValueError(f"unknown observation kind {kind!r}")
    return sigma ** 2 / weight
