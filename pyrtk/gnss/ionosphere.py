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

"""Ionospheric delay models and dual-frequency combinations"""

import numpy as np

from ..core.constants import CLIGHT, FREQ_L1, FREQ_L2


def ionosphere_klobuchar(lat, lon, azimuth, elevation, tow, alpha, beta):
    """Ionospheric delay on L1 from the Klobuchar broadcast model (ICD-GPS-200).

    Parameters
    ----------
    lat, lon : float
        Receiver geodetic latitude/longitude (rad)
    azimuth, elevation : float
        Satellite azimuth/elevation (rad)
    tow : float
        GPS time of week (s)
    alpha, beta : array_like of shape (4,)
        Broadcast coefficients

    Returns
    -------
    float
        L1 delay in meters, 0.0 for a satellite below the horizon
    """
    if elevation <= 0:
        return 0.0

    # Earth centered angle (semi-circles)
    psi = 0.0137 / (elevation / np.pi + 0.11) - 0.022

    # Subionospheric latitude/longitude
    phi_i = lat / np.pi + psi * np.cos(azimuth)
    phi_i = np.clip(phi_i, -0.416, 0.416)
    lambda_i = lon / np.pi + psi * np.sin(azimuth) / np.cos(phi_i * np.pi)

    # Geomagnetic latitude
    phi_m = phi_i + 0.064 * np.cos((lambda_i - 1.617) * np.pi)

    # Local time
    t = (43200.0 * lambda_i + tow) % 86400.0

    amp = alpha[0] + alpha[1] * phi_m + alpha[2] * phi_m**2 + alpha[3] * phi_m**3
    amp = max(0.0, amp)
    per = beta[0] + beta[1] * phi_m + beta[2] * phi_m**2 + beta[3] * phi_m**3
    per = max(72000.0, per)

    x = 2.0 * np.pi * (t - 50400.0) / per

    # Slant factor
    f = 1.0 + 16.0 * (0.53 - elevation / np.pi)**3

    if abs(x) < 1.57:
        return float(CLIGHT * f * (5e-9 + amp * (1.0 - x**2 / 2.0 + x**4 / 24.0)))
    return float(CLIGHT * f * 5e-9)


def iono_scale(f_ref: float, f: float) -> float:
    """Factor converting a group delay at ``f_ref`` to frequency ``f``"""
    return (f_ref / f) ** 2


def ionosphere_free_combination(P1, P2, f1=FREQ_L1, f2=FREQ_L2):
    """Ionosphere-free combination (gamma P1 - P2) / (gamma - 1)"""
    gamma = (f1 / f2) ** 2
    return (gamma * P1 - P2) / (gamma - 1.0)


def ionosphere_free_variance(var1, var2, f1=FREQ_L1, f2=FREQ_L2):
    """Variance of the ionosphere-free combination of two independent codes"""
    gamma = (f1 / f2) ** 2
    c1 = gamma / (gamma - 1.0)
    c2 = 1.0 / (gamma - 1.0)
    return c1**2 * var1 + c2**2 * var2


def geometry_free_ionosphere(P1, P2, f1=FREQ_L1, f2=FREQ_L2):
    """Ionospheric group delay on ``f1`` measured from two codes (m)

    With ``I1`` the delay on f1 and ``I2 = gamma I1``,
    ``P2 - P1 = (gamma - 1) I1``; removing ``I1`` from ``P1`` yields the
    ionosphere-free combination exactly.
    """
    gamma = (f1 / f2) ** 2
    return (P2 - P1) / (gamma - 1.0)


def geometry_free_ionosphere_variance(var1, var2, f1=FREQ_L1, f2=FREQ_L2):
    gamma = (f1 / f2) ** 2
    return (var1 + var2) / (gamma - 1.0) ** 2
