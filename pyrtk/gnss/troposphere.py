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

"""Tropospheric delay: Saastamoinen zenith delays with Niell mapping functions"""

from typing import Tuple

import numpy as np

from ..core.constants import ERR_SAAS, REL_HUMI

# Niell (1996) coefficients at latitudes 15, 30, 45, 60, 75 deg
_NMF_LAT = np.array([15.0, 30.0, 45.0, 60.0, 75.0])

_NMF_HYD_AVG = np.array([
    [1.2769934e-3, 1.2683230e-3, 1.2465397e-3, 1.2196049e-3, 1.2045996e-3],
    [2.9153695e-3, 2.9152299e-3, 2.9288445e-3, 2.9022565e-3, 2.9024912e-3],
    [62.610505e-3, 62.837393e-3, 63.721774e-3, 63.824265e-3, 64.258455e-3],
])
_NMF_HYD_AMP = np.array([
    [0.0, 1.2709626e-5, 2.6523662e-5, 3.4000452e-5, 4.1202191e-5],
    [0.0, 2.1414979e-5, 3.0160779e-5, 7.2562722e-5, 11.723375e-5],
    [0.0, 9.0128400e-5, 4.3497037e-5, 84.795348e-5, 170.37206e-5],
])
_NMF_WET = np.array([
    [5.8021897e-4, 5.6794847e-4, 5.8118019e-4, 5.9727542e-4, 6.1641693e-4],
    [1.4275268e-3, 1.5138625e-3, 1.4572752e-3, 1.5007428e-3, 1.7599082e-3],
    [4.3472961e-2, 4.6729510e-2, 4.3908931e-2, 4.4626982e-2, 5.4736038e-2],
])
_NMF_HT = (2.53e-5, 5.49e-3, 1.14e-3)


def _marini(sin_el: float, a: float, b: float, c: float) -> float:
    """Normalized continued fraction of Marini (1972)"""
    num = 1.0 + a / (1.0 + b / (1.0 + c))
    den = sin_el + a / (sin_el + b / (sin_el + c))
    return num / den


def saastamoinen_zenith(lat: float, h: float, humidity: float = REL_HUMI) -> Tuple[float, float]:
    """
    Saastamoinen zenith delays with a standard atmosphere

    Parameters:
    -----------
    lat : float
        Latitude (rad)
    h : float
        Ellipsoidal height (m)
    humidity : float
        Relative humidity (0-1)

    Returns:
    --------
    zhd, zwd : float
        Zenith hydrostatic and wet delays (m)
    """
    h = max(h, 0.0)
    temp0 = 288.15  # Temperature at sea level (K)
    pres0 = 1013.25  # Pressure at sea level (mbar)

    temp = temp0 - 0.0065 * h
    pres = pres0 * (1.0 - 0.0065 * h / temp0) ** 5.225
    e = 6.108 * humidity * np.exp((17.15 * temp - 4684.0) / (temp - 38.45))

    zhd = 0.0022768 * pres / (1.0 - 0.00266 * np.cos(2.0 * lat) - 0.00028 * h / 1000.0)
    zwd = 0.002277 * (1255.0 / temp + 0.05) * e
    return float(zhd), float(zwd)


def niell_mapping(el: float, lat: float, h: float, doy: float) -> Tuple[float, float]:
    """
    Niell hydrostatic and wet mapping functions

    Parameters:
    -----------
    el : float
        Elevation (rad)
    lat : float
        Latitude (rad)
    h : float
        Height (m)
    doy : float
        Day of year

    Returns:
    --------
    mh, mw : float
        Hydrostatic and wet mapping factors
    """
    if el <= 0.0:
        return 0.0, 0.0

    lat_deg = abs(np.degrees(lat))
    # seasonal phase, shifted half a year in the southern hemisphere
    t = doy - 28.0
    if lat < 0.0:
        t += 365.25 / 2.0
    season = np.cos(2.0 * np.pi * t / 365.25)

    hyd = [np.interp(lat_deg, _NMF_LAT, _NMF_HYD_AVG[i]) -
           np.interp(lat_deg, _NMF_LAT, _NMF_HYD_AMP[i]) * season for i in range(3)]
    wet = [np.interp(lat_deg, _NMF_LAT, _NMF_WET[i]) for i in range(3)]

    sin_el = np.sin(el)
    dm = (1.0 / sin_el - _marini(sin_el, *_NMF_HT)) * max(h, 0.0) / 1000.0
    mh = _marini(sin_el, *hyd) + dm
    mw = _marini(sin_el, *wet)
    return float(mh), float(mw)


def tropospheric_delay(el: float, llh: np.ndarray, doy: float,
                       humidity: float = REL_HUMI) -> float:
    """Slant tropospheric delay (m)"""
    if el <= 0.0:
        return 0.0
    zhd, zwd = saastamoinen_zenith(llh[0], llh[2], humidity)
    mh, mw = niell_mapping(el, llh[0], llh[2], doy)
    return zhd * mh + zwd * mw


def tropospheric_variance(el: float) -> float:
    """Variance of the modeled slant delay (m^2)"""
    return (ERR_SAAS / (np.sin(max(el, 0.0)) + 0.1)) ** 2
