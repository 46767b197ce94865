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

"""Coordinate transformation utilities"""

from typing import Tuple

import numpy as np
from numba import njit

from ..core.constants import FE_WGS84, RE_WGS84


def ecef2llh(xyz: np.ndarray) -> np.ndarray:
    """Convert ECEF coordinates to geodetic coordinates

    Parameters
    ----------
    xyz : np.ndarray
        ECEF coordinates [x, y, z] in meters

    Returns
    -------
    np.ndarray
        Geodetic coordinates [lat (rad), lon (rad), height (m)]

    Notes
    -----
    Iterative on the WGS84 ellipsoid; converges in 3-4 iterations. Points
    on the polar axis are handled with the closed form.
    """
    x, y, z = xyz[0], xyz[1], xyz[2]
    e2 = FE_WGS84 * (2.0 - FE_WGS84)

    lon = np.arctan2(y, x)
    p = np.sqrt(x**2 + y**2)
    if p < 1e-6:
        lat = np.pi / 2.0 if z >= 0 else -np.pi / 2.0
        h = abs(z) - RE_WGS84 * np.sqrt(1.0 - e2)
        return np.array([lat, 0.0, h])

    lat = np.arctan2(z, p * (1.0 - FE_WGS84))
    h = 0.0
    for _ in range(5):
        N = RE_WGS84 / np.sqrt(1.0 - e2 * np.sin(lat)**2)
        h = p / np.cos(lat) - N
        lat = np.arctan2(z, p * (1.0 - e2 * N / (N + h)))

    return np.array([lat, lon, h])


def llh2ecef(llh: np.ndarray) -> np.ndarray:
    """Convert geodetic coordinates [lat (rad), lon (rad), height (m)] to ECEF"""
    lat, lon, h = llh[0], llh[1], llh[2]
    e2 = FE_WGS84 * (2.0 - FE_WGS84)

    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    N = RE_WGS84 / np.sqrt(1.0 - e2 * sin_lat**2)

    x = (N + h) * cos_lat * np.cos(lon)
    y = (N + h) * cos_lat * np.sin(lon)
    z = (N * (1.0 - e2) + h) * sin_lat

    return np.array([x, y, z])


@njit(cache=True)
def enu_rotation(lat, lon):
    """Rotation matrix from ECEF to the local ENU frame at (lat, lon) in radians"""
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    sin_lon = np.sin(lon)
    cos_lon = np.cos(lon)

    R = np.empty((3, 3))
    R[0, 0] = -sin_lon
    R[0, 1] = cos_lon
    R[0, 2] = 0.0
    R[1, 0] = -sin_lat * cos_lon
    R[1, 1] = -sin_lat * sin_lon
    R[1, 2] = cos_lat
    R[2, 0] = cos_lat * cos_lon
    R[2, 1] = cos_lat * sin_lon
    R[2, 2] = sin_lat
    return R


def ecef2enu(xyz: np.ndarray, org_llh: np.ndarray) -> np.ndarray:
    """ECEF point to local ENU coordinates about an origin given in llh"""
    dx = np.asarray(xyz, dtype=float) - llh2ecef(org_llh)
    return enu_rotation(float(org_llh[0]), float(org_llh[1])) @ dx


def enu2ecef(enu: np.ndarray, org_llh: np.ndarray) -> np.ndarray:
    """Local ENU coordinates about an origin given in llh to an ECEF point"""
    R = enu_rotation(float(org_llh[0]), float(org_llh[1]))
    return llh2ecef(org_llh) + R.T @ np.asarray(enu, dtype=float)


def enu2ecef_vector(enu: np.ndarray, org_llh: np.ndarray) -> np.ndarray:
    """Rotate an ENU vector (not a point) into ECEF"""
    R = enu_rotation(float(org_llh[0]), float(org_llh[1]))
    return R.T @ np.asarray(enu, dtype=float)


def covecef2enu(llh: np.ndarray, P_ecef: np.ndarray) -> np.ndarray:
    """Rotate a 3x3 ECEF covariance into the local ENU frame (R P R^T)"""
    R = enu_rotation(float(llh[0]), float(llh[1]))
    return R @ P_ecef @ R.T


def covenu2ecef(llh: np.ndarray, P_enu: np.ndarray) -> np.ndarray:
    """Rotate a 3x3 ENU covariance into ECEF (R^T P R)"""
    R = enu_rotation(float(llh[0]), float(llh[1]))
    return R.T @ P_enu @ R


def geodist(rs: np.ndarray, rr: np.ndarray) -> Tuple[float, np.ndarray]:
    """Geometric distance and unit line-of-sight vector from receiver to satellite"""
    d = np.asarray(rs, dtype=float) - np.asarray(rr, dtype=float)
    r = float(np.linalg.norm(d))
    return r, d / r


def satazel(pos_llh: np.ndarray, e: np.ndarray) -> Tuple[float, float]:
    """Satellite azimuth/elevation (rad) from receiver llh and line-of-sight vector"""
    enu = enu_rotation(float(pos_llh[0]), float(pos_llh[1])) @ e

    az = np.arctan2(enu[0], enu[1])
    if az < 0:
        az += 2 * np.pi
    el = np.arcsin(np.clip(enu[2], -1.0, 1.0))

    return float(az), float(el)
