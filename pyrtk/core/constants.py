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

"""GNSS Constants and System Parameters"""

from typing import Optional

import numpy as np

# Physical Constants
CLIGHT = 299792458.0  # speed of light (m/s)

# GPS frequencies
FREQ_L1 = 1.57542E9   # L1 frequency (Hz)
FREQ_L2 = 1.22760E9   # L2 frequency (Hz)
FREQ_L5 = 1.17645E9   # L5 frequency (Hz)

# GLONASS frequencies (channel 0) and channel spacing
FREQ_G1 = 1.60200E9   # GLONASS G1 base frequency (Hz)
FREQ_G2 = 1.24600E9   # GLONASS G2 base frequency (Hz)
DFRQ1_GLO = 0.56250E6 # GLONASS G1 bias frequency (Hz/n)
DFRQ2_GLO = 0.43750E6 # GLONASS G2 bias frequency (Hz/n)

# Galileo frequencies
FREQ_E1 = 1.57542E9   # E1 frequency (Hz) - same as GPS L1
FREQ_E5a = 1.17645E9  # E5a frequency (Hz) - same as GPS L5
FREQ_E5b = 1.20714E9  # E5b frequency (Hz)
FREQ_E6 = 1.27875E9   # E6 frequency (Hz)

# BeiDou frequencies
FREQ_B1I = 1.561098E9  # BeiDou B1I frequency (Hz)
FREQ_B1C = 1.57542E9   # BeiDou B1C frequency (Hz)
FREQ_B2a = 1.17645E9   # BeiDou B2a frequency (Hz)
FREQ_B2b = 1.20714E9   # BeiDou B2b frequency (Hz)
FREQ_B3 = 1.26852E9    # BeiDou B3 frequency (Hz)

# GNSS System IDs
SYS_NONE = 0x00
SYS_GPS = 0x01    # GPS
SYS_GLO = 0x02    # GLONASS
SYS_GAL = 0x04    # Galileo
SYS_BDS = 0x08    # BeiDou
SYS_QZS = 0x10    # QZSS
SYS_SBS = 0x20    # SBAS
SYS_IRN = 0x40    # IRNSS

# Earth Parameters (WGS84)
RE_WGS84 = 6378137.0           # earth semimajor axis (m)
FE_WGS84 = 1.0 / 298.257223563 # earth flattening
OMGE = 7.2921151467E-5         # earth angular velocity (rad/s)
GME = 3.986004418E14           # earth gravitational constant

# GPS time
GPST0 = [1980, 1, 6, 0, 0, 0]  # GPS time reference epoch
SECONDS_PER_WEEK = 604800.0

# Unit conversions
R2D = 180.0 / np.pi            # radians to degrees
D2R = np.pi / 180.0            # degrees to radians

# Error/Threshold Constants
ERR_SAAS = 0.3      # Saastamoinen model error std (m)
ERR_BRDCI = 0.5     # broadcast ionosphere model error factor
ERR_ION = 5.0       # ionosphere delay std without a model (m, L1)
REL_HUMI = 0.7      # relative humidity

# Carrier frequencies by (system character, band name)
CARRIER_FREQUENCIES = {
    ('G', 'L1'): FREQ_L1,
    ('G', 'L2'): FREQ_L2,
    ('G', 'L5'): FREQ_L5,
    ('J', 'L1'): FREQ_L1,
    ('J', 'L2'): FREQ_L2,
    ('J', 'L5'): FREQ_L5,
    ('S', 'L1'): FREQ_L1,
    ('S', 'L5'): FREQ_L5,
    ('R', 'G1'): FREQ_G1,
    ('R', 'G2'): FREQ_G2,
    ('E', 'E1'): FREQ_E1,
    ('E', 'E5a'): FREQ_E5a,
    ('E', 'E5b'): FREQ_E5b,
    ('E', 'E6'): FREQ_E6,
    ('C', 'B1I'): FREQ_B1I,
    ('C', 'B1C'): FREQ_B1C,
    ('C', 'B2a'): FREQ_B2a,
    ('C', 'B2b'): FREQ_B2b,
    ('C', 'B3'): FREQ_B3,
}

# Frequency step per GLONASS channel number by band
GLONASS_CHANNEL_STEP = {
    'G1': DFRQ1_GLO,
    'G2': DFRQ2_GLO,
}


def sys2char(sys):
    """Convert system ID to character"""
    syschar = {
        SYS_GPS: 'G',
        SYS_GLO: 'R',
        SYS_GAL: 'E',
        SYS_BDS: 'C',
        SYS_QZS: 'J',
        SYS_SBS: 'S',
        SYS_IRN: 'I'
    }
    return syschar.get(sys, ' ')


def char2sys(c):
    """Convert character to system ID"""
    charmap = {
        'G': SYS_GPS,
        'R': SYS_GLO,
        'E': SYS_GAL,
        'C': SYS_BDS,
        'J': SYS_QZS,
        'S': SYS_SBS,
        'I': SYS_IRN
    }
    return charmap.get(c.upper(), SYS_NONE)


def sat_system(sat: str) -> str:
    """System character of a satellite identifier such as ``G05``"""
    if not sat:
        raise ValueError("empty satellite identifier")
    c = sat[0].upper()
    if char2sys(c) == SYS_NONE:
        raise ValueError(f"unknown constellation in satellite identifier {sat!r}")
    return c


def carrier_frequency(sat: str, band: str, fcn: Optional[int] = None) -> float:
    """Carrier frequency (Hz) of a band for the satellite's constellation

    ``fcn`` is the GLONASS frequency channel number; without it the
    channel 0 frequency is returned. It is ignored for CDMA systems.

    Raises
    ------
    KeyError
        If the band is not defined for the constellation
    """
    system = sat_system(sat)
    freq = CARRIER_FREQUENCIES[(system, band)]
    if system == 'R' and fcn is not None:
        freq += fcn * GLONASS_CHANNEL_STEP[band]
    return freq


def wavelength(sat: str, band: str, fcn: Optional[int] = None) -> float:
    """Carrier wavelength (m)"""
    return CLIGHT / carrier_frequency(sat, band, fcn)
