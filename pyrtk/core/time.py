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

"""GPS time helpers

Epoch times are plain floats counting GPS seconds since 1980-01-06 00:00:00.
Leap seconds are not applied; the helpers below only need day-of-year and
time-of-week resolution.
"""

from datetime import datetime, timedelta
from typing import Tuple

import numpy as np

from .constants import GPST0, SECONDS_PER_WEEK

_GPS_EPOCH = datetime(*GPST0)


def gpst2weektow(t: float) -> Tuple[int, float]:
    """Split GPS seconds into GPS week and time of week"""
    week = int(np.floor(t / SECONDS_PER_WEEK))
    return week, t - week * SECONDS_PER_WEEK


def weektow2gpst(week: int, tow: float) -> float:
    """Join GPS week and time of week into GPS seconds"""
    return week * SECONDS_PER_WEEK + tow


def gpst2datetime(t: float) -> datetime:
    """GPS seconds to a naive datetime in the GPS time scale"""
    return _GPS_EPOCH + timedelta(seconds=float(t))


def datetime2gpst(dt: datetime) -> float:
    """Naive GPS time scale datetime to GPS seconds"""
    return (dt - _GPS_EPOCH).total_seconds()


def day_of_year(t: float) -> float:
    """Fractional day of year (1.0 = Jan 1st 00:00)"""
    dt = gpst2datetime(t)
    start = datetime(dt.year, 1, 1)
    return 1.0 + (dt - start).total_seconds() / 86400.0
