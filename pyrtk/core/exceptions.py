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

"""Error taxonomy of the estimation pipeline

Only :class:`IllConditionedGeometry` and :class:`FilterDivergedError` escape a
navigation session. The others are raised inside the pipeline and turned into a
:class:`~pyrtk.core.data_structures.NoSolution` or a dropped satellite.
"""

from enum import Enum
from typing import Optional


class ReasonCode(Enum):
    """Why an epoch produced no solution"""
    INSUFFICIENT_OBSERVATIONS = "insufficient_observations"
    NO_PSEUDORANGE = "no_pseudorange"
    SOLVER_FAILED = "solver_failed"
    ILL_CONDITIONED_GEOMETRY = "ill_conditioned_geometry"
    NO_APPROXIMATE_POSITION = "no_approximate_position"


class PyRTKError(Exception):
    """Base class for pyrtk errors"""


class ConfigurationError(PyRTKError, ValueError):
    """Invalid processing configuration"""


class InsufficientObservations(PyRTKError):
    """Fewer usable satellites than the configured minimum"""

    def __init__(self, count: int, minimum: int,
                 reason: ReasonCode = ReasonCode.INSUFFICIENT_OBSERVATIONS):
        self.count = count
        self.minimum = minimum
        self.reason = reason
        super().__init__(f"{count} usable satellites, at least {minimum} required")


class EphemerisUnavailable(PyRTKError):
    """No valid ephemeris brackets the requested time for a satellite"""

    def __init__(self, sat: str, time: float, detail: Optional[str] = None):
        self.sat = sat
        self.time = time
        msg = f"no ephemeris for {sat} at t={time:.3f}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class IllConditionedGeometry(PyRTKError):
    """State covariance failed the numerical stability check after an update"""

    def __init__(self, condition_number: float, ceiling: float):
        self.condition_number = condition_number
        self.ceiling = ceiling
        super().__init__(
            f"covariance condition number {condition_number:.3e} exceeds {ceiling:.3e}")


class FilterDivergedError(PyRTKError):
    """Filter is in the terminal Diverged state and must be reset"""


class SolverError(PyRTKError):
    """Least-squares bootstrap could not produce a solution"""
