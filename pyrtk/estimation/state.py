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

"""Filter state vector with a dynamic set of auxiliary states"""

from collections import OrderedDict
from typing import Hashable, List, Optional

import numpy as np

from ..core.data_structures import SignalId

# Core state layout
IDX_POS = slice(0, 3)
IDX_VEL = slice(3, 6)
IDX_CLK = 6          # receiver clock bias (m)
IDX_DRIFT = 7        # receiver clock drift (m/s)
NX_CORE = 8


def isb_key(system: str):
    """Index-map key of the inter-system bias of a constellation"""
    return ('isb', system)


class FilterState:
    """
    State estimate and covariance

    The first eight states are position (3), velocity (3), clock bias (m) and
    clock drift (m/s). Auxiliary states (carrier ambiguities keyed by
    :class:`SignalId`, inter-system biases keyed by ``('isb', system)``) follow
    in insertion order.
    """

    def __init__(self, x: Optional[np.ndarray] = None, P: Optional[np.ndarray] = None,
                 time: Optional[float] = None):
        self.x = np.zeros(NX_CORE) if x is None else np.array(x, dtype=float)
        self.P = np.zeros((NX_CORE, NX_CORE)) if P is None else np.array(P, dtype=float)
        self.time = time
        self._index = OrderedDict()

    @property
    def size(self) -> int:
        return self.x.size

    @property
    def position(self) -> np.ndarray:
        return self.x[IDX_POS]

    @property
    def velocity(self) -> np.ndarray:
        return self.x[IDX_VEL]

    @property
    def clock(self) -> float:
        return float(self.x[IDX_CLK])

    @property
    def drift(self) -> float:
        return float(self.x[IDX_DRIFT])

    def keys(self) -> List[Hashable]:
        return list(self._index)

    def ambiguity_keys(self) -> List[SignalId]:
        return [k for k in self._index if isinstance(k, SignalId)]

    def isb_systems(self) -> List[str]:
        return [k[1] for k in self._index if not isinstance(k, SignalId) and k[0] == 'isb']

    def __contains__(self, key) -> bool:
        return key in self._index

    def index_of(self, key) -> int:
        return self._index[key]

    def get(self, key, default=None):
        if key not in self._index:
            return default
        return float(self.x[self._index[key]])

    def variance(self, key) -> float:
        i = self._index[key]
        return float(self.P[i, i])

    def add_state(self, key, value: float, variance: float) -> int:
        """Append an auxiliary state, uncorrelated with the others"""
        if key in self._index:
            raise KeyError(f"state {key} already present")
        n = self.size
        self.x = np.append(self.x, value)
        P = np.zeros((n + 1, n + 1))
        P[:n, :n] = self.P
        P[n, n] = variance
        self.P = P
        self._index[key] = n
        return n

    def remove_state(self, key):
        """Delete an auxiliary state's row and column"""
        i = self._index.pop(key)
        self.x = np.delete(self.x, i)
        self.P = np.delete(np.delete(self.P, i, axis=0), i, axis=1)
        for k, j in self._index.items():
            if j > i:
                self._index[k] = j - 1

    def reset_state(self, key, value: float, variance: float):
        """Re-initialize an auxiliary state and clear its correlations"""
        i = self._index[key]
        self.x[i] = value
        self.P[i, :] = 0.0
        self.P[:, i] = 0.0
        self.P[i, i] = variance

    def copy(self) -> 'FilterState':
        new = FilterState(self.x.copy(), self.P.copy(), self.time)
        new._index = OrderedDict(self._index)
        return new

    def __repr__(self):
        return (f"FilterState(time={self.time}, pos={self.position}, "
                f"aux={len(self._index)})")
