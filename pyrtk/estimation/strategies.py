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

"""Measurement update variants

Both strategies take a linearized system ``v = z - h(x0)``, ``H`` and diagonal
measurement variances and return the posterior. For linear measurements they
give the same posterior up to rounding.
"""

from typing import Protocol, Tuple

import numpy as np
from scipy.linalg import cho_factor, cho_solve


class UpdateStrategy(Protocol):
    """Measurement update capability used by the estimation filter"""

    name: str

    def update(self, x: np.ndarray, P: np.ndarray, H: np.ndarray, v: np.ndarray,
               variances: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        ...


class SequentialUpdate:
    """Scalar Kalman updates, one measurement row at a time (Joseph form)"""

    name = 'sequential'

    def update(self, x, P, H, v, variances):
        x0 = x.copy()
        x = x.copy()
        P = P.copy()
        n = x.size
        I = np.eye(n)
        for i in range(H.shape[0]):
            h = H[i]
            # residual relinearized about the current estimate
            innov = v[i] - h @ (x - x0)
            Ph = P @ h
            s = h @ Ph + variances[i]
            if s <= 0.0:
                continue
            k = Ph / s
            x = x + k * innov
            A = I - np.outer(k, h)
            P = A @ P @ A.T + variances[i] * np.outer(k, k)
        return x, 0.5 * (P + P.T)


class BatchUpdate:
    """All rows at once with a Cholesky-factored innovation covariance"""

    name = 'least_squares'

    def update(self, x, P, H, v, variances):
        R = np.diag(variances)
        S = H @ P @ H.T + R
        c = cho_factor(S)
        # K = P H^T S^-1
        K = cho_solve(c, H @ P).T
        x = x + K @ v
        A = np.eye(x.size) - K @ H
        P = A @ P @ A.T + K @ R @ K.T
        return x, 0.5 * (P + P.T)


def make_strategy(mode: str) -> UpdateStrategy:
    """Strategy for a ``filter_mode`` option"""
    if mode == 'sequential':
        return SequentialUpdate()
    if mode == 'least_squares':
        return BatchUpdate()
    raise ValueError(f"unknown filter mode {mode!r}")
