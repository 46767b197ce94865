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
LAMBDA integer least squares

Reduction by LAMBDA and search by MLAMBDA:

[1] P.J.G. Teunissen, The least-squares ambiguity decorrelation adjustment:
    a method for fast GPS ambiguity estimation, J.Geodesy, 1995
[2] X.-W.Chang, X.Yang, T.Zhou, MLAMBDA: a modified LAMBDA method for
    integer least-squares estimation, J.Geodesy, 2005
"""

import logging
from typing import Tuple

import numpy as np
from numba import njit
from scipy.stats import norm

logger = logging.getLogger(__name__)

LOOPMAX = 10000      # max search iterations


def round_half_up(x):
    """Nearest integer with halves rounded up (floor(x + 0.5))"""
    return np.floor(np.asarray(x) + 0.5)


@njit(cache=True)
def _ld_kernel(Q):
    n = Q.shape[0]
    L = np.zeros((n, n))
    d = np.zeros(n)
    A = Q.copy()
    for i in range(n - 1, -1, -1):
        d[i] = A[i, i]
        if d[i] <= 0.0:
            return L, d, False
        a = np.sqrt(d[i])
        for j in range(i + 1):
            L[i, j] = A[i, j] / a
        for j in range(i):
            for k in range(j + 1):
                A[j, k] -= L[i, k] * L[i, j]
        li = L[i, i]
        for j in range(i + 1):
            L[i, j] /= li
    return L, d, True


def ld_factorization(Q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    LD factorization (Q = L' * diag(d) * L)

    Parameters
    ----------
    Q : np.ndarray
        Symmetric positive definite matrix (n x n)

    Returns
    -------
    L : np.ndarray
        Unit lower triangular matrix
    d : np.ndarray
        Diagonal values

    Raises
    ------
    np.linalg.LinAlgError
        If ``Q`` is not positive definite
    """
    L, d, ok = _ld_kernel(np.ascontiguousarray(Q, dtype=np.float64))
    if not ok:
        raise np.linalg.LinAlgError("LD factorization: matrix not positive definite")
    return L, d


def reduction(L: np.ndarray, d: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decorrelation (z = Z' a, Qz = Z' Q Z = L' diag(d) L)

    Integer Gauss transformations plus permutations; ``L`` and ``d`` are
    modified in place and returned with the unimodular ``Z``.
    """
    n = len(d)
    Z = np.eye(n)
    j = k = n - 2

    while j >= 0:
        if j <= k:
            for i in range(j + 1, n):
                mu = float(round_half_up(L[i, j]))
                if mu != 0.0:
                    L[i:, j] -= mu * L[i:, i]
                    Z[:, j] -= mu * Z[:, i]

        delta = d[j] + L[j + 1, j]**2 * d[j + 1]
        if delta + 1e-6 < d[j + 1]:
            eta = d[j] / delta
            lam = d[j + 1] * L[j + 1, j] / delta
            d[j] = eta * d[j + 1]
            d[j + 1] = delta

            L[j:j + 2, :j] = np.array([[-L[j + 1, j], 1.0], [eta, lam]]) @ L[j:j + 2, :j]
            L[j + 1, j] = lam

            L[j + 2:, j], L[j + 2:, j + 1] = L[j + 2:, j + 1].copy(), L[j + 2:, j].copy()
            Z[:, j], Z[:, j + 1] = Z[:, j + 1].copy(), Z[:, j].copy()

            j, k = n - 2, j
        else:
            j -= 1

    return L, d, Z


def search(L: np.ndarray, d: np.ndarray, zs: np.ndarray, m: int = 2) -> Tuple[np.ndarray, np.ndarray]:
    """
    MLAMBDA depth-first search with a shrinking ellipsoid

    Returns
    -------
    zn : np.ndarray
        Integer candidates as columns (n x k, k <= m), best first
    s : np.ndarray
        Quadratic forms of the candidates, ascending
    """
    n = len(d)
    nn = 0
    imax = 0
    maxdist = 1e99

    S = np.zeros((n, n))
    dist = np.zeros(n)
    zb = np.zeros(n)
    z = np.zeros(n)
    step = np.zeros(n)
    zn = np.zeros((n, m))
    s = np.zeros(m)

    k = n - 1
    zb[k] = zs[k]
    z[k] = round_half_up(zb[k])
    y = zb[k] - z[k]
    step[k] = np.sign(y) if y != 0 else 1.0

    for _ in range(LOOPMAX):
        newdist = dist[k] + y**2 / d[k]
        if newdist < maxdist:
            if k != 0:
                k -= 1
                dist[k] = newdist
                S[k, :k + 1] = S[k + 1, :k + 1] + (z[k + 1] - zb[k + 1]) * L[k + 1, :k + 1]
                zb[k] = zs[k] + S[k, k]
                z[k] = round_half_up(zb[k])
                y = zb[k] - z[k]
                step[k] = np.sign(y) if y != 0 else 1.0
            else:
                if nn < m:
                    if nn == 0 or newdist > s[imax]:
                        imax = nn
                    zn[:, nn] = z
                    s[nn] = newdist
                    nn += 1
                else:
                    if newdist < s[imax]:
                        zn[:, imax] = z
                        s[imax] = newdist
                        imax = int(np.argmax(s))
                    maxdist = s[imax]
                z[0] += step[0]
                y = zb[0] - z[0]
                step[0] = -step[0] - np.sign(step[0])
        else:
            if k == n - 1:
                break
            k += 1
            z[k] += step[k]
            y = zb[k] - z[k]
            step[k] = -step[k] - np.sign(step[k])
    else:
        logger.warning(f"MLAMBDA search stopped after {LOOPMAX} iterations")

    order = np.argsort(s[:nn], kind='stable')
    return zn[:, :nn][:, order], s[:nn][order]


def mlambda(a: np.ndarray, Q: np.ndarray, m: int = 2) -> Tuple[np.ndarray, np.ndarray]:
    """
    Integer least squares estimation of float ambiguities

    Parameters
    ----------
    a : np.ndarray
        Float ambiguities (n)
    Q : np.ndarray
        Their covariance (n x n)
    m : int
        Number of candidates

    Returns
    -------
    afix : np.ndarray
        Integer candidates (n x k), best first
    s : np.ndarray
        Quadratic forms ``(a - afix)' Q^-1 (a - afix)``

    Raises
    ------
    np.linalg.LinAlgError
        If ``Q`` is not positive definite
    """
    a = np.asarray(a, dtype=float)
    L, d = ld_factorization(Q)
    L, d, Z = reduction(L, d)
    z = Z.T @ a
    E, s = search(L, d, z, m)
    # Z is unimodular, so the back transform is integer up to rounding
    afix = np.rint(np.linalg.solve(Z.T, E))
    return afix.astype(int), s


def success_rate(Q: np.ndarray) -> float:
    """Bootstrapping success rate of the decorrelated ambiguities"""
    L, d = ld_factorization(Q)
    _, d, _ = reduction(L, d)
    return float(np.prod(2.0 * norm.cdf(1.0 / (2.0 * np.sqrt(d))) - 1.0))
