"""
* This file is part of MONOTRACK
*
* Copyright (C) 2016-present Luigi Freda <luigi dot freda at gmail dot com>
*
* MONOTRACK is free software: you can redistribute it and/or modify
* it under the terms of the GNU General Public License as published by
* the Free Software Foundation, either version 3 of the License, or
* (at your option) any later version.
*
* MONOTRACK is distributed in the hope that it will be useful,
* but WITHOUT ANY WARRANTY; without even the implied warranty of
* MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
* GNU General Public License for more details.
*
* You should have received a copy of the GNU General Public License
* along with MONOTRACK. If not, see <http://www.gnu.org/licenses/>.
"""

import numpy as np

from numba import njit


# number of set bits of each byte value
kPopCountTable = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


@njit(cache=True)
def _hamming_distance_rows(a, b, table):
    N = a.shape[0]
    B = a.shape[1]
    out = np.empty(N, dtype=np.int32)
    for i in range(N):
        d = 0
        for j in range(B):
            d += table[a[i, j] ^ b[i, j]]
        out[i] = d
    return out


@njit(cache=True)
def _hamming_distance_matrix(a, b, table):
    N = a.shape[0]
    M = b.shape[0]
    B = a.shape[1]
    out = np.empty((N, M), dtype=np.int32)
    for i in range(N):
        for k in range(M):
            d = 0
            for j in range(B):
                d += table[a[i, j] ^ b[k, j]]
            out[i, k] = d
    return out


def hamming_distance(a, b):
    """Bit-level Hamming distance between two uint8 descriptors of shape (B,)."""
    a = np.ascontiguousarray(a, dtype=np.uint8).reshape(1, -1)
    b = np.ascontiguousarray(b, dtype=np.uint8).reshape(1, -1)
    return int(_hamming_distance_rows(a, b, kPopCountTable)[0])


def hamming_distances(a, b):
    """
    Bit-level Hamming distances between uint8 descriptors.
    Supports:
    - a: (B,), b: (N,B) -> (N,) distances from a to each row of b
    - a: (N,B), b: (N,B) -> (N,) pairwise distances
    """
    a = np.ascontiguousarray(a, dtype=np.uint8)
    b = np.ascontiguousarray(b, dtype=np.uint8)
    if b.ndim == 1:
        b = b.reshape(1, -1)
    if a.ndim == 1:
        a = np.ascontiguousarray(np.broadcast_to(a, b.shape))
    if a.shape != b.shape:
        raise ValueError(f"hamming_distances: shape mismatch a={a.shape}, b={b.shape}")
    if a.shape[0] == 0:
        return np.empty(0, dtype=np.int32)
    return _hamming_distance_rows(a, b, kPopCountTable)


def hamming_distance_matrix(a, b):
    """All-pairs (N,M) Hamming distances between a: (N,B) and b: (M,B)."""
    a = np.ascontiguousarray(a, dtype=np.uint8)
    b = np.ascontiguousarray(b, dtype=np.uint8)
    if a.shape[0] == 0 or b.shape[0] == 0:
        return np.empty((a.shape[0], b.shape[0]), dtype=np.int32)
    return _hamming_distance_matrix(a, b, kPopCountTable)
