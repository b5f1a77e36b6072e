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
import math

from scipy.spatial.transform import Rotation

from numba import njit


# [4x4] homogeneous T from [3x3] R and [3x1] t
@njit(cache=True)
def poseRt(R, t):
    ret = np.eye(4)
    ret[:3, :3] = R
    ret[:3, 3] = t
    return ret


# [4x4] homogeneous inverse T^-1 in SE(3) from T represented with [3x3] R and [3x1] t
@njit(cache=True)
def inv_poseRt(R, t):
    ret = np.eye(4)
    ret[:3, :3] = R.T
    ret[:3, 3] = -R.T @ np.ascontiguousarray(t)
    return ret


# [4x4] homogeneous inverse T^-1 in SE(3) from [4x4] T
@njit(cache=True)
def inv_T(T):
    ret = np.eye(4)
    R_T = T[:3, :3].T
    t = T[:3, 3]
    ret[:3, :3] = R_T
    ret[:3, 3] = -R_T @ np.ascontiguousarray(t)
    return ret


# turn [[x,y]] -> [[x,y,1]]
def add_ones(x):
    if len(x.shape) == 1:
        return np.array([x[0], x[1], 1.0])
    else:
        return np.concatenate([x, np.ones((x.shape[0], 1))], axis=1)


# turn [[x,y,w]]= Kinv*[u,v,1] into [[x/w,y/w]]
def normalize(Kinv, pts):
    if len(pts) == 0:
        return np.empty((0, 2), dtype=np.float64)
    return np.dot(Kinv, add_ones(pts).T).T[:, 0:2]


# turn w in its skew symmetrix matrix representation
# w in IR^3 -> [0,-wz,wy],
#              [wz,0,-wx],
#              [-wy,wx,0]]
@njit(cache=True)
def skew(w):
    wx, wy, wz = w.ravel()
    return np.array([[0.0, -wz, wy], [wz, 0.0, -wx], [-wy, wx, 0.0]])


@njit(cache=True)
def rotation_matrix_from_yaw_pitch_roll(yaw_degs, pitch_degs, roll_degs):
    yaw = np.radians(yaw_degs)
    pitch = np.radians(pitch_degs)
    roll = np.radians(roll_degs)
    # roll (x-axis rotation)
    Rx = np.array(
        [[1.0, 0.0, 0.0], [0.0, np.cos(roll), -np.sin(roll)], [0.0, np.sin(roll), np.cos(roll)]]
    )
    # pitch (y-axis rotation)
    Ry = np.array(
        [[np.cos(pitch), 0.0, np.sin(pitch)], [0.0, 1.0, 0.0], [-np.sin(pitch), 0.0, np.cos(pitch)]]
    )
    # yaw (z-axis rotation)
    Rz = np.array(
        [[np.cos(yaw), -np.sin(yaw), 0.0], [np.sin(yaw), np.cos(yaw), 0.0], [0.0, 0.0, 1.0]]
    )
    return Rz @ Ry @ Rx


# angle [rad] of the relative rotation R1^T * R2
def rotation_angle_between(R1, R2):
    return np.linalg.norm(Rotation.from_matrix(R1.T @ R2).as_rotvec())


# angle [rad] between two 3D directions
def angle_between_vectors(v1, v2):
    v1 = np.asarray(v1, dtype=np.float64).ravel()
    v2 = np.asarray(v2, dtype=np.float64).ravel()
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 < 1e-12 or n2 < 1e-12:
        return math.pi
    cos = np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0)
    return math.acos(cos)


# returns the [Nx2] projections and the [N] depths of [Nx3] world points pw with the pose Tcw and the intrinsics K
@njit(cache=True)
def project_points_numba(K, Rcw, tcw, pw):
    N = pw.shape[0]
    uvs = np.empty((N, 2))
    zs = np.empty(N)
    for i in range(N):
        x = Rcw[0, 0] * pw[i, 0] + Rcw[0, 1] * pw[i, 1] + Rcw[0, 2] * pw[i, 2] + tcw[0]
        y = Rcw[1, 0] * pw[i, 0] + Rcw[1, 1] * pw[i, 1] + Rcw[1, 2] * pw[i, 2] + tcw[1]
        z = Rcw[2, 0] * pw[i, 0] + Rcw[2, 1] * pw[i, 1] + Rcw[2, 2] * pw[i, 2] + tcw[2]
        zs[i] = z
        if z == 0.0:
            uvs[i, 0] = np.inf
            uvs[i, 1] = np.inf
        else:
            uvs[i, 0] = K[0, 0] * x / z + K[0, 2]
            uvs[i, 1] = K[1, 1] * y / z + K[1, 2]
    return uvs, zs
