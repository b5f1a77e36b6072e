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
from scipy.spatial.transform import Rotation

from monotrack.utilities.geometry import poseRt, inv_T


# camera pose representation by using a [4x4] homogeneous matrix Tcw (pc = Tcw * pw)
class CameraPose(object):
    def __init__(self, pose=None):
        if pose is None:
            pose = np.eye(4)
        self.set(pose)

    def copy(self):
        return CameraPose(self.Tcw.copy())

    # input pose is expected to be a [4x4] matrix Tcw or another CameraPose
    def set(self, pose):
        if isinstance(pose, CameraPose):
            pose = pose.Tcw
        self.set_mat(np.array(pose, dtype=np.float64))

    def update(self, pose):
        self.set(pose)

    def set_mat(self, Tcw):
        if Tcw.shape != (4, 4):
            raise ValueError(f"CameraPose: expected a [4x4] matrix, got {Tcw.shape}")
        self.Tcw = np.ascontiguousarray(Tcw)  # homogeneous transformation matrix: (4, 4)   pc_ = Tcw * pw_
        self.Rcw = np.ascontiguousarray(self.Tcw[:3, :3])
        self.tcw = np.ascontiguousarray(self.Tcw[:3, 3])  # pc = Rcw * pw + tcw
        self.Rwc = np.ascontiguousarray(self.Rcw.T)
        self.Ow = np.ascontiguousarray(-(self.Rwc @ self.tcw))  # origin of camera frame w.r.t world

    @property
    def quaternion(self):  # quaternion_cw as [x, y, z, w]
        return Rotation.from_matrix(self.Rcw).as_quat()

    @property
    def orientation(self):  # rotation Rcw as scipy Rotation
        return Rotation.from_matrix(self.Rcw)

    @property
    def position(self):  # 3D vector tcw (world origin w.r.t. camera frame)
        return self.tcw.copy()

    def get_rotation_matrix(self):
        return self.Rcw.copy()

    def get_matrix(self):
        return self.Tcw.copy()

    def get_inverse_matrix(self):
        return inv_T(self.Tcw)

    # set from orientation (scipy Rotation or quaternion [x, y, z, w]) and position (3D vector tcw)
    def set_from_quaternion_and_position(self, quaternion, position):
        if not isinstance(quaternion, Rotation):
            quaternion = Rotation.from_quat(quaternion)
        self.set(poseRt(quaternion.as_matrix(), np.asarray(position, dtype=np.float64).ravel()))

    # set from 4x4 homogeneous transformation matrix Tcw  (pc_ = Tcw * pw_)
    def set_from_matrix(self, Tcw):
        self.set(Tcw)

    def set_from_rotation_and_translation(self, Rcw, tcw):
        self.set(poseRt(np.asarray(Rcw, dtype=np.float64), np.asarray(tcw, dtype=np.float64).ravel()))

    def set_translation(self, tcw):
        self.set(poseRt(self.Rcw, np.asarray(tcw, dtype=np.float64).ravel()))
