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


# Motion models work on camera poses Tcw represented by an orientation (scipy Rotation, Rcw)
# and a position (tcw vector).
class MotionModelBase(object):
    def __init__(
        self,
        timestamp=None,
        initial_position=None,
        initial_orientation=None,
        initial_covariance=None,
    ):

        self.timestamp = timestamp
        if initial_position is not None:
            self.position = np.array(initial_position, dtype=np.float64).ravel()
        else:
            self.position = np.zeros(3)
        if initial_orientation is not None:
            self.orientation = initial_orientation
        else:
            self.orientation = Rotation.identity()
        self.covariance = initial_covariance  # pose covariance

        self.is_ok = False
        self.initialized = False

    def current_pose(self):
        """
        Get the current camera pose.
        """
        return (poseRt(self.orientation.as_matrix(), self.position), self.covariance)

    def predict_pose(self, timestamp, prev_position=None, prev_orientation=None):
        return None

    def update_pose(self, timestamp, new_position, new_orientation, new_covariance=None):
        return None

    # correction= Tcw_corrected * Tcw_uncorrected.inverse()
    def apply_correction(self, correction):
        return None

    # the velocity estimate is valid once two poses have been received
    def has_velocity(self):
        return self.is_ok

    def reset(self):
        self.timestamp = None
        self.position = np.zeros(3)
        self.orientation = Rotation.identity()
        self.covariance = None
        self.is_ok = False
        self.initialized = False

    # convenience wrappers working on [4x4] Tcw matrices
    def update_pose_matrix(self, timestamp, Tcw, covariance=None):
        Tcw = np.asarray(Tcw, dtype=np.float64)
        self.update_pose(timestamp, Tcw[:3, 3].copy(), Rotation.from_matrix(Tcw[:3, :3]), covariance)

    def predict_pose_matrix(self, timestamp, prev_Tcw=None):
        if prev_Tcw is not None:
            prev_Tcw = np.asarray(prev_Tcw, dtype=np.float64)
            pose, _ = self.predict_pose(timestamp, prev_Tcw[:3, 3].copy(), Rotation.from_matrix(prev_Tcw[:3, :3]))
        else:
            pose, _ = self.predict_pose(timestamp)
        return pose


# simple constant velocity model without damping (does not actually use timestamps):
# the velocity is the relative transformation Tcw_new * Tcw_old^-1
class MotionModel(MotionModelBase):
    def __init__(
        self,
        timestamp=None,
        initial_position=None,
        initial_orientation=None,
        initial_covariance=None,
    ):
        super().__init__(timestamp, initial_position, initial_orientation, initial_covariance)

        self.delta_position = np.zeros(3)  # delta translation
        self.delta_orientation = Rotation.identity()

    def predict_pose(self, timestamp, prev_position=None, prev_orientation=None):
        """
        Predict the next camera pose.
        """
        if prev_position is not None:
            self.position = np.array(prev_position, dtype=np.float64).ravel()
        if prev_orientation is not None:
            self.orientation = prev_orientation

        if not self.is_ok:
            return (poseRt(self.orientation.as_matrix(), self.position), self.covariance)

        orientation = self.delta_orientation * self.orientation
        position = self.delta_orientation.apply(self.position) + self.delta_position

        return (poseRt(orientation.as_matrix(), position), self.covariance)

    def update_pose(self, timestamp, new_position, new_orientation, new_covariance=None):
        """
        Update the motion model when given a new camera pose.
        """
        new_position = np.array(new_position, dtype=np.float64).ravel()
        if self.initialized:
            self.delta_orientation = new_orientation * self.orientation.inv()
            self.delta_position = new_position - self.delta_orientation.apply(self.position)
            self.is_ok = True

        self.timestamp = timestamp
        self.position = new_position
        self.orientation = new_orientation
        self.covariance = new_covariance
        self.initialized = True

    # correction = Tcw_corrected * Tcw_uncorrected.inverse()  (transform from camera_uncorrected to camera_corrected)
    def apply_correction(self, correction):
        """
        Reset the model given a new camera pose.
        Note: This method will be called when it happens an abrupt change in the pose (LoopClosing)
        """
        correction = np.asarray(correction, dtype=np.float64)
        current = correction @ poseRt(self.orientation.as_matrix(), self.position)
        self.position = current[:3, 3].copy()
        self.orientation = Rotation.from_matrix(current[:3, :3])

        # velocity expressed in the corrected camera frame: C * V * C^-1
        velocity = correction @ poseRt(self.delta_orientation.as_matrix(), self.delta_position) @ inv_T(correction)
        self.delta_orientation = Rotation.from_matrix(velocity[:3, :3])
        self.delta_position = velocity[:3, 3].copy()

    def reset(self):
        super().reset()
        self.delta_position = np.zeros(3)
        self.delta_orientation = Rotation.identity()


# motion model with damping
class MotionModelDamping(MotionModelBase):
    def __init__(
        self,
        timestamp=None,
        initial_position=None,
        initial_orientation=None,
        initial_covariance=None,
        damping=0.95,
    ):
        super().__init__(timestamp, initial_position, initial_orientation, initial_covariance)

        self.v_linear = np.zeros(3)  # linear velocity
        self.v_angular = np.zeros(3)  # angular velocity (rotation vector per second)

        self.damp = damping  # damping factor

    def predict_pose(self, timestamp, prev_position=None, prev_orientation=None):
        """
        Predict the next camera pose.
        """
        if prev_position is not None:
            self.position = np.array(prev_position, dtype=np.float64).ravel()
        if prev_orientation is not None:
            self.orientation = prev_orientation

        if not self.is_ok:
            return (poseRt(self.orientation.as_matrix(), self.position), self.covariance)

        if self.timestamp is None or timestamp is None:
            dt = 0
        else:
            dt = timestamp - self.timestamp

        delta_orientation = Rotation.from_rotvec(self.v_angular * dt * self.damp)

        orientation = delta_orientation * self.orientation
        position = delta_orientation.apply(self.position) + self.v_linear * dt * self.damp

        return (poseRt(orientation.as_matrix(), position), self.covariance)

    def update_pose(self, timestamp, new_position, new_orientation, new_covariance=None):
        """
        Update the motion model when given a new camera pose.
        """
        new_position = np.array(new_position, dtype=np.float64).ravel()
        if self.initialized and timestamp is not None and self.timestamp is not None:
            dt = timestamp - self.timestamp
            if dt > 0:
                delta_orientation = new_orientation * self.orientation.inv()
                self.v_angular = delta_orientation.as_rotvec() / dt  # as_rotvec() angle is in [0, pi]
                self.v_linear = (new_position - delta_orientation.apply(self.position)) / dt
                self.is_ok = True

        self.timestamp = timestamp
        self.position = new_position
        self.orientation = new_orientation
        self.covariance = new_covariance
        self.initialized = True

    # correction = Tcw_corrected * Tcw_uncorrected.inverse()  (transform from camera_uncorrected to camera_corrected)
    def apply_correction(self, correction):
        """
        Reset the model given a new camera pose.
        Note: This method will be called when it happens an abrupt change in the pose (LoopClosing)
        """
        correction = np.asarray(correction, dtype=np.float64)
        current = correction @ poseRt(self.orientation.as_matrix(), self.position)
        self.position = current[:3, 3].copy()
        self.orientation = Rotation.from_matrix(current[:3, :3])

        Rc = correction[:3, :3]
        self.v_angular = Rc @ self.v_angular
        self.v_linear = Rc @ self.v_linear

    def reset(self):
        super().reset()
        self.v_linear = np.zeros(3)
        self.v_angular = np.zeros(3)
