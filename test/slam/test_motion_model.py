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

import unittest
from unittest import TestCase

import numpy as np
from scipy.spatial.transform import Rotation

from monotrack.slam import MotionModel, MotionModelDamping
from monotrack.utilities.geometry import poseRt


def random_pose(max_angle_deg=30.0, max_translation=1.0):
    rotvec = np.random.uniform(-1.0, 1.0, size=3)
    rotvec = rotvec / np.linalg.norm(rotvec) * np.radians(np.random.uniform(0, max_angle_deg))
    R = Rotation.from_rotvec(rotvec).as_matrix()
    t = np.random.uniform(-max_translation, max_translation, size=3)
    return poseRt(R, t)


class TestMotionModel(TestCase):

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.T0 = random_pose()
        self.D = random_pose(max_angle_deg=5.0, max_translation=0.1)  # constant motion between frames
        self.T1 = self.D @ self.T0

    def test_constant_velocity(self):
        model = MotionModel()
        self.assertFalse(model.is_ok)
        model.update_pose_matrix(0.0, self.T0)
        self.assertFalse(model.is_ok)  # one pose is not enough to estimate the velocity
        model.update_pose_matrix(0.1, self.T1)
        self.assertTrue(model.is_ok)
        predicted = model.predict_pose_matrix(0.2, self.T1)
        np.testing.assert_allclose(predicted, self.D @ self.T1, atol=1e-8)

    def test_damping_model_with_unit_damping(self):
        model = MotionModelDamping(damping=1.0)
        model.update_pose_matrix(0.0, self.T0)
        model.update_pose_matrix(0.1, self.T1)
        self.assertTrue(model.is_ok)
        predicted = model.predict_pose_matrix(0.2, self.T1)
        np.testing.assert_allclose(predicted, self.D @ self.T1, atol=1e-8)

    def test_reset(self):
        model = MotionModel()
        model.update_pose_matrix(0.0, self.T0)
        model.update_pose_matrix(0.1, self.T1)
        model.reset()
        self.assertFalse(model.is_ok)
        # without velocity the prediction is the previous pose
        predicted = model.predict_pose_matrix(0.2, self.T1)
        np.testing.assert_allclose(predicted, self.T1, atol=1e-8)


if __name__ == "__main__":
    unittest.main()
