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

import io
import unittest
from unittest import TestCase
from unittest import mock

import numpy as np
from scipy.spatial.transform import Rotation

from monotrack.slam import Frame, Map, MapPoint
from monotrack.slam.pose_optimizer import pose_optimization
from monotrack.utilities.geometry import poseRt

from synthetic_scene import make_camera, set_feature_tracker, rotation_angle_deg


class TestPoseOptimizer(TestCase):
    num_points = 100
    num_outliers = 10
    min_depth, max_depth = 2.0, 8.0

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        set_feature_tracker()
        self.camera = make_camera()
        self.map = Map()

        R = Rotation.from_euler("xyz", [2.0, -5.0, 1.0], degrees=True).as_matrix()
        self.gt_Tcw = poseRt(R, np.array([0.1, -0.05, 0.2]))

        # random 3D points seen by the camera at the ground truth pose
        uvs = np.random.uniform([20, 20], [self.camera.width - 20, self.camera.height - 20], size=(self.num_points, 2))
        depths = np.random.uniform(self.min_depth, self.max_depth, size=self.num_points)
        xcs = np.column_stack([self.camera.unproject_points(uvs) * depths[:, None], depths])
        Twc = np.linalg.inv(self.gt_Tcw)
        self.points_w = (Twc[:3, :3] @ xcs.T + Twc[:3, 3].reshape(3, 1)).T

        des = np.random.randint(0, 256, size=(self.num_points, 32)).astype(np.uint8)
        self.frame = Frame(self.camera, kps=uvs, des=des)
        self.map.add_frame(self.frame)
        for i, pw in enumerate(self.points_w):
            p = MapPoint(pw)
            self.map.add_point(p)
            self.assertTrue(self.map.associate(self.frame, i, p))

    def perturbed_pose(self):
        Rd = Rotation.from_euler("xyz", [1.0, 1.0, -1.0], degrees=True).as_matrix()
        return poseRt(Rd, np.array([0.03, -0.02, 0.03])) @ self.gt_Tcw

    def test_convergence(self):
        self.frame.update_pose(self.perturbed_pose())
        mean_chi2, is_ok, num_inliers = pose_optimization(self.frame)
        self.assertTrue(is_ok)
        self.assertEqual(num_inliers, self.num_points)
        self.assertLess(mean_chi2, 1e-3)
        Tcw = self.frame.Tcw()
        self.assertLess(rotation_angle_deg(Tcw[:3, :3], self.gt_Tcw[:3, :3]), 1e-3)
        np.testing.assert_allclose(Tcw[:3, 3], self.gt_Tcw[:3, 3], atol=1e-4)
        self.assertFalse(np.any(self.frame.outliers))

    def test_outliers_are_flagged(self):
        outlier_idxs = np.arange(self.num_outliers)
        self.frame.kpsu[outlier_idxs] += 25.0  # [pixels]
        self.frame.update_pose(self.perturbed_pose())
        _, is_ok, num_inliers = pose_optimization(self.frame)
        self.assertTrue(is_ok)
        self.assertEqual(num_inliers, self.num_points - self.num_outliers)
        self.assertTrue(np.all(self.frame.outliers[outlier_idxs]))
        self.assertFalse(np.any(self.frame.outliers[self.num_outliers :]))
        np.testing.assert_allclose(self.frame.Tcw()[:3, 3], self.gt_Tcw[:3, 3], atol=1e-3)

        # the outlier associations are removed by the frame
        num_matched = self.frame.clean_outlier_map_points()
        self.assertEqual(self.frame.num_matched_points(), self.num_points - self.num_outliers)
        self.assertEqual(num_matched, 0)  # no keyframe observes these points

    def test_not_enough_points(self):
        self.frame.reset_points()
        pose_before = self.frame.pose()
        _, is_ok, num_inliers = pose_optimization(self.frame)
        self.assertFalse(is_ok)
        self.assertEqual(num_inliers, 0)
        np.testing.assert_array_equal(self.frame.pose(), pose_before)

    def test_verbose_output(self):
        self.frame.update_pose(self.perturbed_pose())
        with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            pose_optimization(self.frame)
        self.assertEqual(stdout.getvalue(), "")
        self.frame.update_pose(self.perturbed_pose())
        with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            pose_optimization(self.frame, verbose=True)
        self.assertIn("pose optimization: available", stdout.getvalue())


if __name__ == "__main__":
    unittest.main()
