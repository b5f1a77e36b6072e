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

from monotrack.config_parameters import Parameters
from monotrack.utilities.geom_2views import reconstruct_from_homography

from synthetic_scene import SyntheticPlanarScene, kCameraSettings, rotation_angle_deg, vector_angle_deg


class TestReconstructFromHomography(TestCase):
    depth = 4.0
    # lateral motions of the second camera w.r.t. the fronto-parallel plane
    baselines = [
        np.array([-0.3, -0.02, 0.0]),
        np.array([0.4, 0.1, 0.0]),
        np.array([-1.0, 0.0, 0.0]),
    ]

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        fx, fy = kCameraSettings["Camera.fx"], kCameraSettings["Camera.fy"]
        cx, cy = kCameraSettings["Camera.cx"], kCameraSettings["Camera.cy"]
        self.K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]])
        self.Kinv = np.linalg.inv(self.K)
        self.scene = SyntheticPlanarScene(num_points=300, depth=self.depth)

    def views(self, t21):
        pts1 = self.scene.points_w
        pts2 = pts1 + t21
        kpsn1 = pts1[:, :2] / pts1[:, 2:3]
        kpsn2 = pts2[:, :2] / pts2[:, 2:3]
        kps1 = kpsn1 * np.diag(self.K)[:2] + self.K[:2, 2]
        kps2 = kpsn2 * np.diag(self.K)[:2] + self.K[:2, 2]
        return kps1, kps2, kpsn1, kpsn2

    def reconstruct(self, t21):
        n = np.array([0.0, 0.0, 1.0])
        H21 = self.K @ (np.eye(3) + np.outer(t21, n) / self.depth) @ self.Kinv
        kps1, kps2, kpsn1, kpsn2 = self.views(t21)
        mask = np.ones(len(kps1), dtype=bool)
        return reconstruct_from_homography(
            H21 / H21[2, 2],
            self.K,
            kps1,
            kps2,
            kpsn1,
            kpsn2,
            mask=mask,
            sigma=Parameters.kInitializerSigma,
            min_parallax_deg=Parameters.kInitializerMinParallaxDeg,
            min_triangulated=Parameters.kInitializerNumMinTriangulatedPoints,
            cos_max_parallax=Parameters.kCosMaxParallaxInitializer,
        )

    def test_lateral_motion_is_recovered(self):
        for t21 in self.baselines:
            reconstruction = self.reconstruct(t21)
            self.assertIsNotNone(reconstruction, f"no reconstruction for baseline {t21}")
            R_err_deg = rotation_angle_deg(reconstruction.R21, np.eye(3))
            t_err_deg = vector_angle_deg(reconstruction.t21, t21)
            print(f"baseline {t21}: rotation error: {R_err_deg} deg, translation direction error: {t_err_deg} deg")
            self.assertLess(R_err_deg, 0.1)
            self.assertLess(t_err_deg, 0.5)
            # all the points lie in front of the two cameras
            self.assertEqual(np.count_nonzero(reconstruction.triangulated), self.scene.num_points())
            self.assertTrue(np.all(reconstruction.points3d[:, 2] > 0))

    def test_pure_rotation_is_rejected(self):
        # no translation: the homography is the identity and no point can be triangulated
        self.assertIsNone(self.reconstruct(np.zeros(3)))


if __name__ == "__main__":
    unittest.main()
