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
from monotrack.slam import Initializer

from synthetic_scene import (
    SyntheticPlanarScene,
    make_camera,
    set_feature_tracker,
    translated_pose,
    rotation_angle_deg,
    vector_angle_deg,
)


class TestInitializer(TestCase):
    baseline = np.array([-0.3, -0.02, 0.0])  # translation of the second camera (depth of the plane: 4)

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        set_feature_tracker()
        self.camera = make_camera()
        self.scene = SyntheticPlanarScene(num_points=300, depth=4.0)

    def test_planar_scene_two_views(self):
        f_ref = self.scene.make_frame(self.camera, np.eye(4), timestamp=0.0)
        f_cur = self.scene.make_frame(self.camera, translated_pose(*self.baseline), timestamp=0.1)
        self.assertEqual(f_ref.num_keypoints(), self.scene.num_points())
        self.assertEqual(f_cur.num_keypoints(), self.scene.num_points())

        initializer = Initializer()
        self.assertTrue(initializer.init(f_ref))
        out, is_ok = initializer.initialize(f_cur)

        self.assertTrue(is_ok)
        self.assertTrue(out.is_homography)
        self.assertGreaterEqual(len(out.pts), Parameters.kInitializerNumMinTriangulatedPoints)
        self.assertEqual(len(out.pts), len(out.idxs_ref))
        self.assertEqual(len(out.pts), len(out.idxs_cur))

        # the reference keyframe is the world origin
        np.testing.assert_allclose(out.kf_ref.Tcw(), np.eye(4), atol=1e-9)

        # the relative motion is recovered up to scale
        Tcw = out.kf_cur.Tcw()
        R_err_deg = rotation_angle_deg(Tcw[:3, :3], np.eye(3))
        t_err_deg = vector_angle_deg(Tcw[:3, 3], self.baseline)
        print(f"rotation error: {R_err_deg} deg, translation direction error: {t_err_deg} deg")
        self.assertLess(R_err_deg, 0.5)
        self.assertLess(t_err_deg, 1.0)

        # the scene median depth is forced to the desired one (the plane is fronto-parallel)
        self.assertAlmostEqual(np.median(out.pts[:, 2]), Parameters.kInitializerDesiredMedianDepth, places=6)
        np.testing.assert_allclose(out.pts[:, 2], Parameters.kInitializerDesiredMedianDepth, atol=1e-2)

        # the triangulated points correspond to the same scene points in the two views
        for i_ref, i_cur in zip(out.idxs_ref, out.idxs_cur):
            np.testing.assert_array_equal(f_ref.des[i_ref], f_cur.des[i_cur])

        # the reconstructed points are the scene points scaled by the depth factor
        scale = Parameters.kInitializerDesiredMedianDepth / 4.0
        expected_pts = self.scene.points_w[out.idxs_ref] * scale
        np.testing.assert_allclose(out.pts, expected_pts, atol=1e-2)

    def test_not_enough_features_for_reference(self):
        f_ref = self.scene.make_frame(self.camera, np.eye(4))
        f_ref.init_features(f_ref.kps[:50], f_ref.des[:50])
        initializer = Initializer()
        self.assertFalse(initializer.init(f_ref))
        self.assertFalse(initializer.has_reference())

    def test_low_parallax_replaces_reference(self):
        f_ref = self.scene.make_frame(self.camera, np.eye(4))
        f_cur = self.scene.make_frame(self.camera, translated_pose(-0.001))
        initializer = Initializer()
        self.assertTrue(initializer.init(f_ref))
        out, is_ok = initializer.initialize(f_cur)
        self.assertFalse(is_ok)
        self.assertIsNone(out.pts)
        # the current frame becomes the new reference (never accumulated)
        self.assertIs(initializer.f_ref, f_cur)

    def test_no_matches_replaces_reference(self):
        f_ref = self.scene.make_frame(self.camera, np.eye(4))
        other_scene = SyntheticPlanarScene(num_points=300, depth=4.0, seed=1)
        f_cur = other_scene.make_frame(self.camera, np.eye(4))
        initializer = Initializer()
        initializer.init(f_ref)
        _, is_ok = initializer.initialize(f_cur)
        self.assertFalse(is_ok)
        self.assertIs(initializer.f_ref, f_cur)
        self.assertEqual(initializer.num_failures, 1)


if __name__ == "__main__":
    unittest.main()
