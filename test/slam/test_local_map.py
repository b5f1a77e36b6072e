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
from monotrack.slam import KeyFrame, Map, LocalMap

from synthetic_scene import SyntheticPlanarScene, make_camera, set_feature_tracker, translated_pose


class TestLocalMap(TestCase):

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        set_feature_tracker()
        self.camera = make_camera()
        self.scene = SyntheticPlanarScene(num_points=200, depth=4.0)
        self.map = Map()
        self.local_map = LocalMap(self.map)

        self.kf1 = self.make_keyframe(np.eye(4))
        self.kf2 = self.make_keyframe(translated_pose(-0.3))
        idxs = np.arange(self.scene.num_points())
        _, _, self.points = self.map.add_points(self.scene.points_w, None, self.kf1, self.kf2, idxs, idxs)
        self.kf1.update_connections()
        self.kf2.update_connections()

    def make_keyframe(self, Tcw):
        f = self.scene.make_frame(self.camera, Tcw)
        f.update_pose(Tcw)
        kf = KeyFrame(f)
        self.map.add_frame(kf)
        self.map.add_keyframe(kf)
        return kf

    def make_tracked_frame(self, Tcw):
        f = self.scene.make_frame(self.camera, Tcw)
        f.update_pose(Tcw)
        self.map.add_frame(f)
        return f

    def test_covisibility(self):
        self.assertEqual(len(self.points), self.scene.num_points())
        self.assertIn(self.kf2, self.kf1.get_best_covisible_keyframes(Parameters.kNumBestCovisibilityKeyFrames))
        self.assertEqual(self.kf1.get_weight(self.kf2), self.scene.num_points())

    def test_update_from_keyframe(self):
        kf_ref, keyframes, points = self.local_map.update_from_keyframe(self.kf2)
        self.assertIs(kf_ref, self.kf2)
        self.assertEqual(list(keyframes)[0], self.kf2)
        self.assertIn(self.kf1, keyframes)
        self.assertEqual(len(points), self.scene.num_points())
        # each point is listed once
        self.assertEqual(len(set(p.id for p in points)), len(points))

    def test_search_in_frustum_and_reference(self):
        self.local_map.update_from_keyframe(self.kf2)
        f = self.make_tracked_frame(translated_pose(-0.15))
        num_found, idxs = self.local_map.search_in_frustum(f, max_reproj_distance=Parameters.kMaxReprojectionDistanceMap)
        self.assertEqual(num_found, self.scene.num_points())
        self.assertEqual(f.num_matched_points(), self.scene.num_points())
        # matched keypoints correspond to the projected scene points
        for idx in idxs:
            p = f.get_point_match(idx)
            self.assertIsNotNone(p)
            np.testing.assert_allclose(p.pt(), self.scene.points_w[idx], atol=1e-9)

        # points already associated with the frame are skipped
        num_found, _ = self.local_map.search_in_frustum(f)
        self.assertEqual(num_found, 0)

        # the window rebuilt around the frame
        kf_ref, keyframes, points = self.local_map.update(f)
        self.assertIn(kf_ref, (self.kf1, self.kf2))
        self.assertIs(f.kf_ref, kf_ref)
        self.assertEqual(len(keyframes), 2)
        self.assertEqual(len(points), self.scene.num_points())

    def test_removed_points_leave_the_window(self):
        self.map.remove_point(self.points[0])
        _, _, points = self.local_map.update_from_keyframe(self.kf1)
        self.assertEqual(len(points), self.scene.num_points() - 1)
        self.assertNotIn(self.points[0], points)

    def test_reset(self):
        self.local_map.update_from_keyframe(self.kf1)
        self.assertFalse(self.local_map.is_empty())
        self.local_map.reset()
        self.assertTrue(self.local_map.is_empty())
        self.assertIsNone(self.local_map.get_reference_keyframe())
        self.assertEqual(self.local_map.num_points(), 0)


if __name__ == "__main__":
    unittest.main()
