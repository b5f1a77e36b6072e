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

import time
import unittest
from unittest import TestCase
from threading import Thread, Event

import numpy as np

from monotrack.config_parameters import Parameters
from monotrack.slam import (
    Frame,
    KeyFrame,
    Map,
    MapInvariantError,
    ProjectionMatcher,
    kNoPoint,
)

from synthetic_scene import SyntheticPlanarScene, make_camera, set_feature_tracker, translated_pose


class TestMap(TestCase):

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        set_feature_tracker()
        self.camera = make_camera()
        self.scene = SyntheticPlanarScene(num_points=200, depth=4.0)
        self.map = Map()

    # two keyframes observing all the scene points
    def build_map(self):
        f1 = self.scene.make_frame(self.camera, np.eye(4))
        f2 = self.scene.make_frame(self.camera, translated_pose(-0.3))
        f1.update_pose(np.eye(4))
        f2.update_pose(translated_pose(-0.3))
        kf1 = KeyFrame(f1)
        kf2 = KeyFrame(f2)
        self.map.add_frame(kf1)
        self.map.add_frame(kf2)
        self.map.add_keyframe(kf1)
        self.map.add_keyframe(kf2)
        idxs = np.arange(self.scene.num_points())
        num_added, _, points = self.map.add_points(self.scene.points_w, None, kf1, kf2, idxs, idxs, do_check=True)
        self.assertEqual(num_added, self.scene.num_points())
        return kf1, kf2, points

    def test_add_points_registers_observations(self):
        kf1, kf2, points = self.build_map()
        self.assertEqual(self.map.num_points(), len(points))
        for i, p in enumerate(points):
            self.assertEqual(p.num_observations(), 2)
            self.assertEqual(kf1.point_ids[i], p.id)
            self.assertEqual(kf2.point_ids[i], p.id)
            self.assertIs(self.map.get_point(p.id), p)

    def test_remove_point_clears_associations(self):
        kf1, kf2, points = self.build_map()
        f = self.scene.make_frame(self.camera, translated_pose(-0.1))
        self.map.add_frame(f)
        p = points[0]
        self.assertTrue(self.map.associate(f, 0, p))
        self.map.remove_point(p)
        self.assertTrue(p.is_bad())
        self.assertIsNone(self.map.get_point(p.id))
        self.assertEqual(kf1.point_ids[0], kNoPoint)
        self.assertEqual(kf2.point_ids[0], kNoPoint)
        self.assertEqual(f.point_ids[0], kNoPoint)
        self.assertEqual(p.num_observations(), 0)
        # a removed point cannot be associated anymore
        self.assertFalse(self.map.associate(f, 0, p))

    def test_associate_requires_frame_in_map(self):
        _, _, points = self.build_map()
        f = self.scene.make_frame(self.camera, np.eye(4))
        with self.assertRaises(MapInvariantError):
            self.map.associate(f, 0, points[0])

    def test_point_matched_once_per_frame(self):
        _, _, points = self.build_map()
        f = self.scene.make_frame(self.camera, np.eye(4))
        self.map.add_frame(f)
        self.assertTrue(self.map.associate(f, 0, points[0]))
        self.assertFalse(self.map.associate(f, 1, points[0]))
        self.assertEqual(f.point_ids[1], kNoPoint)

    def test_dangling_association_is_detected(self):
        _, _, points = self.build_map()
        f = self.scene.make_frame(self.camera, np.eye(4))
        self.map.add_frame(f)
        f.point_ids[0] = 123456  # corrupt the frame
        with self.assertRaises(MapInvariantError):
            f.get_points()

    def test_keyframe_dissociation_removes_weak_points(self):
        kf1, kf2, points = self.build_map()
        p = points[3]
        self.map.dissociate(kf2, 3)
        # a point with less than 3 observations cannot survive the loss of an observation
        self.assertTrue(p.is_bad())
        self.assertEqual(kf1.point_ids[3], kNoPoint)

    def test_frame_window(self):
        for _ in range(Parameters.kMaxLenFrameDeque + 5):
            self.map.add_frame(Frame(self.camera))
        self.assertEqual(self.map.num_frames(), Parameters.kMaxLenFrameDeque)

    def test_reset(self):
        kf1, _, points = self.build_map()
        self.map.reset()
        self.assertEqual(self.map.num_points(), 0)
        self.assertEqual(self.map.num_keyframes(), 0)
        self.assertEqual(self.map.num_frames(), 0)
        self.assertTrue(all(p.is_bad() for p in points))
        self.assertTrue(np.all(kf1.point_ids == kNoPoint))

    def test_concurrent_point_removal_and_search(self):
        kf1, kf2, points = self.build_map()
        f = self.scene.make_frame(self.camera, translated_pose(-0.15))
        f.update_pose(translated_pose(-0.15))
        self.map.add_frame(f)

        errors = []
        done = Event()

        def remove_points():
            try:
                for p in points[::2]:
                    self.map.remove_point(p)
                    time.sleep(0.0005)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        remover = Thread(target=remove_points)
        remover.start()
        num_searches = 0
        try:
            while not done.is_set() or num_searches < 3:
                f.reset_points()
                ProjectionMatcher.search_map_by_projection(
                    points,
                    f,
                    max_reproj_distance=Parameters.kMaxReprojectionDistanceMap,
                    max_descriptor_distance=Parameters.kMaxDescriptorDistance,
                )
                # all the associations must resolve to live points
                with self.map.lock:
                    for p in f.get_points():
                        if p is not None:
                            self.assertTrue(self.map.contains_point(p))
                num_searches += 1
        except MapInvariantError as e:
            errors.append(e)
        remover.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.map.num_points(), len(points) - len(points[::2]))
        for frame in (f, kf1, kf2):
            for point_id in frame.point_ids[frame.point_ids != kNoPoint]:
                self.assertIsNotNone(self.map.get_point(int(point_id)))
        # the surviving points are still found by the search
        f.reset_points()
        num_found, _ = ProjectionMatcher.search_map_by_projection(
            [p for p in points if not p.is_bad()], f, max_reproj_distance=Parameters.kMaxReprojectionDistanceMap
        )
        self.assertEqual(num_found, len(points) - len(points[::2]))


if __name__ == "__main__":
    unittest.main()
