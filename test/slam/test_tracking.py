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
from unittest import mock

import numpy as np

from monotrack.config_parameters import Parameters
from monotrack.slam import Slam, TrackingState

from synthetic_scene import (
    SyntheticPlanarScene,
    make_camera,
    set_feature_tracker,
    set_single_thread_parameters,
    restore_parameters,
    translated_pose,
    empty_frame,
)


class TestTrackingScenario(TestCase):
    baseline = np.array([-0.3, -0.02, 0.0])

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.saved_parameters = set_single_thread_parameters()
        self.camera = make_camera()
        self.slam = Slam(self.camera, feature_tracker=set_feature_tracker())
        self.scene = SyntheticPlanarScene(num_points=300, depth=4.0)
        self.timestamp = 0.0

    def tearDown(self):
        self.slam.quit()
        restore_parameters(self.saved_parameters)

    def next_timestamp(self):
        self.timestamp += 1.0 / 30
        return self.timestamp

    def view(self, Tcw):
        return self.scene.make_frame(self.camera, Tcw, timestamp=self.next_timestamp())

    def initialize(self):
        pose0 = self.slam.track_frame(self.view(np.eye(4)))
        self.assertIsNone(pose0)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.NOT_INITIALIZED)
        f1 = self.view(translated_pose(*self.baseline))
        pose1 = self.slam.track_frame(f1)
        self.assertIsNotNone(pose1)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
        return f1, pose1

    def test_initial_state(self):
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.NO_IMAGES_YET)

    def test_initialize_lose_and_relocalize(self):
        tracking = self.slam.tracking
        _, pose1 = self.initialize()

        # the map contains exactly the two initial keyframes and the triangulated points
        self.assertEqual(self.slam.map.num_keyframes(), 2)
        self.assertGreater(tracking.num_initial_map_points, 0)
        self.assertEqual(self.slam.map.num_points(), tracking.num_initial_map_points)
        self.assertEqual(self.slam.loop_closing.keyframe_database.size(), 2)
        self.assertFalse(self.slam.local_map.is_empty())

        # a frame without features cannot be tracked
        pose2 = self.slam.track_frame(empty_frame(self.camera, timestamp=self.next_timestamp()))
        self.assertIsNone(pose2)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.LOST)

        # the same view of the second keyframe is relocalized against the keyframe database
        f3 = self.view(translated_pose(*self.baseline))
        pose3 = self.slam.track_frame(f3)
        self.assertIsNotNone(pose3)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
        self.assertEqual(tracking.num_relocalizations, 1)
        self.assertEqual(tracking.last_reloc_frame_id, f3.id)
        np.testing.assert_allclose(pose3, pose1, atol=1e-3)
        self.assertIsNotNone(f3.kf_ref)

        # the relocalized frame is associated with map points
        self.assertGreaterEqual(f3.num_matched_points(), 50)
        for p in f3.get_points():
            if p is not None:
                self.assertFalse(p.is_bad())

        # no map points are created by tracking
        self.assertEqual(self.slam.map.num_points(), tracking.num_initial_map_points)

        # one trajectory entry for each frame processed after the initialization
        trajectory = self.slam.get_trajectory()
        self.assertEqual(len(trajectory), 3)
        np.testing.assert_allclose(trajectory[-1][1] @ pose3, np.eye(4), atol=1e-6)

    def test_tracking_consecutive_frames(self):
        self.initialize()
        # move along the baseline direction with a constant velocity
        for i in range(2, 6):
            pose = self.slam.track_frame(self.view(translated_pose(*(self.baseline * (1.0 + 0.05 * (i - 1))))))
            self.assertIsNotNone(pose)
            self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
        self.assertTrue(self.slam.tracking.motion_model.is_ok)
        self.assertEqual(self.slam.map.num_points(), self.slam.tracking.num_initial_map_points)

    def test_motion_model_failure_recovered_by_previous_frame(self):
        tracking = self.slam.tracking
        _, pose1 = self.initialize()
        scale = np.linalg.norm(pose1[:3, 3]) / np.linalg.norm(self.baseline)
        for k in (1.05, 1.10):
            self.assertIsNotNone(self.slam.track_frame(self.view(translated_pose(*(self.baseline * k)))))
        self.assertTrue(tracking.motion_model.is_ok)

        # a sudden vertical jump moves the projections out of the search radius of the motion model
        t = self.baseline * 1.15 + np.array([0.0, 0.3, 0.0])
        with mock.patch.object(
            tracking, "track_previous_frame_by_descriptors", wraps=tracking.track_previous_frame_by_descriptors
        ) as track_by_descriptors, mock.patch.object(
            tracking, "track_reference_keyframe", wraps=tracking.track_reference_keyframe
        ) as track_reference_keyframe:
            pose = self.slam.track_frame(self.view(translated_pose(*t)))
        self.assertIsNotNone(pose)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
        track_by_descriptors.assert_called_once()
        track_reference_keyframe.assert_not_called()
        self.assertEqual(tracking.num_relocalizations, 0)
        np.testing.assert_allclose(pose[:3, :3], np.eye(3), atol=1e-2)
        np.testing.assert_allclose(pose[:3, 3], scale * t, atol=2e-2)

    def test_forced_relocalisation(self):
        self.initialize()
        self.slam.force_relocalisation()
        self.assertTrue(self.slam.tracking.is_force_relocalisation_requested())

        f = self.view(translated_pose(*self.baseline))
        pose = self.slam.track_frame(f)
        self.assertIsNotNone(pose)
        self.assertEqual(self.slam.tracking.num_relocalizations, 1)
        self.assertEqual(self.slam.tracking.last_reloc_frame_id, f.id)
        # the flag is consumed by a single cycle
        self.assertFalse(self.slam.tracking.is_force_relocalisation_requested())

        pose = self.slam.track_frame(self.view(translated_pose(*self.baseline)))
        self.assertIsNotNone(pose)
        self.assertEqual(self.slam.tracking.num_relocalizations, 1)

    def test_reset(self):
        self.initialize()
        self.slam.request_reset()
        self.assertTrue(self.slam.is_reset_requested())

        # the reset is executed at the start of the next cycle
        f = self.view(np.eye(4))
        pose = self.slam.track_frame(f)
        self.assertIsNone(pose)
        self.assertFalse(self.slam.is_reset_requested())
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.NOT_INITIALIZED)
        self.assertEqual(self.slam.map.num_keyframes(), 0)
        self.assertEqual(self.slam.map.num_points(), 0)
        self.assertTrue(self.slam.local_map.is_empty())
        self.assertEqual(self.slam.loop_closing.keyframe_database.size(), 0)
        self.assertEqual(len(self.slam.tracking.tracking_history), 0)
        # the frame processed after the reset becomes the new initialization reference
        self.assertIs(self.slam.tracking.initializer.f_ref, f)

        # the map can be initialized again
        pose = self.slam.track_frame(self.view(translated_pose(*self.baseline)))
        self.assertIsNotNone(pose)
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
        self.assertEqual(self.slam.map.num_keyframes(), 2)

    def test_reset_before_images(self):
        self.slam.request_reset()
        self.slam.reset_if_requested()
        self.assertEqual(self.slam.get_tracking_state(), TrackingState.NO_IMAGES_YET)

    def test_wrong_image_size(self):
        with self.assertRaises(ValueError):
            self.slam.track(np.zeros((100, 100), dtype=np.uint8))


# The camera slides along a plane wider than its field of view: new scene points enter the image,
# keyframes are spawned and local mapping triangulates the new points.
class TestTrackingMapExpansion(TestCase):
    baseline = np.array([-0.3, -0.02, 0.0])
    step = -0.02  # [m] lateral motion per frame
    num_frames = 60

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.saved_parameters = set_single_thread_parameters()
        self.camera = make_camera()
        self.scene = SyntheticPlanarScene(num_points=300, depth=4.0, half_width=4.0)
        self.slam = None

    def tearDown(self):
        if self.slam is not None:
            self.slam.quit()
        restore_parameters(self.saved_parameters)

    def true_pose(self, i):
        if i == 0:
            return np.eye(4)
        t = self.baseline + np.array([self.step * (i - 1), 0.0, 0.0])
        return translated_pose(*t)

    def run_sequence(self):
        self.slam = Slam(self.camera, feature_tracker=set_feature_tracker())
        tracking = self.slam.tracking
        scale = None
        for i in range(self.num_frames):
            Tcw = self.true_pose(i)
            pose = self.slam.track_frame(self.scene.make_frame(self.camera, Tcw, timestamp=i / 30.0))
            if i == 0:
                self.assertIsNone(pose)
                continue
            self.assertIsNotNone(pose, f"frame {i} not tracked")
            self.assertEqual(self.slam.get_tracking_state(), TrackingState.WORKING)
            if scale is None:
                # the initialization fixes the scale of the map
                scale = np.linalg.norm(pose[:3, 3]) / np.linalg.norm(Tcw[:3, 3])
            np.testing.assert_allclose(pose[:3, :3], np.eye(3), atol=1e-2)
            np.testing.assert_allclose(pose[:3, 3], scale * Tcw[:3, 3], atol=2e-2)
        return tracking

    def test_keyframes_and_new_points(self):
        tracking = self.run_sequence()
        local_mapping = self.slam.local_mapping
        self.assertGreater(self.slam.map.num_keyframes(), 2)
        self.assertIs(tracking.kf_last, self.slam.map.get_last_keyframe())
        self.assertGreater(local_mapping.total_num_triangulated_points, 0)
        self.assertEqual(local_mapping.queue_size(), 0)
        # the keyframes are forwarded to the keyframe database
        self.assertEqual(self.slam.loop_closing.keyframe_database.size(), self.slam.map.num_keyframes())

    def test_keyframes_and_new_points_with_local_mapping_thread(self):
        Parameters.kLocalMappingOnSeparateThread = True
        self.run_sequence()
        local_mapping = self.slam.local_mapping
        self.assertTrue(local_mapping.wait_idle(timeout=5.0))
        self.assertEqual(local_mapping.queue_size(), 0)
        self.assertGreater(self.slam.map.num_keyframes(), 2)
        self.assertGreater(local_mapping.total_num_triangulated_points, 0)


if __name__ == "__main__":
    unittest.main()
