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
from monotrack.slam import Tracking


class FakeCamera:
    fps = 10


class FakeMap:
    def __init__(self, num_keyframes=5):
        self._num_keyframes = num_keyframes

    def num_keyframes(self):
        return self._num_keyframes


class FakeLocalMapping:
    def __init__(self, idle=False, queue_size=0):
        self.idle = idle
        self._queue_size = queue_size

    def is_idle(self):
        return self.idle

    def queue_size(self):
        return self._queue_size


class FakeSlam:
    def __init__(self):
        self.camera = FakeCamera()
        self.map = FakeMap()
        self.local_mapping = FakeLocalMapping()
        self.loop_closing = None


class FakeKeyFrame:
    def __init__(self, id, num_tracked_points=100):
        self.id = id
        self._num_tracked_points = num_tracked_points

    def num_tracked_points(self, minObs=1):
        return self._num_tracked_points


class FakeFrame:
    def __init__(self, id, num_inliers):
        self.id = id
        self._num_inliers = num_inliers

    def num_matched_inlier_map_points(self):
        return self._num_inliers


class TestKeyFramePolicy(TestCase):

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.saved_max_frames = Parameters.kMaxFramesBetweenKfs
        self.saved_min_frames = Parameters.kMinFramesBetweenKfs
        Parameters.kMaxFramesBetweenKfs = None  # use the camera fps
        Parameters.kMinFramesBetweenKfs = 0
        self.slam = FakeSlam()
        self.tracking = Tracking(self.slam)
        self.tracking.kf_last = FakeKeyFrame(id=100)
        self.tracking.kf_ref = self.tracking.kf_last

    def tearDown(self):
        Parameters.kMaxFramesBetweenKfs = self.saved_max_frames
        Parameters.kMinFramesBetweenKfs = self.saved_min_frames

    def test_max_frames_from_camera_fps(self):
        self.assertEqual(self.tracking.max_frames_between_kfs, FakeCamera.fps)

    def test_periodic_insertion_at_max_frames(self):
        # busy local mapping with an empty queue and a tracking quality that does not require a keyframe
        max_frames = self.tracking.max_frames_between_kfs
        decisions = [
            self.tracking.need_new_keyframe(FakeFrame(id=self.tracking.kf_last.id + i, num_inliers=95))
            for i in range(1, max_frames + 1)
        ]
        self.assertEqual(sum(decisions), 1)
        self.assertTrue(decisions[-1])

    def test_tracking_quality_drop(self):
        # the ratio condition holds: a keyframe is needed before the periodic insertion
        self.slam.local_mapping.idle = True
        f_cur = FakeFrame(id=self.tracking.kf_last.id + 1, num_inliers=50)
        self.assertTrue(self.tracking.need_new_keyframe(f_cur))

    def test_too_few_tracked_points(self):
        # the ratio condition requires a minimum number of tracked points
        self.slam.local_mapping.idle = True
        f_cur = FakeFrame(id=self.tracking.kf_last.id + 1, num_inliers=Parameters.kNumMinPointsForNewKf)
        self.assertFalse(self.tracking.need_new_keyframe(f_cur))

    def test_periodic_insertion_requires_tracked_points(self):
        self.slam.local_mapping.idle = True
        f_cur = FakeFrame(
            id=self.tracking.kf_last.id + self.tracking.max_frames_between_kfs,
            num_inliers=Parameters.kNumMinPointsForNewKf,
        )
        self.assertFalse(self.tracking.need_new_keyframe(f_cur))
        f_cur = FakeFrame(
            id=self.tracking.kf_last.id + self.tracking.max_frames_between_kfs,
            num_inliers=Parameters.kNumMinPointsForNewKf + 1,
        )
        self.assertTrue(self.tracking.need_new_keyframe(f_cur))

    def test_backpressure(self):
        f_cur = FakeFrame(id=self.tracking.kf_last.id + self.tracking.max_frames_between_kfs, num_inliers=95)
        self.slam.local_mapping._queue_size = Parameters.kLocalMappingMaxQueueSize
        self.assertFalse(self.tracking.need_new_keyframe(f_cur))
        self.slam.local_mapping._queue_size = Parameters.kLocalMappingMaxQueueSize - 1
        self.assertTrue(self.tracking.need_new_keyframe(f_cur))

    def test_idle_local_mapping_accepts_keyframes(self):
        f_cur = FakeFrame(id=self.tracking.kf_last.id + self.tracking.max_frames_between_kfs, num_inliers=95)
        self.slam.local_mapping.idle = True
        self.slam.local_mapping._queue_size = Parameters.kLocalMappingMaxQueueSize
        self.assertTrue(self.tracking.need_new_keyframe(f_cur))

    def test_no_keyframes_right_after_relocalization(self):
        max_frames = self.tracking.max_frames_between_kfs
        self.slam.map._num_keyframes = max_frames + 1
        self.tracking.last_reloc_frame_id = self.tracking.kf_last.id + 5
        f_cur = FakeFrame(id=self.tracking.kf_last.id + max_frames, num_inliers=95)
        self.assertFalse(self.tracking.need_new_keyframe(f_cur))
        f_cur = FakeFrame(id=self.tracking.last_reloc_frame_id + max_frames, num_inliers=95)
        self.assertTrue(self.tracking.need_new_keyframe(f_cur))


if __name__ == "__main__":
    unittest.main()
