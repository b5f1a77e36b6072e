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

import numpy as np

from monotrack.slam import Slam, KeyFrame

from synthetic_scene import (
    SyntheticPlanarScene,
    make_camera,
    set_feature_tracker,
    set_single_thread_parameters,
    restore_parameters,
)


class TestLoopClosing(TestCase):

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.saved_parameters = set_single_thread_parameters()
        self.camera = make_camera()
        self.slam = Slam(self.camera, feature_tracker=set_feature_tracker())
        self.scene = SyntheticPlanarScene(num_points=200, depth=4.0)

    def tearDown(self):
        self.slam.quit()
        restore_parameters(self.saved_parameters)

    def make_keyframe(self):
        return KeyFrame(self.scene.make_frame(self.camera, np.eye(4)))

    def test_keyframes_are_stored_synchronously(self):
        loop_closing = self.slam.loop_closing
        kf = self.make_keyframe()
        loop_closing.add_keyframe(kf)
        self.assertEqual(loop_closing.queue_size(), 0)
        self.assertTrue(loop_closing.keyframe_database.contains(kf))
        loop_closing.remove_keyframe(kf)
        self.assertFalse(loop_closing.keyframe_database.contains(kf))

    def test_keyframes_are_stored_by_the_worker_thread(self):
        loop_closing = self.slam.loop_closing
        loop_closing.start()
        kfs = [self.make_keyframe() for _ in range(3)]
        for kf in kfs:
            loop_closing.add_keyframe(kf)
        start_time = time.time()
        while loop_closing.keyframe_database.size() < len(kfs) and time.time() - start_time < 5.0:
            time.sleep(0.01)
        self.assertEqual(loop_closing.keyframe_database.size(), len(kfs))

        # the reset blocks until the worker has emptied the database
        loop_closing.request_reset()
        self.assertEqual(loop_closing.keyframe_database.size(), 0)
        loop_closing.quit()
        self.assertFalse(loop_closing.is_running)

    def test_map_correction_forces_relocalisation(self):
        self.assertFalse(self.slam.tracking.is_force_relocalisation_requested())
        self.slam.loop_closing.notify_map_corrected()
        self.assertEqual(self.slam.loop_closing.num_map_corrections, 1)
        self.assertTrue(self.slam.tracking.is_force_relocalisation_requested())
        self.assertTrue(self.slam.tracking.consume_force_relocalisation())
        self.assertFalse(self.slam.tracking.consume_force_relocalisation())


if __name__ == "__main__":
    unittest.main()
