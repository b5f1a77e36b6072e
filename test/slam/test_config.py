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

from monotrack.config import Config
from monotrack.config_parameters import Parameters, to_dict
from monotrack.slam import PinholeCamera

from synthetic_scene import kCameraSettings


class TestConfig(TestCase):

    def setUp(self):
        print("\n=================================================================")
        self.saved_num_features = Parameters.kNumFeatures

    def tearDown(self):
        Parameters.kNumFeatures = self.saved_num_features

    def test_default_settings(self):
        config = Config()
        self.assertEqual(config.width, 640)
        self.assertEqual(config.height, 480)
        self.assertEqual(config.fps, 30)
        self.assertEqual(config.K.shape, (3, 3))
        np.testing.assert_allclose(config.K @ config.Kinv, np.eye(3), atol=1e-12)
        self.assertEqual(config.num_features_to_extract, 1000)

        camera = PinholeCamera(config)
        self.assertTrue(camera.is_distorted)
        uvs = np.array([[10.0, 10.0], [600.0, 400.0]])
        self.assertGreater(np.linalg.norm(camera.undistort_points(uvs) - uvs), 1.0)

    def test_from_dict(self):
        config = Config.from_dict(kCameraSettings)
        camera = PinholeCamera(config)
        self.assertFalse(camera.is_distorted)
        self.assertEqual(camera.fx, kCameraSettings["Camera.fx"])
        self.assertEqual((camera.u_min, camera.u_max), (0, kCameraSettings["Camera.width"]))
        uvs = np.array([[10.0, 10.0], [600.0, 400.0]])
        np.testing.assert_array_equal(camera.undistort_points(uvs), uvs)

    def test_kitti_settings(self):
        config = Config("settings/kitti00-02.yaml")
        self.assertEqual((config.width, config.height), (1241, 376))
        self.assertEqual(config.num_features_to_extract, 2000)
        camera = PinholeCamera(config)
        self.assertFalse(camera.is_distorted)
        self.assertTrue(camera.is_rgb)
        camera2 = PinholeCamera.from_json(camera.to_json())
        np.testing.assert_allclose(camera2.K, camera.K)
        self.assertEqual(camera2.fps, 10)

    def test_missing_camera_key(self):
        settings = dict(kCameraSettings)
        del settings["Camera.fx"]
        with self.assertRaises(KeyError):
            Config.from_dict(settings)

    def test_global_parameters(self):
        settings = dict(kCameraSettings)
        settings["GLOBAL_PARAMETERS"] = {"kNumFeatures": 123}
        Config.from_dict(settings)
        self.assertEqual(Parameters.kNumFeatures, 123)
        self.assertEqual(to_dict(Parameters)["kNumFeatures"], 123)


if __name__ == "__main__":
    unittest.main()
