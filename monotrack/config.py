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

import os
import yaml
import numpy as np
import ujson as json

from monotrack.utilities.logging import Printer
from monotrack.config_parameters import Parameters, set_from_dict


kScriptPath = os.path.realpath(__file__)
kScriptFolder = os.path.dirname(kScriptPath)
kRootFolder = os.path.join(kScriptFolder, "..")  # root folder of the repository
kDefaultSettingsPath = os.path.join(kRootFolder, "settings", "default_camera.yaml")

kRequiredCameraKeys = ["Camera.fx", "Camera.fy", "Camera.cx", "Camera.cy", "Camera.width", "Camera.height"]


# Class for reading camera and system settings from a yaml file.
# Input:
#   settings_path: path to the yaml file where camera intrinsics, distortion, fps, color order
#                  and (optionally) global parameter overrides are stored
class Config:
    def __init__(self, settings_path=kDefaultSettingsPath, root_folder=kRootFolder):
        self.root_folder = root_folder
        if not os.path.isabs(settings_path):
            settings_path = os.path.join(self.root_folder, settings_path)
        self.settings_path = settings_path
        with open(self.settings_path, "r") as stream:
            self.cam_settings = yaml.load(stream, Loader=yaml.FullLoader)
        if not isinstance(self.cam_settings, dict):
            raise ValueError(f"[Config] malformed settings file: {self.settings_path}")
        for key in kRequiredCameraKeys:
            if key not in self.cam_settings:
                raise KeyError(f"[Config] missing key {key} in {self.settings_path}")
        self.global_parameters = None
        self.get_and_set_global_parameters()

    @staticmethod
    def from_dict(cam_settings):
        config = Config.__new__(Config)
        config.root_folder = kRootFolder
        config.settings_path = None
        config.cam_settings = dict(cam_settings)
        for key in kRequiredCameraKeys:
            if key not in config.cam_settings:
                raise KeyError(f"[Config] missing key {key}")
        config.global_parameters = None
        config.get_and_set_global_parameters()
        return config

    def get_and_set_global_parameters(self):
        # for changing the global parameters default values from the settings file
        self.global_parameters = self.cam_settings.get("GLOBAL_PARAMETERS", None)
        if self.global_parameters is not None:
            Printer.orange("[Config] Setting global parameters: ", self.global_parameters)
            set_from_dict(Parameters, self.global_parameters)

    # calibration matrix
    @property
    def K(self):
        if not hasattr(self, "_K"):
            fx = self.cam_settings["Camera.fx"]
            cx = self.cam_settings["Camera.cx"]
            fy = self.cam_settings["Camera.fy"]
            cy = self.cam_settings["Camera.cy"]
            self._K = np.array([[fx, 0, cx], [0, fy, cy], [0, 0, 1]], dtype=np.float64)
        return self._K

    # inverse of calibration matrix
    @property
    def Kinv(self):
        if not hasattr(self, "_Kinv"):
            fx = self.cam_settings["Camera.fx"]
            cx = self.cam_settings["Camera.cx"]
            fy = self.cam_settings["Camera.fy"]
            cy = self.cam_settings["Camera.cy"]
            self._Kinv = np.array(
                [[1 / fx, 0, -cx / fx], [0, 1 / fy, -cy / fy], [0, 0, 1]], dtype=np.float64
            )
        return self._Kinv

    # distortion coefficients
    @property
    def DistCoef(self):
        if not hasattr(self, "_DistCoef"):
            k1 = self.cam_settings.get("Camera.k1", 0)
            k2 = self.cam_settings.get("Camera.k2", 0)
            p1 = self.cam_settings.get("Camera.p1", 0)
            p2 = self.cam_settings.get("Camera.p2", 0)
            k3 = self.cam_settings.get("Camera.k3", 0)
            self._DistCoef = np.array([k1, k2, p1, p2, k3], dtype=np.float64)
        return self._DistCoef

    # camera width
    @property
    def width(self):
        return int(self.cam_settings["Camera.width"])

    # camera height
    @property
    def height(self):
        return int(self.cam_settings["Camera.height"])

    # camera fps
    @property
    def fps(self):
        return self.cam_settings.get("Camera.fps", 30)

    # color order of the input images: 1 RGB, 0 BGR (ignored if images are grayscale)
    @property
    def is_rgb(self):
        return bool(self.cam_settings.get("Camera.RGB", 1))

    @property
    def num_features_to_extract(self):
        return int(self.cam_settings.get("ORBextractor.nFeatures", Parameters.kNumFeatures))

    @property
    def scale_factor(self):
        return float(self.cam_settings.get("ORBextractor.scaleFactor", Parameters.kScaleFactor))

    @property
    def num_levels(self):
        return int(self.cam_settings.get("ORBextractor.nLevels", Parameters.kNumLevels))

    def to_json(self):
        return json.dumps(self.cam_settings)
