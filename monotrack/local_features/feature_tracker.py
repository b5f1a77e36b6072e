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

import math
import numpy as np
import cv2

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer
from monotrack.utilities.descriptor_distances import hamming_distance, hamming_distances

from .feature_matcher import BfFeatureMatcher


# ORB detector/descriptor with the scale pyramid information used by the tracking (octave sigmas, scale factors).
# The number of extracted features can be doubled at initialization time (see set_double_num_features()).
class OrbFeatureTracker:
    def __init__(
        self,
        num_features=Parameters.kNumFeatures,
        num_levels=Parameters.kNumLevels,
        scale_factor=Parameters.kScaleFactor,
        match_ratio_test=Parameters.kInitializerFeatureMatchRatioTest,
    ):
        self.normal_num_features = num_features
        self._num_features = num_features
        self.num_levels = num_levels
        self.scale_factor = scale_factor
        self.norm_type = cv2.NORM_HAMMING
        self.max_descriptor_distance = Parameters.kMaxDescriptorDistance
        self.oriented_features = True

        self.scale_factors = np.array([scale_factor**i for i in range(num_levels)], dtype=np.float64)
        self.inv_scale_factors = 1.0 / self.scale_factors
        sigma0_2 = Parameters.kSigmaLevel0 * Parameters.kSigmaLevel0
        self.level_sigmas2 = sigma0_2 * self.scale_factors * self.scale_factors
        self.inv_level_sigmas2 = 1.0 / self.level_sigmas2
        self.log_scale_factor = math.log(scale_factor)

        self.descriptor_distance = hamming_distance
        self.descriptor_distances = hamming_distances

        self.matcher = BfFeatureMatcher(norm_type=self.norm_type, ratio_test=match_ratio_test)
        self.detector = self._create_detector(self._num_features)
        Printer.green(
            f"feature tracker: ORB - num_features: {num_features}, num_levels: {num_levels}, scale_factor: {scale_factor}"
        )

    def _create_detector(self, num_features):
        return cv2.ORB_create(
            nfeatures=int(num_features), scaleFactor=self.scale_factor, nlevels=self.num_levels
        )

    @property
    def num_features(self):
        return self._num_features

    def set_double_num_features(self):
        num_features = Parameters.kInitializerFeatureMultiplier * self.normal_num_features
        if self._num_features != num_features:
            self._num_features = num_features
            self.detector = self._create_detector(num_features)

    def set_normal_num_features(self):
        if self._num_features != self.normal_num_features:
            self._num_features = self.normal_num_features
            self.detector = self._create_detector(self.normal_num_features)

    # out: keypoints (list of cv2.KeyPoint) and descriptors ([NxD] uint8)
    def detectAndCompute(self, img, mask=None):
        if img.ndim > 2:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        kps, des = self.detector.detectAndCompute(img, mask)
        if des is None:
            des = np.empty((0, 32), dtype=np.uint8)
        return kps, des

    # predicted octave of a point seen at distance 'dist' given its max visibility distance
    def predict_scale_level(self, max_distance, dist):
        ratio = max_distance / max(dist, 1e-9)
        level = int(math.ceil(math.log(ratio) / self.log_scale_factor))
        return min(max(level, 0), self.num_levels - 1)
