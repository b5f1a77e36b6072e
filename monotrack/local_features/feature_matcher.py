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

import numpy as np
import cv2
from enum import Enum

from monotrack.utilities.logging import Printer
from monotrack.config_parameters import Parameters


kDefaultRatioTest = Parameters.kInitializerFeatureMatchRatioTest


class FeatureMatcherTypes(Enum):
    NONE = 0
    BF = 1  # brute force


class MatcherUtils:
    # input:
    #   matches: list of lists of cv2.DMatch (expected k=2 for knn search)
    # output:
    #   idxs1, idxs2  (vectors of corresponding indexes in des1 and des2, respectively)
    # N.B.: this returns matches where each trainIdx index is associated to only one queryIdx index
    @staticmethod
    def good_matches_one_to_one(matches, ratio_test=0.7, max_distance=None):
        idxs1, idxs2 = [], []
        if matches is None:
            return np.array(idxs1, dtype=np.int32), np.array(idxs2, dtype=np.int32)
        dist_match = {}
        index_match = {}
        for pair in matches:
            if len(pair) == 0:
                continue
            m = pair[0]
            if len(pair) > 1 and m.distance > ratio_test * pair[1].distance:
                continue
            if max_distance is not None and m.distance > max_distance:
                continue
            dist = dist_match.get(m.trainIdx, None)
            if dist is None:
                # trainIdx has not been matched yet
                dist_match[m.trainIdx] = m.distance
                idxs1.append(m.queryIdx)
                idxs2.append(m.trainIdx)
                index_match[m.trainIdx] = len(idxs2) - 1
            elif m.distance < dist:
                # we have already a match for trainIdx: the stored match is worse => replace it
                index = index_match[m.trainIdx]
                idxs1[index] = m.queryIdx
                dist_match[m.trainIdx] = m.distance
        return np.array(idxs1, dtype=np.int32), np.array(idxs2, dtype=np.int32)


class FeatureMatchingResult:
    def __init__(self):
        self.des1 = None  # all query descriptors (numpy array NxD)
        self.des2 = None  # all train descriptors (numpy array MxD)
        self.idxs1 = None  # indices of matches in des1 (numpy array of indexes)
        self.idxs2 = None  # indices of matches in des2 (numpy array of indexes)


# base class
class FeatureMatcher:
    def __init__(
        self,
        norm_type=cv2.NORM_HAMMING,
        cross_check=False,
        ratio_test=kDefaultRatioTest,
        matcher_type=FeatureMatcherTypes.BF,
    ):
        self.matcher_type = matcher_type
        self.norm_type = norm_type
        self.cross_check = cross_check  # apply cross check
        self.ratio_test = ratio_test
        self.matcher = None
        self.matcher_name = ""

    # input: des1 = queryDescriptors, des2= trainDescriptors
    # output: FeatureMatchingResult with idxs1, idxs2 (vectors of corresponding indexes in des1 and des2, respectively)
    def match(self, des1, des2, ratio_test=None, max_distance=None):
        result = FeatureMatchingResult()
        result.des1 = des1
        result.des2 = des2
        if des1 is None or des2 is None or len(des1) == 0 or len(des2) == 0:
            result.idxs1 = np.array([], dtype=np.int32)
            result.idxs2 = np.array([], dtype=np.int32)
            return result
        if ratio_test is None:
            ratio_test = self.ratio_test
        k = 1 if self.cross_check else 2
        matches = self.matcher.knnMatch(
            np.ascontiguousarray(des1), np.ascontiguousarray(des2), k=min(k, len(des2))
        )
        result.idxs1, result.idxs2 = MatcherUtils.good_matches_one_to_one(
            matches, ratio_test, max_distance
        )
        return result


# Brute-force matcher
class BfFeatureMatcher(FeatureMatcher):
    def __init__(self, norm_type=cv2.NORM_HAMMING, cross_check=False, ratio_test=kDefaultRatioTest):
        super().__init__(
            norm_type=norm_type,
            cross_check=cross_check,
            ratio_test=ratio_test,
            matcher_type=FeatureMatcherTypes.BF,
        )
        self.matcher = cv2.BFMatcher(norm_type, cross_check)
        self.matcher_name = "BfFeatureMatcher"
        Printer.green(
            f"matcher: {self.matcher_name} - norm_type: {norm_type}, cross_check: {cross_check}, ratio_test: {ratio_test}"
        )
