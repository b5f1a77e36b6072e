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
from threading import Lock

from monotrack.config_parameters import Parameters

from .feature_tracker_shared import FeatureTrackerShared

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .keyframe import KeyFrame
    from .frame import Frame


def normalize_vector(v):
    norm = np.linalg.norm(v)
    if norm < 1.0e-10:
        return v, norm
    return v / norm, norm


# A MapPoint is a 3-D point in the world observed by multiple keyframes (observations) and
# matched in multiple frames (frame views). Its id is assigned by Map.add_point() and is the
# value stored in the frames' point_ids arrays.
# NOTE: the observations and the frame views are changed only by the Map under its lock
# (see Map.add_observation(), Map.associate(), Map.remove_point()).
# LOCK ORDERING RULE (to prevent deadlocks), always acquire locks in this order:
# 1. map lock (if needed)
# 2. _lock_features
# 3. _lock_pos
class MapPoint(object):
    def __init__(self, position, color=None, keyframe=None, idxf=None, id=None):
        self.id = id if id is not None else -1

        self._lock_pos = Lock()
        self._lock_features = Lock()

        self._pt = np.ascontiguousarray(position, dtype=np.float64).reshape(3)  # position in the world frame
        self.color = color if color is not None else np.array([255, 0, 0], dtype=np.float32)

        self._observations = dict()  # keyframe observations: for kf, kidx in self._observations.items(): kf.point_ids[kidx] = self.id
        self._frame_views = dict()  # frame observations: for f, idx in self._frame_views.items(): f.point_ids[idx] = self.id

        self._is_bad = False
        self._num_observations = 0  # number of keyframe observations
        self.num_times_visible = 1  # number of times the point is visible in the camera
        self.num_times_found = 1  # number of times the point was actually matched and not rejected as outlier by the pose optimization
        self.last_frame_id_seen = -1  # last frame id in which this point was seen

        self.des = None  # best descriptor (continuously updated)
        self._min_distance, self._max_distance = 0, float("inf")  # depth infos
        self.normal = np.array([0.0, 0.0, 1.0])  # just a default 3D vector

        self.kf_ref = keyframe
        self.first_kid = -1  # first observation keyframe id

        if keyframe is not None:
            if keyframe.is_keyframe:
                self.first_kid = keyframe.kid
            # update normal and depth infos
            po = self._pt - self.kf_ref.Ow()
            self.normal, dist = normalize_vector(po)
            if idxf is not None:
                self.des = keyframe.des[idxf].copy()
                level = keyframe.octaves[idxf]
            else:
                level = 0
            feature_tracker = FeatureTrackerShared.feature_tracker
            self._max_distance = dist * feature_tracker.scale_factors[level]
            self._min_distance = self._max_distance / feature_tracker.scale_factors[feature_tracker.num_levels - 1]

        self.num_observations_on_last_update_des = 1  # must be 1!
        self.num_observations_on_last_update_normals = 1  # must be 1!

    def __hash__(self):
        return self.id

    def __eq__(self, rhs):
        return isinstance(rhs, MapPoint) and self.id == rhs.id

    def __lt__(self, rhs):
        return self.id < rhs.id

    def __str__(self):
        obs = sorted([(kf.kid, kidx) for kf, kidx in self.observations()], key=lambda x: x[0])
        return f"MapPoint {self.id} {{ observations: {obs} }}"

    # ===============================
    # observations
    def observations(self):
        with self._lock_features:
            return list(self._observations.items())

    def keyframes(self):
        with self._lock_features:
            return list(self._observations.keys())

    def is_in_keyframe(self, keyframe: "KeyFrame"):
        with self._lock_features:
            return keyframe in self._observations

    def get_observation_idx(self, keyframe: "KeyFrame"):
        with self._lock_features:
            return self._observations.get(keyframe, -1)

    def add_observation(self, keyframe: "KeyFrame", idx):
        with self._lock_features:
            if self._is_bad or keyframe in self._observations:
                return False
            self._observations[keyframe] = idx
            self._num_observations += 1
            if self.kf_ref is None:
                self.kf_ref = keyframe
            return True

    # out: True if the point has now too few observations to be kept
    def remove_observation(self, keyframe: "KeyFrame"):
        with self._lock_features:
            if keyframe not in self._observations:
                return False
            del self._observations[keyframe]
            self._num_observations = max(0, self._num_observations - 1)
            if self.kf_ref is keyframe and self._observations:
                self.kf_ref = next(iter(self._observations.keys()))
            return self._num_observations <= 2

    # ===============================
    # frame views
    def frame_views(self):
        with self._lock_features:
            return list(self._frame_views.items())

    def frames(self):
        with self._lock_features:
            return list(self._frame_views.keys())

    def is_in_frame(self, frame):
        with self._lock_features:
            return frame in self._frame_views

    # do not allow a point to be matched to different keypoints of the same frame
    def add_frame_view(self, frame, idx):
        with self._lock_features:
            if self._is_bad or frame in self._frame_views:
                return False
            self._frame_views[frame] = idx
            return True

    def remove_frame_view(self, frame: "Frame"):
        with self._lock_features:
            return self._frame_views.pop(frame, None) is not None

    # ===============================
    # status
    def is_bad(self):
        with self._lock_features:
            return self._is_bad

    # flag the point as bad and detach all its observations and frame views
    # out: the detached (keyframe, idx) observations and (frame, idx) views
    # NOTE: called by Map.remove_point() under the map lock
    def set_bad(self):
        with self._lock_features:
            with self._lock_pos:
                self._is_bad = True
                self._num_observations = 0
                observations = list(self._observations.items())
                frame_views = list(self._frame_views.items())
                self._observations.clear()
                self._frame_views.clear()
        return observations, frame_views

    def num_observations(self):
        with self._lock_features:
            return self._num_observations

    def is_good_with_min_obs(self, minObs):
        with self._lock_features:
            return (not self._is_bad) and (self._num_observations >= minObs)

    def increase_visible(self, num_times=1):
        with self._lock_features:
            self.num_times_visible += num_times

    def increase_found(self, num_times=1):
        with self._lock_features:
            self.num_times_found += num_times

    def get_found_ratio(self):
        with self._lock_features:
            return self.num_times_found / self.num_times_visible

    def get_reference_keyframe(self):
        with self._lock_features:
            return self.kf_ref

    # ===============================
    # position
    def pt(self):
        with self._lock_pos:
            return self._pt.copy()

    def homogeneous(self):
        with self._lock_pos:
            return np.concatenate([self._pt, np.array([1.0])], axis=0)

    def update_position(self, position):
        with self._lock_pos:
            self._pt = np.ascontiguousarray(position, dtype=np.float64).reshape(3)

    def min_distance(self):
        with self._lock_pos:
            return Parameters.kMinDistanceToleranceFactor * self._min_distance

    def max_distance(self):
        with self._lock_pos:
            return Parameters.kMaxDistanceToleranceFactor * self._max_distance

    def get_all_pos_info(self):
        with self._lock_pos:
            return (
                self._pt.copy(),
                self.normal.copy(),
                Parameters.kMinDistanceToleranceFactor * self._min_distance,
                Parameters.kMaxDistanceToleranceFactor * self._max_distance,
            )

    def get_normal(self):
        with self._lock_pos:
            return self.normal.copy()

    def get_descriptor(self):
        with self._lock_features:
            return self.des

    # distance between input descriptor and map point representative descriptor
    def min_des_distance(self, descriptor):
        with self._lock_features:
            des = self.des
        return FeatureTrackerShared.descriptor_distance(des, descriptor)

    # update normal and depth representations
    def update_normal_and_depth(self, force=False):
        with self._lock_features:
            with self._lock_pos:
                if self._is_bad or not self._observations:
                    return
                if not (self._num_observations > self.num_observations_on_last_update_normals or force):
                    return
                self.num_observations_on_last_update_normals = self._num_observations
                observations = list(self._observations.items())
                kf_ref = self.kf_ref if self.kf_ref in self._observations else observations[0][0]
                idx_ref = self._observations[kf_ref]
                position = self._pt.copy()

        normals = np.array([normalize_vector(position - kf.Ow())[0] for kf, idx in observations]).reshape(-1, 3)
        normal, _ = normalize_vector(np.mean(normals, axis=0))

        feature_tracker = FeatureTrackerShared.feature_tracker
        level = kf_ref.octaves[idx_ref]
        dist = np.linalg.norm(position - kf_ref.Ow())

        with self._lock_pos:
            self._max_distance = dist * feature_tracker.scale_factors[level]
            self._min_distance = self._max_distance / feature_tracker.scale_factors[feature_tracker.num_levels - 1]
            self.normal = normal

    # the representative descriptor is the one with the least median distance to the others
    def update_best_descriptor(self, force=False):
        with self._lock_features:
            if self._is_bad:
                return
            if not (self._num_observations > self.num_observations_on_last_update_des or force):
                return
            self.num_observations_on_last_update_des = self._num_observations
            observations = list(self._observations.items())
        descriptors = [kf.des[idx] for kf, idx in observations if not kf.is_bad()]
        N = len(descriptors)
        if N >= 2:
            descriptors = np.ascontiguousarray(descriptors)
            D = np.array([FeatureTrackerShared.descriptor_distances(d, descriptors) for d in descriptors])
            median_distances = np.median(D, axis=1)
            with self._lock_features:
                self.des = descriptors[np.argmin(median_distances)].copy()
        elif N == 1 and self.des is None:
            with self._lock_features:
                self.des = descriptors[0].copy()

    def update_info(self):
        self.update_normal_and_depth()
        self.update_best_descriptor()

    # predict detection level from map point distance
    # predict detection levels from map point distances
    @staticmethod
    def predict_detection_levels(points: list["MapPoint"], dists: np.ndarray):
        feature_tracker = FeatureTrackerShared.feature_tracker
        max_distances = np.array([p._max_distance for p in points])
        ratios = max_distances / np.maximum(dists, 1e-8)
        ratios = np.maximum(ratios, 1e-8)  # prevent log(0) or log(negative)
        levels = np.ceil(np.log(ratios) / feature_tracker.log_scale_factor).astype(np.intp)
        return np.clip(levels, 0, feature_tracker.num_levels - 1)
