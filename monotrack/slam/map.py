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

from collections import deque
from ordered_set import OrderedSet  # from https://pypi.org/project/ordered-set/
from threading import RLock

from monotrack.config_parameters import Parameters
from monotrack.utilities.geometry import add_ones

from .frame import Frame, kNoPoint
from .keyframe import KeyFrame
from .map_point import MapPoint
from .slam_commons import MapInvariantError
from .feature_tracker_shared import FeatureTrackerShared


kVerbose = True
kMaxLenFrameDeque = Parameters.kMaxLenFrameDeque


if not kVerbose:

    def print(*args, **kwargs):
        pass


# The Map is the arena of map points (addressed by their stable integer ids) and keyframes.
# All the structural mutations (adding/removing points and keyframes, changing keypoint->point
# associations) are serialized by the map lock. A point removal first detaches all the keyframe
# observations and frame views and then erases the point, as a single step w.r.t. the readers
# that resolve associations with get_frame_points().
class Map(object):
    def __init__(self):
        self._lock = RLock()

        self.frames: deque[Frame] = deque(maxlen=kMaxLenFrameDeque)
        self.keyframes: OrderedSet[KeyFrame] = OrderedSet()
        self.points: dict[int, MapPoint] = {}  # point id -> point

        self.keyframe_origins: OrderedSet[KeyFrame] = OrderedSet()  # first keyframe(s) where the map is rooted

        self.max_point_id = 0  # 0 is the first point id
        self.max_frame_id = 0  # 0 is the first frame id
        self.max_keyframe_id = 0  # 0 is the first keyframe id (kid)

    def reset(self):
        print("Map: reset...")
        with self._lock:
            for f in self.frames:
                f.point_ids[:] = kNoPoint
                f.map = None
            for kf in self.keyframes:
                kf.point_ids[:] = kNoPoint
            for p in self.points.values():
                p.set_bad()
            self.frames.clear()
            self.keyframes.clear()
            self.points.clear()
            self.keyframe_origins.clear()
            self.max_keyframe_id = 0

    @property
    def lock(self):
        return self._lock

    # ===============================
    # points
    def get_points(self):
        with self._lock:
            return list(self.points.values())

    def num_points(self):
        with self._lock:
            return len(self.points)

    # out: the point with the input id or None if the point has been removed
    def get_point(self, point_id):
        if point_id == kNoPoint:
            return None
        with self._lock:
            return self.points.get(point_id, None)

    def contains_point(self, point: MapPoint):
        with self._lock:
            return self.points.get(point.id, None) is point

    def add_point(self, point: MapPoint):
        with self._lock:
            ret = self.max_point_id  # override original id
            point.id = ret
            self.max_point_id += 1
            self.points[ret] = point
            return ret

    def remove_point(self, point: MapPoint):
        with self._lock:
            self.remove_point_no_lock_(point)

    def remove_point_no_lock_(self, point: MapPoint):
        observations, frame_views = point.set_bad()
        for kf, idx in observations:
            if kf.point_ids[idx] == point.id:
                kf.point_ids[idx] = kNoPoint
        for f, idx in frame_views:
            if f.point_ids[idx] == point.id:
                f.point_ids[idx] = kNoPoint
                f.outliers[idx] = False
        self.points.pop(point.id, None)

    # resolve the keypoint->point associations of a frame
    # out: array of MapPoint (or None where no point is associated)
    def get_frame_points(self, frame: Frame):
        with self._lock:
            point_ids = frame.point_ids
            out = np.full(len(point_ids), None, dtype=object)
            for idx in np.flatnonzero(point_ids != kNoPoint):
                p = self.points.get(int(point_ids[idx]), None)
                if p is None:
                    raise MapInvariantError(
                        f"Map: frame {frame.id} keypoint {idx} is associated to the missing point {point_ids[idx]}"
                    )
                out[idx] = p
            return out

    # ===============================
    # associations
    # associate the keypoint idx of the (non-keyframe) frame with the point
    # out: False if the point was removed in the meantime or if it is already matched to another keypoint of the frame
    def associate(self, frame: Frame, idx, point: MapPoint):
        with self._lock:
            if frame.map is not self:
                raise MapInvariantError(f"Map: associating a point to frame {frame.id} that is not in the map")
            if self.points.get(point.id, None) is not point:
                return False
            current_id = frame.point_ids[idx]
            if current_id == point.id:
                return True
            if not point.add_frame_view(frame, idx):
                return False
            if current_id != kNoPoint:
                old = self.points.get(int(current_id), None)
                if old is not None:
                    old.remove_frame_view(frame)
            frame.point_ids[idx] = point.id
            frame.outliers[idx] = False
            return True

    def dissociate(self, frame: Frame, idx):
        with self._lock:
            current_id = frame.point_ids[idx]
            if current_id == kNoPoint:
                return
            frame.point_ids[idx] = kNoPoint
            p = self.points.get(int(current_id), None)
            if p is not None:
                if frame.is_keyframe:
                    if p.remove_observation(frame):
                        self.remove_point_no_lock_(p)
                else:
                    p.remove_frame_view(frame)

    def dissociate_all(self, frame: Frame):
        with self._lock:
            for idx in np.flatnonzero(frame.point_ids != kNoPoint):
                self.dissociate(frame, idx)

    # register the observation of the point in the keypoint idx of the keyframe
    def add_observation(self, keyframe: KeyFrame, idx, point: MapPoint):
        with self._lock:
            if self.points.get(point.id, None) is not point:
                return False
            current_id = keyframe.point_ids[idx]
            if current_id != kNoPoint and current_id != point.id:
                return False
            if not point.add_observation(keyframe, idx):
                return False
            keyframe.point_ids[idx] = point.id
            return True

    # ===============================
    # frames
    def get_frame(self, idx):
        with self._lock:
            try:
                return self.frames[idx]
            except IndexError:
                return None

    def get_frames(self):
        with self._lock:
            return self.frames.copy()

    def num_frames(self):
        with self._lock:
            return len(self.frames)

    def add_frame(self, frame: Frame, override_id=False):
        with self._lock:
            ret = frame.id
            if override_id:
                ret = self.max_frame_id
                frame.id = ret  # override original id
                self.max_frame_id += 1
            else:
                self.max_frame_id = max(self.max_frame_id, frame.id + 1)
            if len(self.frames) == self.frames.maxlen:
                self.detach_frame_no_lock_(self.frames[0])
            self.frames.append(frame)
            frame.map = self
            return ret

    # drop the frame views of a frame that leaves the frame window
    def detach_frame_no_lock_(self, frame: Frame):
        if frame.is_keyframe:
            return  # keyframe associations are observations and stay with the keyframe
        for idx in np.flatnonzero(frame.point_ids != kNoPoint):
            p = self.points.get(int(frame.point_ids[idx]), None)
            if p is not None:
                p.remove_frame_view(frame)
        frame.point_ids[:] = kNoPoint
        frame.map = None

    # ===============================
    # keyframes
    def get_keyframes(self):
        with self._lock:
            return self.keyframes.copy()

    def get_last_keyframe(self):
        with self._lock:
            return self.keyframes[-1] if len(self.keyframes) > 0 else None

    def num_keyframes(self):
        with self._lock:
            return len(self.keyframes)

    # add the keyframe and register the observations of its associated points
    def add_keyframe(self, keyframe: KeyFrame):
        with self._lock:
            assert keyframe.is_keyframe
            ret = self.max_keyframe_id
            keyframe.kid = ret  # override original keyframe kid
            keyframe.map = self
            self.keyframes.add(keyframe)
            self.max_keyframe_id += 1
            if len(self.keyframe_origins) == 0:
                self.keyframe_origins.add(keyframe)
            for idx in np.flatnonzero(keyframe.point_ids != kNoPoint):
                p = self.points.get(int(keyframe.point_ids[idx]), None)
                if p is None or not p.add_observation(keyframe, idx):
                    keyframe.point_ids[idx] = kNoPoint
            return ret

    def remove_keyframe(self, keyframe: KeyFrame):
        with self._lock:
            assert keyframe.is_keyframe
            if not keyframe.set_bad_graph():
                return False
            for idx in np.flatnonzero(keyframe.point_ids != kNoPoint):
                self.dissociate(keyframe, idx)
            self.keyframes.discard(keyframe)
            return True

    # ===============================
    # structure creation
    def add_points(
        self,
        points3d,
        mask_pts3d,
        kf1: KeyFrame,
        kf2: KeyFrame,
        idxs1,
        idxs2,
        do_check=True,
        cos_max_parallax=Parameters.kCosMaxParallax,
    ):
        """
        Add new points to the map from 3D point estimations, keyframes and pairwise matches.
        Args:
            points3d: [Nx3] 3D points
            mask_pts3d: [N] mask of points to add (None: all)
            kf1, kf2: the two keyframes observing the points
            idxs1, idxs2: [N] indices of the corresponding keypoints in kf1 and kf2
            do_check: if True, check parallax, positive depths, reprojection errors and scale consistency
            cos_max_parallax: max cos of the parallax angle
        Returns:
            (number of added points, [N] mask of the added points, list of added points)
        """
        assert kf1.is_keyframe and kf2.is_keyframe
        idxs1 = np.asarray(idxs1, dtype=np.intp)
        idxs2 = np.asarray(idxs2, dtype=np.intp)
        points3d = np.asarray(points3d, dtype=np.float64).reshape(-1, 3)
        assert points3d.shape[0] == len(idxs1) == len(idxs2)

        added_map_points = []
        out_mask_pts3d = np.full(points3d.shape[0], False, dtype=bool)
        if mask_pts3d is None:
            mask_pts3d = np.full(points3d.shape[0], True, dtype=bool)
        if points3d.shape[0] == 0:
            return 0, out_mask_pts3d, added_map_points

        bad_points = np.full(points3d.shape[0], False, dtype=bool)
        if do_check:
            feature_tracker = FeatureTrackerShared.feature_tracker

            # project points
            uvs1, proj_depths1 = kf1.project_points(points3d)
            uvs2, proj_depths2 = kf2.project_points(points3d)
            bad_depths = (proj_depths1 <= 0) | (proj_depths2 <= 0)

            # compute back-projected rays (unit vectors)
            rays1 = np.dot(kf1.Rwc(), add_ones(kf1.kpsn[idxs1]).T).T
            rays1 /= np.linalg.norm(rays1, axis=-1, keepdims=True)
            rays2 = np.dot(kf2.Rwc(), add_ones(kf2.kpsn[idxs2]).T).T
            rays2 /= np.linalg.norm(rays2, axis=-1, keepdims=True)
            cos_parallaxs = np.sum(rays1 * rays2, axis=1)
            bad_cos_parallaxs = (cos_parallaxs < 0) | (cos_parallaxs > cos_max_parallax)

            # reprojection errors
            kps1_levels = kf1.octaves[idxs1]
            kps2_levels = kf2.octaves[idxs2]
            errs1 = np.sum((uvs1 - kf1.kpsu[idxs1]) ** 2, axis=1)
            errs2 = np.sum((uvs2 - kf2.kpsu[idxs2]) ** 2, axis=1)
            bad_chis2_1 = errs1 * feature_tracker.inv_level_sigmas2[kps1_levels] > Parameters.kChi2Mono
            bad_chis2_2 = errs2 * feature_tracker.inv_level_sigmas2[kps2_levels] > Parameters.kChi2Mono

            # scale consistency
            ratio_scale_consistency = Parameters.kScaleConsistencyFactor * feature_tracker.scale_factor
            scale_factors_x_depths1 = feature_tracker.scale_factors[kps1_levels] * proj_depths1
            scale_factors_x_depths2 = feature_tracker.scale_factors[kps2_levels] * proj_depths2
            bad_scale_consistency = (scale_factors_x_depths1 > scale_factors_x_depths2 * ratio_scale_consistency) | (
                scale_factors_x_depths2 > scale_factors_x_depths1 * ratio_scale_consistency
            )

            bad_points = bad_depths | bad_cos_parallaxs | bad_chis2_1 | bad_chis2_2 | bad_scale_consistency

        with self._lock:
            for i, p in enumerate(points3d):
                if not mask_pts3d[i] or bad_points[i]:
                    continue
                idx1_i = idxs1[i]
                idx2_i = idxs2[i]
                if kf1.point_ids[idx1_i] != kNoPoint or kf2.point_ids[idx2_i] != kNoPoint:
                    continue
                mp = MapPoint(p[0:3], None, kf2, idx2_i)
                self.add_point(mp)
                self.add_observation(kf1, idx1_i, mp)
                self.add_observation(kf2, idx2_i, mp)
                out_mask_pts3d[i] = True
                added_map_points.append(mp)
        for mp in added_map_points:
            mp.update_info()
        return len(added_map_points), out_mask_pts3d, added_map_points
