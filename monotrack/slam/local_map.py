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

from collections import Counter
from threading import RLock

from ordered_set import OrderedSet  # from https://pypi.org/project/ordered-set/

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer

from .frame import Frame
from .keyframe import KeyFrame
from .map_point import MapPoint
from .geometry_matchers import ProjectionMatcher

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .map import Map


# The local map is the working window used to refine the pose of the current frame:
# - the reference keyframe (the keyframe sharing most map points with the current frame)
# - the local keyframes: the keyframes observing the frame points and the best covisible keyframes of the
#   reference keyframe (first-order neighbors only, bounded by kMaxNumOfKeyframesInLocalMap)
# - the local points: the good points observed by the local keyframes
# The window is rebuilt at each frame, it is never patched incrementally.
class LocalMap(object):
    def __init__(self, map: "Map" = None, max_num_keyframes=Parameters.kMaxNumOfKeyframesInLocalMap):
        self._lock = RLock()
        self.map = map
        self.max_num_keyframes = max_num_keyframes
        self.kf_ref: KeyFrame | None = None
        self.keyframes: OrderedSet[KeyFrame] = OrderedSet()  # local keyframes (reference keyframe first)
        self.points: list[MapPoint] = []  # good points viewed by the local keyframes (one instance per point)

    def reset(self):
        with self._lock:
            self.kf_ref = None
            self.keyframes.clear()
            self.points = []

    @property
    def lock(self):
        return self._lock

    def is_empty(self):
        with self._lock:
            return len(self.keyframes) == 0

    def get_reference_keyframe(self):
        with self._lock:
            return self.kf_ref

    def get_keyframes(self):
        with self._lock:
            return self.keyframes.copy()

    def num_keyframes(self):
        with self._lock:
            return len(self.keyframes)

    def get_points(self):
        with self._lock:
            return list(self.points)

    def num_points(self):
        with self._lock:
            return len(self.points)

    # count, for each keyframe, the map points it shares with the frame
    @staticmethod
    def compute_viewing_keyframes(frame: Frame):
        points, _ = frame.get_matched_good_points_and_idxs()
        return Counter(kf for p in points for kf in p.keyframes() if not kf.is_bad())

    # select the keyframe that shares most map points with the frame
    # out: the reference keyframe (None if no keyframe views the frame points) and the viewing keyframes counter
    def update_reference(self, frame: Frame):
        viewing_keyframes = self.compute_viewing_keyframes(frame)
        if len(viewing_keyframes) == 0:
            return None, viewing_keyframes
        kf_ref = viewing_keyframes.most_common(1)[0][0]
        with self._lock:
            self.kf_ref = kf_ref
        frame.kf_ref = kf_ref
        return kf_ref, viewing_keyframes

    # rebuild the local keyframes from the viewing keyframes and the covisibility neighbors of the reference keyframe
    def update_local_keyframes(self, kf_ref: KeyFrame, viewing_keyframes: Counter = None):
        local_keyframes = OrderedSet()
        if kf_ref is not None and not kf_ref.is_bad():
            local_keyframes.add(kf_ref)
        if viewing_keyframes:
            for kf, _ in viewing_keyframes.most_common():
                if len(local_keyframes) >= self.max_num_keyframes:
                    break
                local_keyframes.add(kf)
        if kf_ref is not None:
            for kf in kf_ref.get_best_covisible_keyframes(Parameters.kNumBestCovisibilityKeyFrames):
                if len(local_keyframes) >= self.max_num_keyframes:
                    break
                if not kf.is_bad():
                    local_keyframes.add(kf)
        with self._lock:
            self.keyframes = local_keyframes
        return local_keyframes

    # rebuild the local points from the local keyframes
    def update_local_points(self):
        with self._lock:
            keyframes = list(self.keyframes)
        local_points = OrderedSet(p for kf in keyframes for p in kf.get_matched_good_points())
        with self._lock:
            self.points = list(local_points)
        return self.points

    # rebuild the whole window around the frame
    # out: reference keyframe, local keyframes, local points
    def update(self, frame: Frame):
        kf_ref, viewing_keyframes = self.update_reference(frame)
        if kf_ref is None:
            Printer.orange(f"LocalMap: frame {frame.id} does not share any point with the map keyframes")
            kf_ref = frame.kf_ref if (frame.kf_ref is not None and not frame.kf_ref.is_bad()) else None
            with self._lock:
                self.kf_ref = kf_ref
        self.update_local_keyframes(kf_ref, viewing_keyframes)
        points = self.update_local_points()
        return kf_ref, self.get_keyframes(), points

    # rebuild the window around a keyframe (after initialization, relocalization or keyframe insertion)
    def update_from_keyframe(self, kf_ref: KeyFrame):
        with self._lock:
            self.kf_ref = kf_ref
        self.update_local_keyframes(kf_ref)
        points = self.update_local_points()
        return kf_ref, self.get_keyframes(), points

    # project the local points into the frame (at its current pose) and associate the found matches;
    # points out of the image or of the scale range, with a bad viewing angle or already associated with the frame
    # are just skipped in this search (they are not flagged as outliers)
    # out: number of new associations, list of matched keypoint idxs
    def search_in_frustum(
        self,
        frame: Frame,
        max_reproj_distance=Parameters.kMaxReprojectionDistanceMap,
        max_descriptor_distance=None,
        ratio_test=Parameters.kMatchRatioTestMap,
    ):
        points = self.get_points()
        return ProjectionMatcher.search_map_by_projection(
            points,
            frame,
            max_reproj_distance=max_reproj_distance,
            max_descriptor_distance=max_descriptor_distance,
            ratio_test=ratio_test,
        )
