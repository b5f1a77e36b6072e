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

from collections import OrderedDict, Counter

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer

from .frame import Frame, kNoPoint
from .camera_pose import CameraPose

import typing

if typing.TYPE_CHECKING:
    from .map_point import MapPoint


class KeyFrameGraph(object):
    def __init__(self):
        self._lock_connections = Lock()
        self.init_parent = False  # is parent initialized?
        self.parent = None
        self.children = set()
        self.loop_edges = set()
        self.not_to_erase = False  # if there is a loop edge then you cannot erase this keyframe
        self.connected_keyframes_weights = Counter()
        self.ordered_keyframes_weights = (
            OrderedDict()
        )  # ordered list of connected keyframes (on the basis of the number of map points with this keyframe)
        self.is_first_connection = True

    # ===============================
    # spanning tree
    def add_child_no_lock_(self, keyframe):
        self.children.add(keyframe)

    def add_child(self, keyframe):
        with self._lock_connections:
            self.add_child_no_lock_(keyframe)

    def erase_child_no_lock_(self, keyframe):
        self.children.discard(keyframe)

    def erase_child(self, keyframe):
        with self._lock_connections:
            self.erase_child_no_lock_(keyframe)

    def set_parent_no_lock_(self, keyframe):
        self.parent = keyframe
        self.init_parent = True
        keyframe.add_child(self)

    def set_parent(self, keyframe):
        with self._lock_connections:
            if self == keyframe:
                Printer.orange("KeyFrameGraph.set_parent - trying to set self as parent")
                return
            self.set_parent_no_lock_(keyframe)

    def get_children(self):
        with self._lock_connections:
            return self.children.copy()

    def get_parent(self):
        with self._lock_connections:
            return self.parent

    def has_child(self, keyframe):
        with self._lock_connections:
            return keyframe in self.children

    # ===============================
    # loop edges
    def add_loop_edge(self, keyframe):
        with self._lock_connections:
            self.not_to_erase = True
            self.loop_edges.add(keyframe)

    def get_loop_edges(self):
        with self._lock_connections:
            return self.loop_edges.copy()

    # ===============================
    # covisibility
    def reset_covisibility(self):
        self.connected_keyframes_weights = Counter()
        self.ordered_keyframes_weights = OrderedDict()

    def update_best_covisibles_no_lock_(self):
        self.ordered_keyframes_weights = OrderedDict(
            sorted(self.connected_keyframes_weights.items(), key=lambda x: x[1], reverse=True)
        )  # order by value (decreasing order)

    def add_connection_no_lock_(self, keyframe, weight):
        self.connected_keyframes_weights[keyframe] = weight
        self.update_best_covisibles_no_lock_()

    def add_connection(self, keyframe, weight):
        with self._lock_connections:
            self.add_connection_no_lock_(keyframe, weight)

    def erase_connection_no_lock_(self, keyframe):
        if keyframe in self.connected_keyframes_weights:
            del self.connected_keyframes_weights[keyframe]
            self.update_best_covisibles_no_lock_()

    def erase_connection(self, keyframe):
        with self._lock_connections:
            self.erase_connection_no_lock_(keyframe)

    def get_connected_keyframes(self):
        with self._lock_connections:
            return list(self.connected_keyframes_weights.keys())  # returns a copy

    def get_covisible_keyframes(self):
        with self._lock_connections:
            return list(self.ordered_keyframes_weights.keys())  # returns a copy

    def get_best_covisible_keyframes(self, N):
        with self._lock_connections:
            return list(self.ordered_keyframes_weights.keys())[:N]  # returns a copy

    def get_covisible_by_weight(self, weight):
        with self._lock_connections:
            return [kf for kf, w in self.ordered_keyframes_weights.items() if w > weight]

    def get_weight(self, keyframe):
        with self._lock_connections:
            return self.connected_keyframes_weights.get(keyframe, 0)


# A KeyFrame is a Frame promoted into the map: it copies the frame pose and associations
# and adds the covisibility graph and the spanning tree.
class KeyFrame(Frame, KeyFrameGraph):
    def __init__(self, frame: Frame, kid=None):
        KeyFrameGraph.__init__(self)
        Frame.__init__(
            self,
            camera=frame.camera,
            pose=frame.pose(),
            id=frame.id,
            timestamp=frame.timestamp,
        )  # here we MUST have img=None in order to avoid recomputing keypoint info

        self.is_keyframe = True
        self.kid = kid  # keyframe id (keyframe counter-id, different from frame.id), assigned by Map.add_keyframe()

        self._is_bad = False
        self.to_be_erased = False

        # pose relative to parent: self.Tcw() @ self.parent.Twc() (this is computed when bad flag is activated)
        self._pose_Tcp = CameraPose()

        # share keypoints info with frame (these are computed once for all on frame initialization and they are not changed anymore)
        self.kps = frame.kps
        self.kpsu = frame.kpsu
        self.kpsn = frame.kpsn
        self.octaves = frame.octaves
        self.sizes = frame.sizes
        self.angles = frame.angles
        self.des = frame.des
        self._kd = frame._kd

        # for relocalization
        self.reloc_query_id = None
        self.num_reloc_words = 0
        self.reloc_score = 0

        # map point associations (deep copy of the frame ones); observations are registered by Map.add_keyframe()
        self.point_ids = frame.get_point_ids()
        self.outliers = np.full(len(self.point_ids), False, dtype=bool)

    # ids of the associated map points that are still valid
    def get_matched_point_ids(self):
        return self.point_ids[self.point_ids != kNoPoint].copy()

    def get_matched_good_points(self):
        return [p for p in self.get_points() if p is not None and not p.is_bad()]

    def update_connections(self):
        # for all map points of this keyframe check in which other keyframes they are seen
        # build a counter for these other keyframes
        points: list["MapPoint"] = self.get_matched_good_points()
        if len(points) == 0:
            Printer.orange(f"KeyFrame {self.kid}: update_connections - keyframe without points")
            return

        viewing_keyframes = Counter()
        for p in points:
            for kf in p.keyframes():
                if kf.kid != self.kid and not kf.is_bad():
                    viewing_keyframes[kf] += 1

        if not viewing_keyframes:
            return

        # order the keyframes: sort by weight in descending order
        covisible_keyframes = viewing_keyframes.most_common()

        # get keyframe that shares most points
        kf_max, w_max = covisible_keyframes[0]

        # if the counter is greater than threshold add connection
        # otherwise add the one with maximum counter
        th = Parameters.kMinNumOfCovisiblePointsForCreatingConnection
        if w_max >= th:
            connections = [(kf, w) for kf, w in covisible_keyframes if w >= th]
        else:
            connections = [(kf_max, w_max)]
        for kf, w in connections:
            kf.add_connection(self, w)

        with self._lock_connections:
            self.connected_keyframes_weights = viewing_keyframes
            self.ordered_keyframes_weights = OrderedDict(connections)
            # update spanning tree
            if self.is_first_connection and self.kid != 0 and kf_max != self and not kf_max.is_bad():
                self.set_parent_no_lock_(kf_max)
                self.is_first_connection = False

    def Tcp(self):
        with self._lock_connections:
            return self._pose_Tcp.get_matrix()

    def is_bad(self):
        with self._lock_connections:
            return self._is_bad

    def set_not_erase(self):
        with self._lock_connections:
            self.not_to_erase = True

    def set_erase(self):
        with self._lock_connections:
            if len(self.loop_edges) == 0:
                self.not_to_erase = False
        if self.to_be_erased and self.map is not None:
            self.map.remove_keyframe(self)

    # detach this keyframe from the covisibility graph and the spanning tree;
    # the map observations are removed by Map.remove_keyframe() that calls this method
    # out: True if the keyframe has been flagged as bad
    def set_bad_graph(self):
        with self._lock_connections:
            if not self.kid:  # the first keyframe is never erased
                return False
            if self.not_to_erase:
                self.to_be_erased = True
                return False
            connected = list(self.connected_keyframes_weights.keys())
            parent = self.parent
            children = list(self.children)
            self.children.clear()
            self.reset_covisibility()
            self._is_bad = True

        for kf_connected in connected:
            kf_connected.erase_connection(self)

        # each child is connected to the covisible parent candidate with the highest weight
        parent_candidates = {parent} if parent is not None else set()
        remaining_children = [kf for kf in children if not kf.is_bad()]
        while remaining_children:
            best_child, best_parent, max_weight = None, None, -1
            for kf_child in remaining_children:
                for candidate in parent_candidates:
                    w = kf_child.get_weight(candidate)
                    if w > max_weight:
                        best_child, best_parent, max_weight = kf_child, candidate, w
            if best_child is None or max_weight <= 0:
                break
            best_child.set_parent(best_parent)
            parent_candidates.add(best_child)
            remaining_children.remove(best_child)
        if parent is not None:
            for kf_child in remaining_children:
                kf_child.set_parent(parent)
            parent.erase_child(self)
            with self._lock_connections:
                self._pose_Tcp.update(self.Tcw() @ parent.Twc())
        return True
