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

import cv2
import numpy as np

from threading import Lock

from scipy.spatial import cKDTree

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer

from .camera import Camera
from .camera_pose import CameraPose
from .feature_tracker_shared import FeatureTrackerShared

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .map_point import MapPoint
    from .map import Map


kMinDepth = Parameters.kMinDepth
kNoPoint = -1  # value of an empty keypoint->map point association


# Base object class for frame info management;
# it collects methods for managing:
# - camera intrinsics
# - camera pose
# - points projections
# - checking points visibility
class FrameBase(object):
    _id = 0  # shared frame counter
    _id_lock = Lock()

    def __init__(self, camera: Camera, pose=None, id=None, timestamp=None):
        self._lock_pose = Lock()
        # frame camera info
        self.camera: Camera = camera
        # self._pose is a CameraPose() representing Tcw (pc = Tcw * pw)
        if pose is None:
            self._pose = CameraPose()
        else:
            self._pose = CameraPose(np.array(pose, dtype=np.float64))  # copy, never share the reference
        # frame id management
        if id is not None:
            self.id = id
        else:
            with FrameBase._id_lock:
                self.id = FrameBase._id
                FrameBase._id += 1
        self.timestamp = timestamp

    def __hash__(self):
        return self.id

    def __eq__(self, rhs):
        return isinstance(rhs, FrameBase) and self.id == rhs.id

    def __lt__(self, rhs):
        return self.id < rhs.id

    def __le__(self, rhs):
        return self.id <= rhs.id

    @staticmethod
    def next_id():
        with FrameBase._id_lock:
            return FrameBase._id

    @staticmethod
    def set_id(id):
        with FrameBase._id_lock:
            FrameBase._id = id

    @staticmethod
    def reset_id():
        FrameBase.set_id(0)

    @property
    def width(self):
        return self.camera.width

    @property
    def height(self):
        return self.camera.height

    def Tcw(self):
        with self._lock_pose:
            return self._pose.Tcw.copy()

    def Twc(self):
        with self._lock_pose:
            return self._pose.get_inverse_matrix()

    def Rcw(self):
        with self._lock_pose:
            return self._pose.Rcw.copy()

    def Rwc(self):
        with self._lock_pose:
            return self._pose.Rwc.copy()

    def tcw(self):
        with self._lock_pose:
            return self._pose.tcw.copy()

    def Ow(self):
        with self._lock_pose:
            return self._pose.Ow.copy()

    def pose(self):
        with self._lock_pose:
            return self._pose.Tcw.copy()

    def quaternion(self):  # quaternion_cw [x, y, z, w]
        with self._lock_pose:
            return self._pose.quaternion

    def position(self):  # 3D vector tcw (world origin w.r.t. camera frame)
        with self._lock_pose:
            return self._pose.position

    # update pose_cw from a [4x4] transformation matrix or a CameraPose
    def update_pose(self, pose):
        with self._lock_pose:
            self._pose.set(pose)

    # transform a world point into a camera point
    def transform_point(self, pw):
        with self._lock_pose:
            return (self._pose.Rcw @ pw) + self._pose.tcw  # p w.r.t. camera

    # transform a world points into camera points [Nx3]
    # out: points  w.r.t. camera frame  [Nx3]
    def transform_points(self, points):
        with self._lock_pose:
            Rcw = self._pose.Rcw.copy()
            tcw = self._pose.tcw.reshape((3, 1)).copy()
        points = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, 3)
        return (Rcw @ points.T + tcw).T

    # project an [Nx3] array of map point vectors on this frame
    # out: [Nx2] image projections (u,v), [Nx1] array of map point depths
    def project_points(self, points):
        pcs = self.transform_points(points)
        return self.camera.project(pcs)

    # project a list of N MapPoint objects on this frame
    def project_map_points(self, map_points):
        points = np.ascontiguousarray([p.pt() for p in map_points]).reshape(-1, 3)
        return self.project_points(points)

    # project a 3d point vector pw on this frame
    # out: image point, depth
    def project_point(self, pw):
        uvs, zs = self.project_points(np.asarray(pw).reshape(1, 3))
        return uvs[0], zs[0]

    def project_map_point(self, map_point: "MapPoint"):
        return self.project_point(map_point.pt())

    def is_in_image(self, uv, z):
        return self.camera.is_in_image(uv, z)

    # input: [Nx2] array of uvs, [Nx1] of zs
    # output: [Nx1] array of visibility flags
    def are_in_image(self, uvs, zs):
        return self.camera.are_in_image(uvs, zs)

    # input: map_point
    # output: visibility flag, projection uv, depth z
    def is_visible(self, map_point):
        uv, z = self.project_map_point(map_point)
        PO = map_point.pt() - self.Ow()

        if not self.is_in_image(uv, z):
            return False, uv, z

        dist3D = np.linalg.norm(PO)
        # point depth must be inside the scale pyramid of the image
        if dist3D < map_point.min_distance() or dist3D > map_point.max_distance():
            return False, uv, z
        # viewing angle must be less than 60 deg
        if np.dot(PO, map_point.get_normal()) < Parameters.kViewingCosLimitForPoint * dist3D:
            return False, uv, z
        return True, uv, z

    # input: a list of map points
    # output: [Nx1] array of visibility flags,
    #         [Nx2] array of projections (u,v),
    #         [Nx1] array of depths,
    #         [Nx1] array of distances PO
    # check a) points are in image b) good view angle c) good distance range
    def are_visible(self, map_points: list["MapPoint"]):
        if len(map_points) == 0:
            return (
                np.zeros(0, dtype=bool),
                np.empty((0, 2), dtype=np.float64),
                np.empty(0, dtype=np.float64),
                np.empty(0, dtype=np.float64),
            )
        points, normals, min_dists, max_dists = zip(*(p.get_all_pos_info() for p in map_points))
        points = np.ascontiguousarray(np.vstack(points))  # shape (N, 3)
        normals = np.ascontiguousarray(np.vstack(normals))  # shape (N, 3)
        min_dists = np.ascontiguousarray(min_dists)  # shape (N,)
        max_dists = np.ascontiguousarray(max_dists)  # shape (N,)

        uvs, zs = self.project_points(points)
        POs = points - self.Ow()
        dists = np.linalg.norm(POs, axis=-1, keepdims=True)
        POs /= np.maximum(dists, 1e-12)
        cos_view = np.sum(normals * POs, axis=1)

        are_in_image = self.are_in_image(uvs, zs)
        are_in_good_view_angle = cos_view > Parameters.kViewingCosLimitForPoint
        dists = dists.reshape(-1)
        are_in_good_distance = (dists > min_dists) & (dists < max_dists)

        out_flags = are_in_image & are_in_good_view_angle & are_in_good_distance
        return out_flags, uvs, zs, dists


# A Frame mainly collects keypoints, descriptors and the ids of their corresponding map points.
# Keypoint->map point associations are stored as an array of map point ids (kNoPoint where empty);
# they are changed only through the Map (see Map.associate() and Map.dissociate()).
class Frame(FrameBase):
    def __init__(
        self,
        camera: Camera,
        img=None,
        pose=None,
        id=None,
        timestamp=None,
        kps=None,
        des=None,
        octaves=None,
        feature_tracker=None,
    ):
        super().__init__(camera, pose=pose, id=id, timestamp=timestamp)

        self.is_keyframe = False
        self.map: "Map | None" = None  # set by Map.add_frame()/Map.add_keyframe()

        self._kd = None  # kdtree for fast-search of keypoints

        self.kps = None  # keypoint coordinates                  [Nx2]
        self.kpsu = None  # [u]ndistorted keypoint coordinates    [Nx2]
        self.kpsn = None  # [n]ormalized keypoint coordinates     [Nx2] (Kinv * [kp,1])
        self.octaves = None  # keypoint octaves                   [Nx1]
        self.sizes = None  # keypoint sizes                       [Nx1]
        self.angles = None  # keypoint angles                     [Nx1]
        self.des = None  # keypoint descriptors                   [NxD] where D is the descriptor length

        self.point_ids = None  # map point ids => self.point_ids[idx] (if != kNoPoint) is the map point matched with self.kps[idx]
        self.outliers = None  # outliers flags for map points (reset and set by pose_optimization())

        self.kf_ref = None  # reference keyframe

        if kps is None and img is not None:
            if feature_tracker is None:
                feature_tracker = FeatureTrackerShared.feature_tracker
            gray = Frame.to_gray(img, camera.is_rgb if camera is not None else True)
            cv_kps, des = feature_tracker.detectAndCompute(gray)
            if len(cv_kps) > 0:
                kps_data = np.ascontiguousarray(
                    [[x.pt[0], x.pt[1], x.octave, x.size, x.angle] for x in cv_kps],
                    dtype=np.float32,
                )
                kps = kps_data[:, :2]
                octaves = kps_data[:, 2]
                self.sizes = kps_data[:, 3]
                self.angles = kps_data[:, 4]
            else:
                kps = np.empty((0, 2), dtype=np.float32)
                octaves = np.empty(0, dtype=np.int32)

        if kps is None:
            kps = np.empty((0, 2), dtype=np.float32)
        if des is None:
            des = np.empty((0, 32), dtype=np.uint8)
        self.init_features(kps, des, octaves)

    @staticmethod
    def to_gray(img, is_rgb=True):
        if img.ndim == 2:
            return img
        code = cv2.COLOR_RGB2GRAY if is_rgb else cv2.COLOR_BGR2GRAY
        return cv2.cvtColor(img, code)

    def init_features(self, kps, des, octaves=None):
        kps = np.ascontiguousarray(kps, dtype=np.float64).reshape(-1, 2)
        num_kps = len(kps)
        if len(des) != num_kps:
            raise ValueError(f"Frame: got {num_kps} keypoints but {len(des)} descriptors")
        self.kps = kps
        des = np.ascontiguousarray(des, dtype=np.uint8)
        if num_kps == 0:
            self.des = des if des.ndim == 2 else np.empty((0, 32), dtype=np.uint8)
        else:
            self.des = des.reshape(num_kps, -1)
        if octaves is None:
            octaves = np.zeros(num_kps, dtype=np.int32)
        self.octaves = np.ascontiguousarray(octaves, dtype=np.int32).reshape(-1)
        if self.sizes is None:
            self.sizes = np.full(num_kps, 31.0, dtype=np.float32)
        if self.angles is None:
            self.angles = np.zeros(num_kps, dtype=np.float32)
        if self.camera is None:
            raise ValueError("Frame.init: camera is None")
        self.kpsu = np.ascontiguousarray(self.camera.undistort_points(self.kps), dtype=np.float64)
        self.kpsn = np.ascontiguousarray(self.camera.unproject_points(self.kpsu), dtype=np.float64)
        self.point_ids = np.full(num_kps, kNoPoint, dtype=np.int64)
        self.outliers = np.full(num_kps, False, dtype=bool)
        self._kd = None

    def num_keypoints(self):
        return len(self.kps)

    # KD tree of undistorted keypoints (None if the frame has no keypoints)
    @property
    def kd(self):
        if self._kd is None and len(self.kpsu) > 0:
            self._kd = cKDTree(self.kpsu)
        return self._kd

    def get_point_ids(self):
        return self.point_ids.copy()

    def has_point(self, idx):
        return self.point_ids[idx] != kNoPoint

    # resolve the associated map points (array of MapPoint or None)
    def get_points(self) -> np.ndarray:
        if self.map is None:
            return np.full(len(self.point_ids), None, dtype=object)
        return self.map.get_frame_points(self)

    def get_point_match(self, idx):
        if self.map is None:
            return None
        return self.map.get_point(int(self.point_ids[idx]))

    def get_matched_points_idxs(self):
        return np.flatnonzero(self.point_ids != kNoPoint)

    def get_unmatched_points_idxs(self):
        return np.flatnonzero(self.point_ids == kNoPoint)

    def get_matched_points(self):
        points = self.get_points()
        idxs = np.flatnonzero(points != None)
        return points[idxs], idxs

    def get_matched_inlier_points(self):
        points = self.get_points()
        idxs = np.flatnonzero((points != None) & (~self.outliers))
        return points[idxs], idxs

    def get_matched_good_points_and_idxs(self):
        points = self.get_points()
        pairs = [(p, i) for i, p in enumerate(points) if p is not None and not p.is_bad()]
        if len(pairs) == 0:
            return [], np.empty(0, dtype=np.intp)
        points, idxs = zip(*pairs)
        return list(points), np.array(idxs, dtype=np.intp)

    def num_matched_points(self):
        return int(np.count_nonzero(self.point_ids != kNoPoint))

    def num_tracked_points(self, minObs=1):
        return sum(1 for p in self.get_points() if p is not None and p.is_good_with_min_obs(minObs))

    def num_matched_inlier_map_points(self):
        points = self.get_points()
        return sum(
            1
            for i, p in enumerate(points)
            if p is not None and not self.outliers[i] and p.num_observations() > 0
        )

    # increase the found counter of the inlier map points
    # out: number of inliers that are observed by at least one keyframe
    def update_map_points_statistics(self):
        num_matched_inlier_points = 0
        for i, p in enumerate(self.get_points()):
            if p is not None and not self.outliers[i]:
                p.increase_found()
                if p.num_observations() > 0:
                    num_matched_inlier_points += 1
        return num_matched_inlier_points

    # remove the associations flagged as outliers by the last pose optimization
    # out: number of remaining matched points that are observed by at least one keyframe
    def clean_outlier_map_points(self):
        num_matched_points = 0
        points = self.get_points()
        for i, p in enumerate(points):
            if p is None:
                continue
            if self.outliers[i]:
                p.last_frame_id_seen = self.id
                self.map.dissociate(self, i)
                self.outliers[i] = False
            elif p.num_observations() > 0:
                num_matched_points += 1
        return num_matched_points

    # update the visibility counter of the matched map points
    def clean_bad_map_points(self):
        for p in self.get_points():
            if p is not None and not p.is_bad():
                p.last_frame_id_seen = self.id
                p.increase_visible()

    # remove matches with points that no keyframe observes
    def clean_vo_matches(self):
        for i, p in enumerate(self.get_points()):
            if p is not None and p.num_observations() < 1:
                self.map.dissociate(self, i)
                self.outliers[i] = False

    def reset_points(self):
        if self.map is not None:
            self.map.dissociate_all(self)
        else:
            self.point_ids[:] = kNoPoint
        self.outliers[:] = False

    def compute_points_median_depth(self, points3d=None, percentile=0.5):
        with self._lock_pose:
            Rcw2 = self._pose.Rcw[2, :3]  # just 2-nd row
            tcw2 = self._pose.tcw[2]  # just 2-nd row
        if points3d is None:
            points3d = np.array([p.pt() for p in self.get_points() if p is not None]).reshape(-1, 3)
        if len(points3d) > 0:
            z = np.dot(Rcw2, points3d[:, :3].T) + tcw2
            z = np.sort(z)
            idx = min(int(len(z) * percentile), len(z) - 1)
            return z[idx]
        else:
            Printer.red("frame.compute_points_median_depth() with no points")
            return -1
