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

from monotrack.config import Config
from monotrack.config_parameters import Parameters
from monotrack.local_features.feature_tracker import OrbFeatureTracker
from monotrack.slam import Frame, PinholeCamera, FeatureTrackerShared
from monotrack.utilities.geometry import poseRt


kCameraSettings = {
    "Camera.fx": 500.0,
    "Camera.fy": 500.0,
    "Camera.cx": 320.0,
    "Camera.cy": 240.0,
    "Camera.width": 640,
    "Camera.height": 480,
    "Camera.fps": 30,
}


def make_camera():
    return PinholeCamera(Config.from_dict(kCameraSettings))


def set_feature_tracker():
    feature_tracker = OrbFeatureTracker(num_features=500)
    FeatureTrackerShared.set_feature_tracker(feature_tracker, force=True)
    return feature_tracker


# run the tracking modules in the caller thread (deterministic tests)
def set_single_thread_parameters():
    saved = {
        "kLocalMappingOnSeparateThread": Parameters.kLocalMappingOnSeparateThread,
        "kLoopClosingOnSeparateThread": Parameters.kLoopClosingOnSeparateThread,
    }
    Parameters.kLocalMappingOnSeparateThread = False
    Parameters.kLoopClosingOnSeparateThread = False
    return saved


def restore_parameters(saved):
    for key, value in saved.items():
        setattr(Parameters, key, value)


# A fronto-parallel textured plane at depth 'depth' in front of the first camera.
# Each 3D point carries its own random ORB-like descriptor, so that a point has the same descriptor in all the views.
# The points are mirrored w.r.t. the optical axis of the first camera.
class SyntheticPlanarScene:
    def __init__(self, num_points=300, depth=4.0, half_width=2.0, half_height=1.4, seed=0):
        rng = np.random.RandomState(seed)
        num_half = num_points // 2
        xs_half = rng.uniform(0.05, half_width, size=num_half)
        xs = np.concatenate([xs_half, -xs_half])
        ys = rng.uniform(-half_height, half_height, size=2 * num_half)
        self.points_w = np.column_stack([xs, ys, np.full(2 * num_half, depth)])
        self.descriptors = rng.randint(0, 256, size=(2 * num_half, 32)).astype(np.uint8)

    def num_points(self):
        return len(self.points_w)

    # project the scene into a camera with pose Tcw
    # out: [Nx2] keypoints, [N] idxs of the visible scene points
    def project(self, camera, Tcw):
        pcs = (Tcw[:3, :3] @ self.points_w.T + Tcw[:3, 3].reshape(3, 1)).T
        uvs, zs = camera.project(pcs)
        visible = np.flatnonzero(camera.are_in_image(uvs, zs))
        return uvs[visible], visible

    # out: a frame observing the scene from the pose Tcw (exact projections at octave 0)
    def make_frame(self, camera, Tcw, timestamp=None):
        kps, visible = self.project(camera, Tcw)
        return Frame(
            camera,
            kps=kps,
            des=self.descriptors[visible],
            octaves=np.zeros(len(visible), dtype=np.int32),
            timestamp=timestamp,
        )


# pose of a camera translated (without rotation) w.r.t. the first one
def translated_pose(tx, ty=0.0, tz=0.0):
    return poseRt(np.eye(3), np.array([tx, ty, tz], dtype=np.float64))


# relative rotation angle [deg] between two rotation matrices
def rotation_angle_deg(R1, R2):
    cos_angle = (np.trace(R1 @ R2.T) - 1.0) / 2.0
    return np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


# angle [deg] between two vectors
def vector_angle_deg(v1, v2):
    v1 = np.asarray(v1, dtype=np.float64).ravel()
    v2 = np.asarray(v2, dtype=np.float64).ravel()
    cos_angle = np.dot(v1, v2) / (np.linalg.norm(v1) * np.linalg.norm(v2))
    return np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


def empty_frame(camera, timestamp=None):
    return Frame(
        camera,
        kps=np.empty((0, 2), dtype=np.float32),
        des=np.empty((0, 32), dtype=np.uint8),
        timestamp=timestamp,
    )
