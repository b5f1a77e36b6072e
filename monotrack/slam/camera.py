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

from enum import Enum
import numpy as np
import cv2
import math

from numba import njit

import ujson as json

from monotrack.config import Config
from monotrack.utilities.geometry import add_ones


class CameraType(Enum):
    NONE = 0
    PINHOLE = 1


# Convert fov [rad] to focal length in pixels
def fov2focal(fov, pixels):
    return float(pixels) / (2 * math.tan(fov / 2.0))


# Convert focal length in pixels to fov [rad]
def focal2fov(focal, pixels):
    return 2.0 * math.atan(pixels / (2.0 * focal))


class CameraUtils:

    # project an array of 3D points (w.r.t. camera frame), of shape [Nx3]
    # out: Nx2 image points, [Nx1] array of map point depths
    @staticmethod
    @njit(cache=True)
    def project_numba(xcs, K):
        N = xcs.shape[0]
        uv = np.empty((N, 2), dtype=np.float64)
        zs = np.empty(N, dtype=np.float64)
        for i in range(N):
            z = xcs[i, 2]
            zs[i] = z
            if z == 0.0:
                uv[i, 0] = np.inf
                uv[i, 1] = np.inf
            else:
                uv[i, 0] = K[0, 0] * xcs[i, 0] / z + K[0, 2]
                uv[i, 1] = K[1, 1] * xcs[i, 1] / z + K[1, 2]
        return uv, zs

    # in:  uvs [Nx2]
    # out: xcs array [Nx2] of 2D normalized coordinates (representing 3D points on z=1 plane)
    @staticmethod
    def unproject_points(uvs, Kinv):
        if len(uvs) == 0:
            return np.empty((0, 2), dtype=np.float64)
        return np.dot(Kinv, add_ones(uvs).T).T[:, 0:2]

    # input: [Nx2] array of uvs, [Nx1] of zs
    # output: [Nx1] array of visibility flags
    @staticmethod
    @njit(cache=True)
    def are_in_image_numba(uvs, zs, u_min, u_max, v_min, v_max):
        N = uvs.shape[0]
        out = np.empty(N, dtype=np.bool_)
        for i in range(N):
            out[i] = (
                (uvs[i, 0] >= u_min)
                & (uvs[i, 0] < u_max)
                & (uvs[i, 1] >= v_min)
                & (uvs[i, 1] < v_max)
                & (zs[i] > 0)
            )
        return out


class CameraBase:
    def __init__(self):
        self.type = CameraType.NONE
        self.width, self.height = None, None
        self.fx, self.fy = None, None
        self.cx, self.cy = None, None
        self.K, self.Kinv = None, None

        self.D = None
        self.is_distorted = None
        self.is_rgb = True

        self.fps = None

        self.u_min = None
        self.u_max = None
        self.v_min = None
        self.v_max = None
        self.initialized = False


class Camera(CameraBase):
    def __init__(self, config: "Config"):
        super().__init__()
        if config is None:
            return
        if isinstance(config, dict):
            config = Config.from_dict(config)

        self.width = config.width
        self.height = config.height
        self.fx = float(config.cam_settings["Camera.fx"])
        self.fy = float(config.cam_settings["Camera.fy"])
        self.cx = float(config.cam_settings["Camera.cx"])
        self.cy = float(config.cam_settings["Camera.cy"])

        if not self.width or not self.height:
            raise ValueError(
                "Camera: Expecting the fields Camera.width and Camera.height in the camera config file"
            )

        self.set_intrinsic_matrices()

        self.fovx = focal2fov(self.fx, self.width)
        self.fovy = focal2fov(self.fy, self.height)

        self.D = np.array(config.DistCoef, dtype=float)  # np.array([k1, k2, p1, p2, k3])  distortion coefficients
        self.is_distorted = np.linalg.norm(self.D) > 1e-10

        self.fps = config.fps
        self.is_rgb = config.is_rgb  # color order of the input images (ignored if grayscale)

    def set_intrinsic_matrices(self):
        fx, fy, cx, cy = self.fx, self.fy, self.cx, self.cy
        self.K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
        self.Kinv = np.array(
            [[1.0 / fx, 0.0, -cx / fx], [0.0, 1.0 / fy, -cy / fy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def to_json(self):
        return {
            "type": int(self.type.value),
            "width": int(self.width),
            "height": int(self.height),
            "fx": float(self.fx),
            "fy": float(self.fy),
            "cx": float(self.cx),
            "cy": float(self.cy),
            "D": self.D.astype(float).tolist() if self.D is not None else None,
            "fps": int(self.fps) if self.fps is not None else None,
            "is_rgb": bool(self.is_rgb),
            "is_distorted": bool(self.is_distorted),
            "u_min": float(self.u_min) if self.u_min is not None else None,
            "u_max": float(self.u_max) if self.u_max is not None else None,
            "v_min": float(self.v_min) if self.v_min is not None else None,
            "v_max": float(self.v_max) if self.v_max is not None else None,
            "initialized": bool(self.initialized),
        }

    def init_from_json(self, json_str):
        if isinstance(json_str, str):
            json_str = json.loads(json_str)
        self.type = CameraType(int(json_str["type"]))
        self.width = int(json_str["width"])
        self.height = int(json_str["height"])
        self.fx = float(json_str["fx"])
        self.fy = float(json_str["fy"])
        self.cx = float(json_str["cx"])
        self.cy = float(json_str["cy"])
        self.D = np.array(json_str["D"], dtype=float) if json_str["D"] is not None else np.zeros(5)
        self.fps = int(json_str["fps"]) if json_str["fps"] is not None else None
        self.is_rgb = bool(json_str.get("is_rgb", True))
        self.is_distorted = bool(json_str["is_distorted"])
        self.u_min = float(json_str["u_min"])
        self.u_max = float(json_str["u_max"])
        self.v_min = float(json_str["v_min"])
        self.v_max = float(json_str["v_max"])
        self.initialized = bool(json_str["initialized"])
        self.fovx = focal2fov(self.fx, self.width)
        self.fovy = focal2fov(self.fy, self.height)
        self.set_intrinsic_matrices()

    def is_in_image(self, uv, z):
        return (
            (uv[0] >= self.u_min)
            & (uv[0] < self.u_max)
            & (uv[1] >= self.v_min)
            & (uv[1] < self.v_max)
            & (z > 0)
        )

    # input: [Nx2] array of uvs, [Nx1] of zs
    # output: [Nx1] array of visibility flags
    def are_in_image(self, uvs, zs):
        if len(uvs) == 0:
            return np.zeros(0, dtype=bool)
        return CameraUtils.are_in_image_numba(
            np.ascontiguousarray(uvs, dtype=np.float64),
            np.ascontiguousarray(zs, dtype=np.float64),
            self.u_min,
            self.u_max,
            self.v_min,
            self.v_max,
        )


class PinholeCamera(Camera):
    def __init__(self, config=None):
        super().__init__(config)
        self.type = CameraType.PINHOLE

        if config is None:
            return

        self.u_min, self.u_max = 0, self.width
        self.v_min, self.v_max = 0, self.height
        self.init()

    def to_json(self):
        return json.dumps(super().to_json())

    @staticmethod
    def from_json(json_str):
        c = PinholeCamera(None)
        c.init_from_json(json_str)
        return c

    def init(self):
        if not self.initialized:
            self.initialized = True
            self.undistort_image_bounds()

    # project a 3D point or an array of 3D points (w.r.t. camera frame), of shape [Nx3]
    # out: Nx2 image points, [Nx1] array of map point depths
    def project(self, xcs):
        if xcs.ndim == 1:
            xcs = xcs.reshape(1, 3)
        xcs = np.ascontiguousarray(xcs, dtype=np.float64)
        return CameraUtils.project_numba(xcs, self.K)

    # unproject single 2D point uv (pixels on image plane) to 2D normalized point (representing 3D point on z=1 plane)
    def unproject(self, uv):
        x = (uv[0] - self.cx) / self.fx
        y = (uv[1] - self.cy) / self.fy
        return x, y

    # in:  uvs [Nx2]
    # out: xcs array [Nx2] of 2D normalized coordinates (representing 3D points on z=1 plane)
    def unproject_points(self, uvs):
        return CameraUtils.unproject_points(np.asarray(uvs, dtype=np.float64), self.Kinv)

    # in:  uvs [Nx2]
    # out: uvs_undistorted array [Nx2] of undistorted coordinates
    def undistort_points(self, uvs):
        if self.is_distorted and len(uvs) > 0:
            uvs_contiguous = np.ascontiguousarray(uvs[:, :2], dtype=np.float64).reshape((uvs.shape[0], 1, 2))
            uvs_undistorted = cv2.undistortPoints(uvs_contiguous, self.K, self.D, None, self.K)
            return uvs_undistorted.ravel().reshape(uvs_undistorted.shape[0], 2)
        else:
            return uvs

    # update image bounds
    def undistort_image_bounds(self):
        uv_bounds = np.array(
            [
                [self.u_min, self.v_min],
                [self.u_min, self.v_max],
                [self.u_max, self.v_min],
                [self.u_max, self.v_max],
            ],
            dtype=np.float64,
        ).reshape(4, 2)
        if self.is_distorted:
            uv_bounds_undistorted = cv2.undistortPoints(
                np.expand_dims(uv_bounds, axis=1), self.K, self.D, None, self.K
            )
            uv_bounds_undistorted = uv_bounds_undistorted.ravel().reshape(
                uv_bounds_undistorted.shape[0], 2
            )
        else:
            uv_bounds_undistorted = uv_bounds
        self.u_min = min(uv_bounds_undistorted[0][0], uv_bounds_undistorted[1][0])
        self.u_max = max(uv_bounds_undistorted[2][0], uv_bounds_undistorted[3][0])
        self.v_min = min(uv_bounds_undistorted[0][1], uv_bounds_undistorted[2][1])
        self.v_max = max(uv_bounds_undistorted[1][1], uv_bounds_undistorted[3][1])
