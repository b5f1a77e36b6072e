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


# Triangulate the matched normalized keypoints kpn_1 and kpn_2 ([Nx2] arrays) observed from the poses
# pose_1w and pose_2w ([4x4] Tcw). Returns the [Nx3] world points and the indexes of the points
# with a valid (non-zero) homogeneous coordinate.
def triangulate_normalized_points(pose_1w, pose_2w, kpn_1, kpn_2):
    # since we are working with normalized coordinates x_hat = Kinv*x, the projection matrices are just [Riw, tiw]
    P1w = np.ascontiguousarray(pose_1w[:3, :], dtype=np.float64)
    P2w = np.ascontiguousarray(pose_2w[:3, :], dtype=np.float64)
    if len(kpn_1) == 0:
        return np.empty((0, 3), dtype=np.float64), np.empty(0, dtype=np.intp)

    point_4d_hom = cv2.triangulatePoints(
        P1w, P2w, np.ascontiguousarray(kpn_1.T, dtype=np.float64), np.ascontiguousarray(kpn_2.T, dtype=np.float64)
    )
    good_pts_mask = np.where(point_4d_hom[3] != 0)[0]
    point_4d = point_4d_hom / point_4d_hom[3]

    points_3d = point_4d[:3, :].T
    return points_3d, good_pts_mask
