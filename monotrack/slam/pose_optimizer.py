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

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer
from monotrack.utilities.geometry import poseRt

from .feature_tracker_shared import FeatureTrackerShared

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .frame import Frame


kChi2Mono = Parameters.kChi2Mono  # chi-squared 2 DOFs
kMinDepth = Parameters.kMinDepth


# optimize the pose of the frame by using its matched map points as fixed 3D references
# input:
# - frame with its current pose as first guess
# output:
# - mean_squared_error
# - is_ok: is the pose optimization successful?
# - num_valid_points: number of inliers detected by the optimization
# The frame outlier flags are updated: after each round, observations are classified as inliers/outliers;
# at the next round, outliers are not included, but at the end they can be classified as inliers again.
# N.B.: access frames from tracking thread, no need to lock frame fields
def pose_optimization(frame: "Frame", verbose=False, rounds=Parameters.kPoseOptimizationNumRounds):
    points = frame.get_points()
    idxs = np.array([i for i, p in enumerate(points) if p is not None and not p.is_bad()], dtype=np.intp)
    frame.outliers[idxs] = False

    num_point_edges = len(idxs)
    if num_point_edges < Parameters.kPoseOptimizationMinNumPoints:
        Printer.red("pose_optimization: not enough correspondences!")
        return 0, False, 0

    points3d = np.ascontiguousarray([points[i].pt() for i in idxs], dtype=np.float64).reshape(-1, 3)
    kpsu = np.ascontiguousarray(frame.kpsu[idxs], dtype=np.float64).reshape(-1, 2)
    inv_sigmas2 = FeatureTrackerShared.feature_tracker.inv_level_sigmas2[frame.octaves[idxs]]
    K = frame.camera.K

    Tcw = frame.Tcw()
    rvec, _ = cv2.Rodrigues(Tcw[:3, :3])
    tvec = Tcw[:3, 3].reshape(3, 1).copy()

    is_inlier = np.full(num_point_edges, True, dtype=bool)
    chi2s = np.zeros(num_point_edges)
    for it in range(rounds):
        num_inliers = int(np.count_nonzero(is_inlier))
        if num_inliers < Parameters.kPoseOptimizationMinNumPoints:
            Printer.red("pose_optimization: stopped - not enough inliers!")
            break
        try:
            ok, rvec_opt, tvec_opt = cv2.solvePnP(
                points3d[is_inlier],
                kpsu[is_inlier],
                K,
                None,
                rvec=rvec.copy(),
                tvec=tvec.copy(),
                useExtrinsicGuess=True,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            Printer.red(f"pose_optimization: solvePnP failure: {e}")
            return 0, False, 0
        if not ok:
            Printer.red("pose_optimization: solvePnP did not converge")
            return 0, False, 0
        rvec, tvec = rvec_opt, tvec_opt

        # classify all the observations (also the ones excluded in this round)
        Rcw, _ = cv2.Rodrigues(rvec)
        pcs = points3d @ Rcw.T + tvec.ravel()
        zs = pcs[:, 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            uvs = (K[:2, :2] @ (pcs[:, :2] / zs[:, None]).T).T + K[:2, 2]
        errs2 = np.sum((uvs - kpsu) ** 2, axis=1)
        chi2s = errs2 * inv_sigmas2
        is_inlier = (zs > kMinDepth) & np.isfinite(chi2s) & (chi2s <= kChi2Mono)
        if verbose:
            print(f"pose optimization: round {it}, #inliers: {np.count_nonzero(is_inlier)}")

    frame.outliers[idxs] = ~is_inlier

    num_valid_points = int(np.count_nonzero(is_inlier))
    num_bad_point_edges = num_point_edges - num_valid_points
    if verbose:
        print(f"pose optimization: available {num_point_edges} points, found {num_bad_point_edges} bad points")

    is_ok = True
    if num_valid_points < Parameters.kNumMinInliersPoseOptimizationTrackFrame:
        Printer.red("pose_optimization: not enough edges!")
        is_ok = False

    # update pose estimation
    Rcw, _ = cv2.Rodrigues(rvec)
    frame.update_pose(poseRt(Rcw, tvec.ravel()))

    mean_squared_error = float(np.mean(chi2s[is_inlier])) if num_valid_points > 0 else -1
    return mean_squared_error, is_ok, num_valid_points
