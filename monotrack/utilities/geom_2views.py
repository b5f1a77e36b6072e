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

import math
import numpy as np
import cv2

from .geometry import skew, poseRt
from .geom_triangulation import triangulate_normalized_points

from numba import njit


kChi2OneDof = 3.841  # inverse cumulative chi-square for 1 DOF at 95%
kChi2TwoDofs = 5.991  # inverse cumulative chi-square for 2 DOFs at 95%


# Score a homography H21 (x2 = H21*x1, H12 = H21^-1) with the symmetric transfer error.
# Returns the score and the inlier mask. [Mur-Artal et al., ORB-SLAM, Sect. IV.2]
@njit(cache=True)
def check_homography(H21, H12, kps1, kps2, sigma):
    th = kChi2TwoDofs
    inv_sigma2 = 1.0 / (sigma * sigma)
    N = kps1.shape[0]
    score = 0.0
    inliers = np.ones(N, dtype=np.bool_)
    for i in range(N):
        u1 = kps1[i, 0]
        v1 = kps1[i, 1]
        u2 = kps2[i, 0]
        v2 = kps2[i, 1]

        # reprojection error in the first image: x2in1 = H12*x2
        w2in1 = H12[2, 0] * u2 + H12[2, 1] * v2 + H12[2, 2]
        if w2in1 == 0.0:
            inliers[i] = False
            continue
        u2in1 = (H12[0, 0] * u2 + H12[0, 1] * v2 + H12[0, 2]) / w2in1
        v2in1 = (H12[1, 0] * u2 + H12[1, 1] * v2 + H12[1, 2]) / w2in1
        chi2_1 = ((u1 - u2in1) ** 2 + (v1 - v2in1) ** 2) * inv_sigma2
        if chi2_1 > th:
            inliers[i] = False
        else:
            score += th - chi2_1

        # reprojection error in the second image: x1in2 = H21*x1
        w1in2 = H21[2, 0] * u1 + H21[2, 1] * v1 + H21[2, 2]
        if w1in2 == 0.0:
            inliers[i] = False
            continue
        u1in2 = (H21[0, 0] * u1 + H21[0, 1] * v1 + H21[0, 2]) / w1in2
        v1in2 = (H21[1, 0] * u1 + H21[1, 1] * v1 + H21[1, 2]) / w1in2
        chi2_2 = ((u2 - u1in2) ** 2 + (v2 - v1in2) ** 2) * inv_sigma2
        if chi2_2 > th:
            inliers[i] = False
        else:
            score += th - chi2_2
    return score, inliers


# Score a fundamental matrix F21 (x2^T*F21*x1 = 0) with the distances of the points from the epipolar lines.
# Returns the score and the inlier mask.
@njit(cache=True)
def check_fundamental(F21, kps1, kps2, sigma):
    th = kChi2OneDof
    th_score = kChi2TwoDofs
    inv_sigma2 = 1.0 / (sigma * sigma)
    N = kps1.shape[0]
    score = 0.0
    inliers = np.ones(N, dtype=np.bool_)
    for i in range(N):
        u1 = kps1[i, 0]
        v1 = kps1[i, 1]
        u2 = kps2[i, 0]
        v2 = kps2[i, 1]

        # epipolar line in the second image l2 = F21*x1 = (a2,b2,c2)
        a2 = F21[0, 0] * u1 + F21[0, 1] * v1 + F21[0, 2]
        b2 = F21[1, 0] * u1 + F21[1, 1] * v1 + F21[1, 2]
        c2 = F21[2, 0] * u1 + F21[2, 1] * v1 + F21[2, 2]
        den2 = a2 * a2 + b2 * b2
        if den2 == 0.0:
            inliers[i] = False
            continue
        num2 = a2 * u2 + b2 * v2 + c2
        chi2_1 = num2 * num2 / den2 * inv_sigma2
        if chi2_1 > th:
            inliers[i] = False
        else:
            score += th_score - chi2_1

        # epipolar line in the first image l1 = x2^T*F21 = (a1,b1,c1)
        a1 = F21[0, 0] * u2 + F21[1, 0] * v2 + F21[2, 0]
        b1 = F21[0, 1] * u2 + F21[1, 1] * v2 + F21[2, 1]
        c1 = F21[0, 2] * u2 + F21[1, 2] * v2 + F21[2, 2]
        den1 = a1 * a1 + b1 * b1
        if den1 == 0.0:
            inliers[i] = False
            continue
        num1 = a1 * u1 + b1 * v1 + c1
        chi2_2 = num1 * num1 / den1 * inv_sigma2
        if chi2_2 > th:
            inliers[i] = False
        else:
            score += th_score - chi2_2
    return score, inliers


class TwoViewReconstruction:
    """Output of a two-view motion hypothesis check (all arrays aligned with the input matches)."""

    def __init__(self, R21=None, t21=None, points3d=None, triangulated=None, num_good=0, parallax_deg=0.0):
        self.R21 = R21
        self.t21 = t21
        self.points3d = points3d  # [Nx3] in the first camera frame
        self.triangulated = triangulated  # [N] bool
        self.num_good = num_good
        self.parallax_deg = parallax_deg


# Triangulate the matches with the hypothesis (R21, t21) and count the points that are in front of both cameras
# with a small reprojection error. The first camera is the reference [I|0].
def check_rt(R21, t21, kps1, kps2, kpsn1, kpsn2, K, mask, th2, cos_max_parallax):
    N = kps1.shape[0]
    t21 = np.asarray(t21, dtype=np.float64).ravel()
    pose_1w = np.eye(4)
    pose_2w = poseRt(np.ascontiguousarray(R21, dtype=np.float64), t21)
    with np.errstate(divide="ignore", invalid="ignore"):
        points3d, _ = triangulate_normalized_points(pose_1w, pose_2w, kpsn1, kpsn2)

        finite = np.all(np.isfinite(points3d), axis=1)
        O2 = -R21.T @ t21  # second camera center in the first camera frame
        normal1 = points3d
        normal2 = points3d - O2
        dist1 = np.linalg.norm(normal1, axis=1)
        dist2 = np.linalg.norm(normal2, axis=1)
        cos_parallax = np.sum(normal1 * normal2, axis=1) / (dist1 * dist2)
        low_parallax = cos_parallax >= cos_max_parallax

        z1 = points3d[:, 2]
        points_c2 = points3d @ R21.T + t21
        z2 = points_c2[:, 2]
        depth_ok = ((z1 > 0) | low_parallax) & ((z2 > 0) | low_parallax)

        fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
        uv1 = np.stack([fx * points3d[:, 0] / z1 + cx, fy * points3d[:, 1] / z1 + cy], axis=1)
        uv2 = np.stack([fx * points_c2[:, 0] / z2 + cx, fy * points_c2[:, 1] / z2 + cy], axis=1)
        err1 = np.sum((uv1 - kps1) ** 2, axis=1)
        err2 = np.sum((uv2 - kps2) ** 2, axis=1)
        reproj_ok = (err1 <= th2) & (err2 <= th2)

    good = mask & finite & depth_ok & reproj_ok
    num_good = int(np.count_nonzero(good))
    triangulated = good & ~low_parallax

    parallax_deg = 0.0
    if num_good > 0:
        cos_sorted = np.sort(cos_parallax[good])
        idx = min(50, num_good - 1)
        parallax_deg = math.degrees(math.acos(float(np.clip(cos_sorted[idx], -1.0, 1.0))))
    return TwoViewReconstruction(R21, t21, points3d, triangulated, num_good, parallax_deg)


# Recover the motion from the homography H21 by checking all the decompositions [Faugeras, Malis].
# The hypotheses are ranked by the number of points triangulated in front of both cameras with enough parallax.
# Returns None if the best hypothesis is not clearly better than the others.
def reconstruct_from_homography(
    H21, K, kps1, kps2, kpsn1, kpsn2, mask, sigma, min_parallax_deg, min_triangulated, cos_max_parallax
):
    N = int(np.count_nonzero(mask))
    num_solutions, Rs, ts, _ = cv2.decomposeHomographyMat(H21, K)
    th2 = 4.0 * sigma * sigma
    reconstructions = [
        check_rt(Rs[i], ts[i], kps1, kps2, kpsn1, kpsn2, K, mask, th2, cos_max_parallax)
        for i in range(num_solutions)
    ]
    if len(reconstructions) == 0:
        return None
    num_triangulated = [int(np.count_nonzero(r.triangulated)) for r in reconstructions]
    order = np.argsort(num_triangulated)[::-1]
    best = reconstructions[order[0]]
    best_triangulated = num_triangulated[order[0]]
    second_best_triangulated = num_triangulated[order[1]] if len(order) > 1 else 0
    if (
        second_best_triangulated < 0.75 * best_triangulated
        and best.parallax_deg >= min_parallax_deg
        and best_triangulated > min_triangulated
        and best.num_good > 0.9 * N
    ):
        return best
    return None


# Recover the motion from the fundamental matrix F21 through the essential matrix E21 = K^T*F21*K.
# Returns None if no hypothesis is clearly the winner or the parallax is not enough.
def reconstruct_from_fundamental(
    F21, K, kps1, kps2, kpsn1, kpsn2, mask, sigma, min_parallax_deg, min_triangulated, cos_max_parallax
):
    N = int(np.count_nonzero(mask))
    E21 = K.T @ F21 @ K
    R1, R2, t = cv2.decomposeEssentialMat(E21)
    t = t.ravel()
    th2 = 4.0 * sigma * sigma
    reconstructions = [
        check_rt(R, tt, kps1, kps2, kpsn1, kpsn2, K, mask, th2, cos_max_parallax)
        for R, tt in ((R1, t), (R2, t), (R1, -t), (R2, -t))
    ]
    max_good = max(r.num_good for r in reconstructions)
    min_good = max(int(0.9 * N), min_triangulated)
    num_similar = sum(1 for r in reconstructions if r.num_good > 0.7 * max_good)
    if max_good < min_good or num_similar > 1:
        return None
    best = max(reconstructions, key=lambda r: r.num_good)
    if best.parallax_deg > min_parallax_deg:
        return best
    return None


@njit(cache=True)
def computeF12_numba(R1w, t1w, R2w, t2w, K1inv, K2inv):
    R12 = R1w @ R2w.T
    t12 = -R1w @ (R2w.T @ t2w) + t1w
    t12x = skew(t12)
    F12 = ((K1inv.T @ t12x) @ R12) @ K2inv
    return F12


# compute the fundamental mat F12 [Hartley Zisserman pag 339] from two frames
def computeF12(f1, f2):
    f1_Tcw = f1.Tcw()
    f2_Tcw = f2.Tcw()
    R1w = np.ascontiguousarray(f1_Tcw[:3, :3])
    t1w = np.ascontiguousarray(f1_Tcw[:3, 3])
    R2w = np.ascontiguousarray(f2_Tcw[:3, :3])
    t2w = np.ascontiguousarray(f2_Tcw[:3, 3])
    return computeF12_numba(R1w, t1w, R2w, t2w, f1.camera.Kinv, f2.camera.Kinv)


@njit(cache=True)
def check_dist_epipolar_line(kp1, kp2, F12, sigma2_kp2):
    # epipolar line in second image l = kp1' * F12 = [a b c]
    l = np.dot(F12.T, np.array([kp1[0], kp1[1], 1.0]))
    num = l[0] * kp2[0] + l[1] * kp2[1] + l[2]  # kp1' * F12 * kp2
    den = l[0] * l[0] + l[1] * l[1]  # a*a+b*b
    if den == 0:
        return False
    dist_sqr = num * num / den  # squared (minimum) distance of kp2 from the epipolar line l
    return dist_sqr < kChi2OneDof * sigma2_kp2  # value of inverse cumulative chi-square for 1 DOF (Hartley Zisserman pag 567)
