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
from monotrack.utilities.geometry import poseRt
from monotrack.utilities.geom_2views import (
    check_homography,
    check_fundamental,
    reconstruct_from_homography,
    reconstruct_from_fundamental,
)
from monotrack.utilities.logging import Printer

from .feature_tracker_shared import FeatureTrackerShared
from .frame import Frame
from .keyframe import KeyFrame


kVerbose = True

kInitializerFeatureMatchRatioTest = Parameters.kInitializerFeatureMatchRatioTest
kSearchWindowSize = Parameters.kInitializerSearchWindowSize


if not kVerbose:

    def print(*args, **kwargs):
        pass


class InitializerOutput(object):
    def __init__(self):
        self.pts = None  # 3d points [Nx3] (world frame = reference camera frame)
        self.kf_cur = None
        self.kf_ref = None
        self.idxs_cur = None
        self.idxs_ref = None
        self.is_homography = False  # was the motion recovered from the homography model?


# Monocular two-view initialization [Mur-Artal et al., ORB-SLAM, Sect. IV]:
# a homography (planar scene) and a fundamental matrix (general scene) are fitted in parallel,
# the model is selected with the score ratio RH = SH/(SH+SF) and the motion is recovered
# from the selected model; the initial map scale is fixed by forcing the median scene depth.
class Initializer(object):
    def __init__(self):
        self.f_ref: Frame | None = None
        self.prev_matched = None  # [Nx2] last matched positions of the reference keypoints (updated at each attempt)

        self.num_min_features = Parameters.kInitializerNumMinFeatures
        self.num_min_matches = Parameters.kInitializerMinMatches
        self.num_min_triangulated_points = Parameters.kInitializerNumMinTriangulatedPoints
        self.sigma = Parameters.kInitializerSigma
        self.num_failures = 0

    def reset(self):
        self.f_ref = None
        self.prev_matched = None

    def has_reference(self):
        return self.f_ref is not None

    # push the first frame (the initial reference)
    # out: False if the frame does not have enough features for being used as reference
    def init(self, f_cur: Frame):
        if f_cur.num_keypoints() <= self.num_min_features:
            Printer.yellow(f"Initializer: frame {f_cur.id} cannot be a reference - not enough features!")
            self.reset()
            return False
        self.f_ref = f_cur
        self.prev_matched = f_cur.kpsu.copy()
        return True

    # the reference is replaced (never accumulated) after a failed attempt
    def replace_reference(self, f_cur: Frame):
        self.num_failures += 1
        self.init(f_cur)

    # find the matches between the reference and the current frame;
    # matches whose current keypoint falls outside the search window around the last matched position are discarded
    def find_matches(self, f_ref: Frame, f_cur: Frame):
        matching_result = FeatureTrackerShared.feature_matcher.match(
            f_ref.des, f_cur.des, ratio_test=kInitializerFeatureMatchRatioTest
        )
        idxs_ref = np.asarray(matching_result.idxs1, dtype=np.intp)
        idxs_cur = np.asarray(matching_result.idxs2, dtype=np.intp)
        if len(idxs_ref) == 0:
            return idxs_ref, idxs_cur
        deltas = np.abs(f_cur.kpsu[idxs_cur] - self.prev_matched[idxs_ref])
        in_window = np.all(deltas <= kSearchWindowSize, axis=1)
        idxs_ref = idxs_ref[in_window]
        idxs_cur = idxs_cur[in_window]
        self.prev_matched[idxs_ref] = f_cur.kpsu[idxs_cur]
        return idxs_ref, idxs_cur

    # fit H21 and F21 and score them
    # out: H21, SH, mask_h, F21, SF, mask_f  (None models are scored 0)
    def fit_models(self, kps_ref, kps_cur):
        H21, SH, mask_h = None, 0.0, None
        F21, SF, mask_f = None, 0.0, None
        try:
            H21, _ = cv2.findHomography(
                kps_ref,
                kps_cur,
                cv2.RANSAC,
                Parameters.kInitializerRansacThreshold,
                confidence=Parameters.kInitializerRansacProb,
            )
        except cv2.error as e:
            Printer.red(f"Initializer: homography fitting failure: {e}")
        try:
            # a planar scene is a degenerate configuration for F
            F21, _ = cv2.findFundamentalMat(
                kps_ref,
                kps_cur,
                cv2.FM_RANSAC,
                Parameters.kInitializerRansacThreshold,
                Parameters.kInitializerRansacProb,
            )
        except cv2.error as e:
            Printer.red(f"Initializer: fundamental matrix fitting failure: {e}")
        if H21 is not None and abs(np.linalg.det(H21)) > 1e-12:
            H12 = np.linalg.inv(H21)
            SH, mask_h = check_homography(H21, H12, kps_ref, kps_cur, self.sigma)
        else:
            H21 = None
        if F21 is not None and F21.shape[0] >= 3:
            F21 = np.ascontiguousarray(F21[:3, :3])
            SF, mask_f = check_fundamental(F21, kps_ref, kps_cur, self.sigma)
        else:
            F21 = None
        return H21, SH, mask_h, F21, SF, mask_f

    # try to initialize the map with the reference frame and the current frame
    # out: InitializerOutput, is_ok
    def initialize(self, f_cur: Frame):
        out = InitializerOutput()
        f_ref = self.f_ref
        if f_ref is None:
            self.init(f_cur)
            return out, False

        print("|------------")
        print(f"Initializer: processing frames: {f_cur.id}, {f_ref.id}")

        # if the current frame does not have enough features, the reference is replaced
        if f_cur.num_keypoints() <= self.num_min_features:
            Printer.yellow("Initializer: ko - not enough features!")
            self.num_failures += 1
            self.reset()
            return out, False

        idxs_ref, idxs_cur = self.find_matches(f_ref, f_cur)
        print(f"Initializer: # keypoint matches: {len(idxs_cur)}")
        if len(idxs_cur) < self.num_min_matches:
            Printer.yellow("Initializer: ko - not enough matches!")
            self.replace_reference(f_cur)
            return out, False

        kps_ref = np.ascontiguousarray(f_ref.kpsu[idxs_ref], dtype=np.float64)
        kps_cur = np.ascontiguousarray(f_cur.kpsu[idxs_cur], dtype=np.float64)
        kpsn_ref = np.ascontiguousarray(f_ref.kpsn[idxs_ref], dtype=np.float64)
        kpsn_cur = np.ascontiguousarray(f_cur.kpsn[idxs_cur], dtype=np.float64)

        H21, SH, mask_h, F21, SF, mask_f = self.fit_models(kps_ref, kps_cur)
        if SH + SF <= 0:
            Printer.yellow("Initializer: ko - no model found!")
            self.replace_reference(f_cur)
            return out, False

        RH = SH / (SH + SF)
        print(f"Initializer: SH: {SH:.1f}, SF: {SF:.1f}, RH: {RH:.3f}")
        K = f_cur.camera.K
        reconstruction_args = (
            K,
            kps_ref,
            kps_cur,
            kpsn_ref,
            kpsn_cur,
        )
        reconstruction_params = dict(
            sigma=self.sigma,
            min_parallax_deg=Parameters.kInitializerMinParallaxDeg,
            min_triangulated=self.num_min_triangulated_points,
            cos_max_parallax=Parameters.kCosMaxParallaxInitializer,
        )
        if RH > Parameters.kInitializerRatioHomography and H21 is not None:
            out.is_homography = True
            reconstruction = reconstruct_from_homography(H21, *reconstruction_args, mask=mask_h, **reconstruction_params)
        elif F21 is not None:
            reconstruction = reconstruct_from_fundamental(F21, *reconstruction_args, mask=mask_f, **reconstruction_params)
        else:
            reconstruction = None

        if reconstruction is None:
            Printer.yellow("Initializer: ko - degenerate geometry (not enough parallax or ambiguous motion)")
            self.replace_reference(f_cur)
            return out, False

        good = reconstruction.triangulated
        pts3d = reconstruction.points3d[good]
        if len(pts3d) < self.num_min_triangulated_points:
            Printer.yellow(f"Initializer: ko - not enough triangulated points: {len(pts3d)}")
            self.replace_reference(f_cur)
            return out, False

        # set scene median depth to equal the desired median depth
        median_depth = np.median(pts3d[:, 2])
        if median_depth <= 0:
            Printer.yellow("Initializer: ko - negative median depth")
            self.replace_reference(f_cur)
            return out, False
        depth_scale = Parameters.kInitializerDesiredMedianDepth / median_depth
        print(f"Initializer: forcing current median depth {median_depth} to {Parameters.kInitializerDesiredMedianDepth}")

        t21 = np.asarray(reconstruction.t21, dtype=np.float64).ravel() * depth_scale
        R21 = np.ascontiguousarray(reconstruction.R21, dtype=np.float64)

        f_ref.update_pose(np.eye(4))
        f_cur.update_pose(poseRt(R21, t21))

        out.pts = pts3d * depth_scale
        out.kf_ref = KeyFrame(f_ref)
        out.kf_cur = KeyFrame(f_cur)
        out.idxs_ref = idxs_ref[good]
        out.idxs_cur = idxs_cur[good]

        Printer.green(f"Initializer: ok! model: {'H' if out.is_homography else 'F'}, # triangulated points: {len(out.pts)}")
        return out, True
