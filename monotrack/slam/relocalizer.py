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
from monotrack.utilities.logging import Printer, Logging
from monotrack.utilities.geometry import poseRt
from monotrack.utilities.timer import TimerFps

from .feature_tracker_shared import FeatureTrackerShared
from .frame import Frame
from .keyframe import KeyFrame
from .geometry_matchers import ProjectionMatcher
from .pose_optimizer import pose_optimization
from .place_recognition import KeyFrameDatabase


kVerbose = True
kTimerVerbose = False  # set this to True if you want to print timings

kPnPRansacConfidence = 0.99
kNumMinInliersForFineSearch = 30


# Relocalizer working on the candidates returned by the keyframe database:
# for each candidate keyframe, the frame keypoints are matched with the keyframe map points,
# a PnP RANSAC solution is computed and refined by pose optimization; if needed, more map points
# are searched by projection (first in a coarse and then in a fine window) and the pose is optimized again.
class Relocalizer:
    print = staticmethod(lambda *args, **kwargs: None)  # Default: no-op
    logger = None

    def __init__(self, keyframe_database: KeyFrameDatabase = None):
        self.keyframe_database = keyframe_database
        self.timer = TimerFps("Relocalizer", is_verbose=kTimerVerbose)
        self.init_print()

    def init_print(self):
        if kVerbose:
            if Parameters.kRelocalizationDebugAndPrintToFile:
                # redirect the prints of relocalization to the file logs/relocalization.log
                # you can watch the output in separate shell by running:
                # $ tail -f logs/relocalization.log
                logging_file = Parameters.kLogsFolder + "/relocalization.log"
                Relocalizer.logger = Logging.setup_file_logger(
                    "relocalization_logger", logging_file, formatter=Logging.simple_log_formatter
                )

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)  # Convert all arguments to strings and join with spaces
                    return Relocalizer.logger.info(message)

            else:

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)
                    return print(message, **kwargs)

            Relocalizer.print = staticmethod(print_file)

    def detect_candidates(self, frame: Frame):
        if self.keyframe_database is None:
            return []
        return self.keyframe_database.detect_relocalization_candidates(
            frame, max_num_candidates=Parameters.kRelocalizationMaxNumCandidates
        )

    # the frame must be in the map (the found associations are registered through it)
    # out: True if the frame pose has been recovered (frame.kf_ref is set to the matched keyframe)
    def relocalize(self, frame: Frame, candidates: list[KeyFrame] = None):
        if candidates is None:
            candidates = self.detect_candidates(frame)
        if len(candidates) == 0:
            Relocalizer.print(f"Relocalizer: no candidates with frame {frame.id}")
            return False
        Relocalizer.print(f"Relocalizer: candidates for frame {frame.id}: {[kf.id for kf in candidates]}")

        self.timer.start()
        success = False
        for kf in candidates:
            if kf.id == frame.id or kf.is_bad():
                continue
            if self.relocalize_with_keyframe(frame, kf):
                success = True
                break
        self.timer.refresh()

        if success:
            Relocalizer.print(f"Relocalizer: success with frame {frame.id} and keyframe {frame.kf_ref.id}")
        else:
            Relocalizer.print(f"Relocalizer: failure with frame {frame.id}")
        return success

    # out: True if the frame pose has been recovered with the given keyframe;
    #      on failure, the frame pose and associations are restored
    def relocalize_with_keyframe(self, frame: Frame, kf: KeyFrame):
        pose_original = frame.pose()

        def restore():
            frame.update_pose(pose_original)
            frame.reset_points()

        kf_points, idxs_kf = kf.get_matched_good_points_and_idxs()
        if len(kf_points) < Parameters.kRelocalizationMinKpsMatches or frame.num_keypoints() == 0:
            Relocalizer.print(f"Relocalizer: skipping keyframe {kf.id} with too few points ({len(kf_points)})")
            return False

        # match the frame keypoints with the keyframe keypoints that correspond to good map points
        matching_result = FeatureTrackerShared.feature_matcher.match(
            frame.des,
            kf.des[idxs_kf],
            ratio_test=Parameters.kRelocalizationFeatureMatchRatioTest,
            max_distance=Parameters.kMaxDescriptorDistance,
        )
        idxs_frame = np.asarray(matching_result.idxs1, dtype=np.intp)
        idxs_points = np.asarray(matching_result.idxs2, dtype=np.intp)
        num_matches = len(idxs_frame)
        Relocalizer.print(f"Relocalizer: num_matches ({frame.id},{kf.id}): {num_matches}")
        if num_matches < Parameters.kRelocalizationMinKpsMatches:
            return False

        points_3d_w = np.ascontiguousarray([kf_points[j].pt() for j in idxs_points], dtype=np.float64).reshape(-1, 3)
        points_2d = np.ascontiguousarray(frame.kpsu[idxs_frame], dtype=np.float64).reshape(-1, 2)
        try:
            ok, rvec, tvec, inliers = cv2.solvePnPRansac(
                points_3d_w,
                points_2d,
                frame.camera.K,
                None,
                iterationsCount=Parameters.kRelocalizationPnPRansacIterations,
                reprojectionError=Parameters.kRelocalizationPnPReprojectionError,
                confidence=kPnPRansacConfidence,
                flags=cv2.SOLVEPNP_EPNP,
            )
        except cv2.error as e:
            Printer.red(f"Relocalizer: solvePnPRansac failure with keyframe {kf.id}: {e}")
            return False
        if not ok or inliers is None or len(inliers) < Parameters.kRelocalizationPoseOpt1MinMatches:
            Relocalizer.print(f"Relocalizer: no PnP solution with keyframe {kf.id}")
            return False
        inliers = inliers.ravel()

        Rcw, _ = cv2.Rodrigues(rvec)
        frame.update_pose(poseRt(Rcw, tvec.ravel()))

        # associate the PnP inliers
        frame.reset_points()
        for k in inliers:
            frame.map.associate(frame, idxs_frame[k], kf_points[idxs_points[k]])

        mean_pose_opt_chi2_error, pose_is_ok, num_matched_map_points = pose_optimization(frame, verbose=False)
        Relocalizer.print(
            f"Relocalizer: pos opt1: error^2: {mean_pose_opt_chi2_error}, ok: {pose_is_ok}, #inliers: {num_matched_map_points}"
        )
        if not pose_is_ok or num_matched_map_points < Parameters.kRelocalizationPoseOpt1MinMatches:
            restore()
            return False
        frame.clean_outlier_map_points()

        # if few inliers, search by projection in a coarse window and optimize again
        if num_matched_map_points < Parameters.kRelocalizationDoPoseOpt2NumInliers:
            num_new_found_map_points, _ = ProjectionMatcher.search_map_by_projection(
                kf_points,
                frame,
                max_reproj_distance=Parameters.kRelocalizationMaxReprojectionDistanceMapSearchCoarse,
                max_descriptor_distance=Parameters.kMaxDescriptorDistance,
                ratio_test=Parameters.kRelocalizationFeatureMatchRatioTestLarge,
            )
            if num_matched_map_points + num_new_found_map_points < Parameters.kRelocalizationDoPoseOpt2NumInliers:
                restore()
                return False

            pose_before = frame.pose()
            mean_pose_opt_chi2_error, pose_is_ok, num_matched_map_points = pose_optimization(frame, verbose=False)
            Relocalizer.print(
                f"Relocalizer: pos opt2: error^2: {mean_pose_opt_chi2_error}, ok: {pose_is_ok}, #inliers: {num_matched_map_points}"
            )
            if not pose_is_ok:
                restore()
                return False

            # if many inliers but still not enough, search by projection again in a narrower window
            # (the camera has been already optimized with many points)
            if kNumMinInliersForFineSearch < num_matched_map_points < Parameters.kRelocalizationDoPoseOpt2NumInliers:
                frame.clean_outlier_map_points()
                num_new_found_map_points, _ = ProjectionMatcher.search_map_by_projection(
                    kf_points,
                    frame,
                    max_reproj_distance=Parameters.kRelocalizationMaxReprojectionDistanceMapSearchFine,
                    max_descriptor_distance=0.7 * Parameters.kMaxDescriptorDistance,
                    ratio_test=Parameters.kRelocalizationFeatureMatchRatioTestLarge,
                )
                # final optimization
                if num_matched_map_points + num_new_found_map_points >= Parameters.kRelocalizationDoPoseOpt2NumInliers:
                    pose_before = frame.pose()
                    mean_pose_opt_chi2_error, pose_is_ok, num_matched_map_points = pose_optimization(frame, verbose=False)
                    Relocalizer.print(
                        f"Relocalizer: pos opt3: error^2: {mean_pose_opt_chi2_error}, ok: {pose_is_ok}, #inliers: {num_matched_map_points}"
                    )
                    if not pose_is_ok:
                        frame.update_pose(pose_before)

        if not pose_is_ok or num_matched_map_points < Parameters.kRelocalizationDoPoseOpt2NumInliers:
            restore()
            return False

        frame.clean_outlier_map_points()
        frame.kf_ref = kf
        return True
