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

from monotrack.config_parameters import Parameters
from monotrack.utilities.geom_2views import computeF12, kChi2OneDof
from monotrack.utilities.logging import Printer

from .feature_tracker_shared import FeatureTrackerShared
from .frame import Frame, kNoPoint
from .keyframe import KeyFrame
from .map_point import MapPoint


kMinDistanceFromEpipole = Parameters.kMinDistanceFromEpipole
kMinDistanceFromEpipole2 = kMinDistanceFromEpipole * kMinDistanceFromEpipole


class ProjectionMatcher:
    @staticmethod
    def search_frame_by_projection(*args, **kwargs):
        return _search_frame_by_projection(*args, **kwargs)

    @staticmethod
    def search_map_by_projection(*args, **kwargs):
        return _search_map_by_projection(*args, **kwargs)


class DescriptorMatcher:
    @staticmethod
    def search_frame_by_descriptors(*args, **kwargs):
        return _search_frame_by_descriptors(*args, **kwargs)


class EpipolarMatcher:
    @staticmethod
    def search_frame_for_triangulation(*args, **kwargs):
        return _search_frame_for_triangulation(*args, **kwargs)


# ===================================================================================
# Implementations
# ===================================================================================


# search by projection matches between {map points of f_ref} and {unmatched keypoints of f_cur}
# the found matches are associated to f_cur through its map (f_cur must be in the map)
# out: idxs_ref, idxs_cur, number of found points
def _search_frame_by_projection(
    f_ref: Frame,
    f_cur: Frame,
    max_reproj_distance=Parameters.kMaxReprojectionDistanceFrame,
    max_descriptor_distance=None,
):
    if max_descriptor_distance is None:
        max_descriptor_distance = Parameters.kMaxDescriptorDistanceSearchByProjection

    found_pts_count = 0
    idxs_ref = []
    idxs_cur = []

    empty_result = np.array(idxs_ref, dtype=np.intp), np.array(idxs_cur, dtype=np.intp), 0
    if f_cur.kd is None or f_cur.map is None:
        return empty_result

    # get all matched points of f_ref which are non-outlier
    ref_points = f_ref.get_points()
    matched_ref_idxs = np.array(
        [i for i, p in enumerate(ref_points) if p is not None and not f_ref.outliers[i] and not p.is_bad()],
        dtype=np.intp,
    )
    if len(matched_ref_idxs) == 0:
        return empty_result
    matched_ref_points = ref_points[matched_ref_idxs]

    # project f_ref points on frame f_cur and check if they lie on the image frame
    projs, depths = f_cur.project_map_points(matched_ref_points)
    is_visible = f_cur.are_in_image(projs, depths)

    scale_factors = FeatureTrackerShared.feature_tracker.scale_factors
    ref_octaves = f_ref.octaves[matched_ref_idxs]
    radiuses = max_reproj_distance * scale_factors[ref_octaves]
    kd_cur_idxs = f_cur.kd.query_ball_point(projs[:, :2], radiuses)

    cur_des = f_cur.des
    cur_octaves = f_cur.octaves
    cur_point_ids = f_cur.point_ids
    cur_map = f_cur.map

    for j, (ref_idx, p_ref) in enumerate(zip(matched_ref_idxs, matched_ref_points)):
        if not is_visible[j]:
            continue

        kp_ref_octave = ref_octaves[j]

        best_dist = np.inf
        best_k_idx = -1

        for kd_idx in kd_cur_idxs[j]:
            # we already matched this keypoint => discard it
            if cur_point_ids[kd_idx] != kNoPoint:
                continue

            kp_cur_octave = cur_octaves[kd_idx]
            if kp_cur_octave < (kp_ref_octave - 1) or kp_cur_octave > (kp_ref_octave + 1):
                continue

            descriptor_dist = p_ref.min_des_distance(cur_des[kd_idx])
            if descriptor_dist < best_dist:
                best_dist = descriptor_dist
                best_k_idx = kd_idx

        if best_k_idx > -1 and best_dist < max_descriptor_distance:
            if cur_map.associate(f_cur, best_k_idx, p_ref):
                found_pts_count += 1
                idxs_ref.append(ref_idx)
                idxs_cur.append(best_k_idx)

    return np.array(idxs_ref, dtype=np.intp), np.array(idxs_cur, dtype=np.intp), found_pts_count


# search by projection matches between {input map points} and {unmatched keypoints of f_cur}
# Points that are not visible (outside the image, out of the scale range or with a bad viewing angle),
# bad or already matched in f_cur are skipped. The visible ones get their visibility counter increased.
# out: number of found points, list of matched keypoint idxs in f_cur
def _search_map_by_projection(
    points: list[MapPoint],
    f_cur: Frame,
    max_reproj_distance=Parameters.kMaxReprojectionDistanceMap,
    max_descriptor_distance=None,
    ratio_test=Parameters.kMatchRatioTestMap,
):
    if max_descriptor_distance is None:
        max_descriptor_distance = Parameters.kMaxDescriptorDistance

    if len(points) == 0 or f_cur.kd is None or f_cur.map is None:
        return 0, []

    # check if points are visible
    visibility_flags, projs, depths, dists = f_cur.are_visible(points)

    predicted_levels = MapPoint.predict_detection_levels(points, dists)
    kp_scale_factors = FeatureTrackerShared.feature_tracker.scale_factors[predicted_levels]
    radiuses = max_reproj_distance * kp_scale_factors

    idxs_and_pts = [
        (i, p)
        for i, p in enumerate(points)
        if visibility_flags[i] and not p.is_bad() and p.last_frame_id_seen != f_cur.id and not p.is_in_frame(f_cur)
    ]
    if len(idxs_and_pts) == 0:
        return 0, []

    kd_cur_idxs = f_cur.kd.query_ball_point(projs, radiuses)

    found_pts_count = 0
    found_pts_fidxs = []  # idx of matched points in current frame

    cur_des = f_cur.des
    cur_octaves = f_cur.octaves
    cur_point_ids = f_cur.point_ids
    cur_map = f_cur.map

    for i, p in idxs_and_pts:
        p.increase_visible()

        predicted_level = predicted_levels[i]

        best_dist = np.inf
        best_dist2 = np.inf
        best_level = -1
        best_level2 = -1
        best_k_idx = -1

        # find closest keypoints of f_cur
        for kd_idx in kd_cur_idxs[i]:
            # check there is not already a match
            if cur_point_ids[kd_idx] != kNoPoint:
                continue

            # check detection level
            kp_level = cur_octaves[kd_idx]
            if (kp_level < predicted_level - 1) or (kp_level > predicted_level):
                continue

            descriptor_dist = p.min_des_distance(cur_des[kd_idx])

            if descriptor_dist < best_dist:
                best_dist2 = best_dist
                best_level2 = best_level
                best_dist = descriptor_dist
                best_level = kp_level
                best_k_idx = kd_idx
            elif descriptor_dist < best_dist2:
                best_dist2 = descriptor_dist
                best_level2 = kp_level

        if best_k_idx > -1 and best_dist < max_descriptor_distance:
            # apply match distance ratio test only if the best and second are in the same scale level
            if (best_level2 == best_level) and (best_dist > best_dist2 * ratio_test):
                continue
            if cur_map.associate(f_cur, best_k_idx, p):
                found_pts_count += 1
                found_pts_fidxs.append(best_k_idx)

    return found_pts_count, found_pts_fidxs


# match the keypoint descriptors of f_cur with the keypoints of f_ref (a frame or a keyframe) that are associated
# to good map points; the poses are not used; the matched map points are propagated to f_cur (f_cur must be in the map)
# out: idxs_cur, idxs_ref, number of propagated map points
def _search_frame_by_descriptors(
    f_ref: Frame,
    f_cur: Frame,
    ratio_test=Parameters.kMatchRatioTestFrameByProjection,
    max_descriptor_distance=None,
):
    if max_descriptor_distance is None:
        max_descriptor_distance = 0.5 * Parameters.kMaxDescriptorDistance

    empty_result = np.empty(0, dtype=np.intp), np.empty(0, dtype=np.intp), 0
    ref_points, idxs_ref_points = f_ref.get_matched_good_points_and_idxs()
    if len(idxs_ref_points) == 0 or f_cur.num_keypoints() == 0 or f_cur.map is None:
        return empty_result

    matching_result = FeatureTrackerShared.feature_matcher.match(
        f_cur.des, f_ref.des[idxs_ref_points], ratio_test=ratio_test, max_distance=max_descriptor_distance
    )
    if len(matching_result.idxs1) == 0:
        return empty_result

    idxs_cur = np.asarray(matching_result.idxs1, dtype=np.intp)
    idxs_points = np.asarray(matching_result.idxs2, dtype=np.intp)

    num_found_map_pts = 0
    out_idxs_cur = []
    out_idxs_ref = []
    for idx_cur, idx_point in zip(idxs_cur, idxs_points):
        if f_cur.point_ids[idx_cur] != kNoPoint:
            continue
        p = ref_points[idx_point]
        if f_cur.map.associate(f_cur, idx_cur, p):
            num_found_map_pts += 1
            out_idxs_cur.append(idx_cur)
            out_idxs_ref.append(idxs_ref_points[idx_point])
    return np.array(out_idxs_cur, dtype=np.intp), np.array(out_idxs_ref, dtype=np.intp), num_found_map_pts


# search keypoint matches (for triangulations) between kf1 and kf2
# search for matches between unmatched keypoints (without a corresponding map point)
# in input we have already some pose estimates for kf1 and kf2
# out: idxs1, idxs2, number of found matches
def _search_frame_for_triangulation(
    kf1: KeyFrame,
    kf2: KeyFrame,
    idxs1=None,
    idxs2=None,
    max_descriptor_distance=None,
):
    if max_descriptor_distance is None:
        max_descriptor_distance = 0.5 * Parameters.kMaxDescriptorDistance  # more conservative check

    empty_result = np.empty(0, dtype=np.intp), np.empty(0, dtype=np.intp), 0

    O1w = kf1.Ow()
    O2w = kf2.Ow()
    # compute epipole in the second frame
    e2, _ = kf2.project_point(O1w)

    baseline = np.linalg.norm(O1w - O2w)

    # if the translation is too small we cannot triangulate
    median_depth = kf2.compute_points_median_depth()
    if median_depth == -1:
        Printer.orange("search for triangulation: f2 with negative median depth")
        median_depth = kf1.compute_points_median_depth()
    if median_depth <= 0:
        return empty_result
    ratio_baseline_depth = baseline / median_depth
    if ratio_baseline_depth < Parameters.kMinRatioBaselineDepth:
        Printer.orange("search for triangulation: impossible with too low ratioBaselineDepth!")
        return empty_result

    # compute the fundamental matrix between the two frames by using their estimated poses
    F12 = computeF12(kf1, kf2)

    if idxs1 is None or idxs2 is None:
        matching_result = FeatureTrackerShared.feature_matcher.match(kf1.des, kf2.des)
        idxs1, idxs2 = matching_result.idxs1, matching_result.idxs2

    idxs1 = np.asarray(idxs1, dtype=np.intp)
    idxs2 = np.asarray(idxs2, dtype=np.intp)
    if len(idxs1) == 0:
        return empty_result

    level_sigmas2 = FeatureTrackerShared.feature_tracker.level_sigmas2
    scale_factors = FeatureTrackerShared.feature_tracker.scale_factors

    # only keypoints without a map point are considered
    valid_matches = (kf1.point_ids[idxs1] == kNoPoint) & (kf2.point_ids[idxs2] == kNoPoint)
    idxs1 = idxs1[valid_matches]
    idxs2 = idxs2[valid_matches]
    if len(idxs1) == 0:
        return empty_result

    # filter by descriptor distance
    descriptor_dists = np.asarray(
        FeatureTrackerShared.descriptor_distances(kf1.des[idxs1], kf2.des[idxs2])
    ).ravel()
    good_descriptor = descriptor_dists <= max_descriptor_distance
    idxs1 = idxs1[good_descriptor]
    idxs2 = idxs2[good_descriptor]
    if len(idxs1) == 0:
        return empty_result

    kps1 = kf1.kpsu[idxs1]
    kps2 = kf2.kpsu[idxs2]
    octaves2 = kf2.octaves[idxs2]

    # epipole distance check
    deltas = kps2 - e2
    epipole_distances_sq = np.sum(deltas**2, axis=1)
    good_epipole_distance = epipole_distances_sq >= kMinDistanceFromEpipole2 * scale_factors[octaves2]

    # epipolar constraint check: epipolar lines l2 = kp1' * F12 = [a b c]
    kps1_homogeneous = np.column_stack([kps1, np.ones(len(kps1))])
    epipolar_lines = kps1_homogeneous @ F12
    numerators = epipolar_lines[:, 0] * kps2[:, 0] + epipolar_lines[:, 1] * kps2[:, 1] + epipolar_lines[:, 2]
    denominators = epipolar_lines[:, 0] ** 2 + epipolar_lines[:, 1] ** 2
    valid_denominators = denominators > 1e-20
    dists_sq = np.full(len(numerators), np.inf)
    dists_sq[valid_denominators] = numerators[valid_denominators] ** 2 / denominators[valid_denominators]
    good_epipolar = dists_sq < kChi2OneDof * level_sigmas2[octaves2]

    good = good_epipole_distance & good_epipolar
    final_idxs1 = idxs1[good]
    final_idxs2 = idxs2[good]
    return final_idxs1, final_idxs2, len(final_idxs1)
