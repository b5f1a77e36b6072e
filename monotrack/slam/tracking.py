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

import time

from threading import RLock, Lock

from monotrack.config_parameters import Parameters

from .frame import Frame
from .keyframe import KeyFrame
from .slam_commons import TrackingState
from .initializer import Initializer
from .motion_model import MotionModel, MotionModelDamping
from .pose_optimizer import pose_optimization
from .geometry_matchers import ProjectionMatcher, DescriptorMatcher
from .feature_tracker_shared import FeatureTrackerShared

from monotrack.utilities.logging import Printer, Logging, colored_state
from monotrack.utilities.timer import TimerFps
from monotrack.utilities.geometry import inv_T

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    # Only imported when type checking, not at runtime
    from .slam import Slam
    from .map import Map
    from .local_map import LocalMap
    from .local_mapping import LocalMapping


kVerbose = True
kTimerVerbose = False

kTrackingDebugAndPrintToFile = Parameters.kTrackingDebugAndPrintToFile

kNumMinObsForKeyFrameDefault = Parameters.kNumMinObsForKeyFrameTrackedPoints


class TrackingHistory(object):
    def __init__(self):
        self.relative_frame_poses = []  # list of relative frame poses Tcr [4x4] w.r.t reference keyframes
        self.kf_references = []  # list of reference keyframes
        self.timestamps = []  # list of frame timestamps
        self.ids = []  # list of frame ids
        self.tracking_states = []  # list of tracking states

    def reset(self):
        self.relative_frame_poses.clear()
        self.kf_references.clear()
        self.timestamps.clear()
        self.ids.clear()
        self.tracking_states.clear()

    def __len__(self):
        return len(self.relative_frame_poses)

    # recover the camera trajectory from the current (possibly refined) poses of the reference keyframes
    # out: list of (timestamp, Twc [4x4])
    def get_trajectory(self):
        trajectory = []
        for Tcr, kf_ref, timestamp in zip(self.relative_frame_poses, self.kf_references, self.timestamps):
            trajectory.append((timestamp, inv_T(Tcr @ kf_ref.Tcw())))
        return trajectory


# The tracking orchestrator. It drives the frames through the initialization, the frame-to-frame and
# frame-to-local-map tracking, the relocalization and decides the keyframe insertion.
#  - The tracking lock guards a whole processing cycle (one frame).
#  - The tracking state and the forced relocalization flag have their own locks: they can be read/set
#    by the other threads without waiting for a full cycle.
#  - Resets requested by the other threads are executed at the start of a cycle (see Slam.reset_if_requested()).
class Tracking:
    print = staticmethod(lambda *args, **kwargs: None)  # Default: no-op

    def __init__(self, slam: "Slam"):
        self.slam = slam

        self.initializer = Initializer()

        if Parameters.kUseMotionModelDamping:
            self.motion_model = MotionModelDamping(damping=Parameters.kMotionModelDampingFactor)
        else:
            self.motion_model = MotionModel()  # motion model for current frame pose prediction without damping

        self.descriptor_distance_sigma = Parameters.kMaxDescriptorDistance
        if FeatureTrackerShared.feature_tracker is not None:
            self.descriptor_distance_sigma = FeatureTrackerShared.feature_tracker.max_descriptor_distance

        fps = slam.camera.fps if slam.camera is not None else None
        if Parameters.kMaxFramesBetweenKfs is not None:
            self.max_frames_between_kfs = int(Parameters.kMaxFramesBetweenKfs)
        else:
            self.max_frames_between_kfs = int(fps) if fps is not None else 1
        self.min_frames_between_kfs = Parameters.kMinFramesBetweenKfs

        self._lock = RLock()  # tracking lock: one full processing cycle
        self._state_lock = Lock()
        self._state = TrackingState.SYSTEM_NOT_READY
        self.last_processed_state = TrackingState.SYSTEM_NOT_READY

        self._force_relocalisation_lock = Lock()
        self._force_relocalisation = False

        self.num_matched_kps = None  # current number of matched keypoints
        self.num_matched_map_points = None  # current number of matched map points
        self.num_matched_map_points_in_last_pose_opt = None
        self.num_kf_ref_tracked_points = None  # number of tracked points in kf_ref (considering a minimum number of observations)
        self.num_initial_map_points = 0

        self.last_reloc_frame_id = -float("inf")
        self.num_relocalizations = 0

        self.pose_is_ok = False
        self.mean_pose_opt_chi2_error = None
        self.predicted_pose = None

        self.f_cur: Frame | None = None
        self.f_ref: Frame | None = None

        self.kf_ref: KeyFrame | None = None  # reference keyframe
        self.kf_last: KeyFrame | None = None  # last inserted keyframe

        self.tracking_history = TrackingHistory()

        self.timer_verbose = kTimerVerbose  # set this to True if you want to print timings
        self.timer_main_track = TimerFps("Track", is_verbose=self.timer_verbose)
        self.timer_pose_opt = TimerFps("Pose optimization", is_verbose=self.timer_verbose)
        self.timer_seach_frame_proj = TimerFps("Search frame by proj", is_verbose=self.timer_verbose)
        self.timer_seach_map = TimerFps("Search map", is_verbose=self.timer_verbose)
        self.timer_frame = TimerFps("Frame", is_verbose=self.timer_verbose)

        self.time_track = None

        self.init_print()

    def init_print(self):
        if kVerbose:
            if kTrackingDebugAndPrintToFile:
                # redirect the prints of tracking to the file logs/tracking.log
                # you can watch the output in separate shell by running:
                # $ tail -f logs/tracking.log
                logging_file = Parameters.kLogsFolder + "/tracking.log"
                Tracking.local_logger = Logging.setup_file_logger(
                    "tracking_logger", logging_file, formatter=Logging.simple_log_formatter
                )

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)
                    return Tracking.local_logger.info(message)

            else:

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)
                    return print(message, **kwargs)

            Tracking.print = staticmethod(print_file)

    @property
    def map(self) -> "Map":
        return self.slam.map

    @property
    def local_map(self) -> "LocalMap":
        return self.slam.local_map

    @property
    def local_mapping(self) -> "LocalMapping":
        return self.slam.local_mapping

    @property
    def camera(self):
        return self.slam.camera

    @property
    def lock(self):
        return self._lock

    # the state can be read without waiting for the end of the current cycle
    @property
    def state(self) -> TrackingState:
        with self._state_lock:
            return self._state

    # the state is changed only by the orchestrator (under the tracking lock)
    @state.setter
    def state(self, new_state: TrackingState):
        with self._state_lock:
            old_state = self._state
            self._state = new_state
        if old_state != new_state:
            print(f"Tracking: state {colored_state(old_state)} -> {colored_state(new_state)}")
            Tracking.print(f"Tracking: state {old_state.name} -> {new_state.name}")

    def set_ready(self):
        with self._lock:
            if self.state == TrackingState.SYSTEM_NOT_READY:
                self.state = TrackingState.NO_IMAGES_YET

    # side channel: force the next cycle through relocalization (e.g. after a map correction)
    def force_relocalisation(self):
        with self._force_relocalisation_lock:
            self._force_relocalisation = True

    # read and clear the forced relocalization flag (once per cycle)
    def consume_force_relocalisation(self):
        with self._force_relocalisation_lock:
            force_relocalisation = self._force_relocalisation
            self._force_relocalisation = False
        return force_relocalisation

    def is_force_relocalisation_requested(self):
        with self._force_relocalisation_lock:
            return self._force_relocalisation

    # clear the map, the collaborators and the tracking state
    def reset(self):
        Printer.yellow("Tracking: reset...")
        with self._lock:
            self.slam.stop_publishers()
            try:
                self.local_mapping.request_reset()
                if self.slam.loop_closing is not None:
                    self.slam.loop_closing.request_reset()
                self.map.reset()
                self.local_map.reset()

                self.initializer.reset()
                self.motion_model.reset()

                # a processed frame brings the system back to the initialization, otherwise we still wait for images
                if self.state in (TrackingState.SYSTEM_NOT_READY, TrackingState.NO_IMAGES_YET):
                    self.state = TrackingState.NO_IMAGES_YET
                else:
                    self.state = TrackingState.NOT_INITIALIZED
                self.last_processed_state = self.state

                self.consume_force_relocalisation()

                self.num_matched_kps = None
                self.num_matched_map_points = None
                self.num_matched_map_points_in_last_pose_opt = None
                self.num_kf_ref_tracked_points = None
                self.num_initial_map_points = 0

                self.last_reloc_frame_id = -float("inf")

                self.pose_is_ok = False
                self.mean_pose_opt_chi2_error = None
                self.predicted_pose = None

                self.f_cur = None
                self.f_ref = None
                self.kf_ref = None
                self.kf_last = None

                self.tracking_history.reset()
            finally:
                self.slam.resume_publishers()
        Printer.yellow("Tracking: ...reset done")

    def pose_optimization(self, f_cur: Frame, name=""):
        Tracking.print(f"pose opt {name}")
        pose_before = f_cur.pose()
        self.timer_pose_opt.start()
        (
            self.mean_pose_opt_chi2_error,
            self.pose_is_ok,
            self.num_matched_map_points_in_last_pose_opt,
        ) = pose_optimization(f_cur, verbose=False)
        self.timer_pose_opt.pause()
        Tracking.print(f"     error^2: {self.mean_pose_opt_chi2_error:.3f},  ok: {int(self.pose_is_ok)}")
        if not self.pose_is_ok:
            # if current pose optimization failed, reset f_cur pose
            f_cur.update_pose(pose_before)
        return self.pose_is_ok, self.mean_pose_opt_chi2_error

    # track camera motion of f_cur w.r.t. f_ref (the previous frame):
    # the map points of f_ref are projected on f_cur at its predicted pose and matched with its keypoints
    def track_previous_frame(self, f_ref: Frame, f_cur: Frame):
        Tracking.print(">>>> tracking previous frame ...")
        search_radius = Parameters.kMaxReprojectionDistanceFrame

        f_cur.reset_points()
        self.timer_seach_frame_proj.start()
        idxs_ref, idxs_cur, num_found_map_pts = ProjectionMatcher.search_frame_by_projection(
            f_ref,
            f_cur,
            max_reproj_distance=search_radius,
            max_descriptor_distance=self.descriptor_distance_sigma,
        )
        self.timer_seach_frame_proj.refresh()
        self.num_matched_kps = num_found_map_pts
        Tracking.print(f"# matched map points in prev frame: {self.num_matched_kps}")

        # if not enough map point matches consider a larger search radius
        if self.num_matched_kps < Parameters.kMinNumMatchedFeaturesSearchFrameByProjection:
            f_cur.reset_points()
            idxs_ref, idxs_cur, num_found_map_pts = ProjectionMatcher.search_frame_by_projection(
                f_ref,
                f_cur,
                max_reproj_distance=2 * search_radius,
                max_descriptor_distance=self.descriptor_distance_sigma,
            )
            self.num_matched_kps = num_found_map_pts
            Printer.orange(f"# matched map points in prev frame (wider search): {self.num_matched_kps}")

        if self.num_matched_kps < Parameters.kMinNumMatchedFeaturesSearchFrameByProjection:
            f_cur.reset_points()
            self.pose_is_ok = False
            Printer.red(f"Not enough matches in search frame by projection: {self.num_matched_kps}")
            return

        pose_before_pos_opt = f_cur.pose()

        # f_cur pose optimization 1:
        # here, we use f_cur pose as first guess and exploit the matched map points of f_ref
        self.pose_optimization(f_cur, "proj-frame-frame")
        # update matched map points; discard outliers detected in last pose optimization
        self.num_matched_map_points = f_cur.clean_outlier_map_points()

        if not self.pose_is_ok or self.num_matched_map_points < Parameters.kNumMinInliersPoseOptimizationTrackFrame:
            Printer.red(f"failure in tracking previous frame, # matched map points: {self.num_matched_map_points}")
            self.pose_is_ok = False
            f_cur.reset_points()
            f_cur.update_pose(pose_before_pos_opt)

    # track camera motion of f_cur w.r.t. a frame or a keyframe that already tracks map points:
    # the keypoint descriptors of f_cur are matched with the ones of the tracked keypoints of f_ref,
    # the pose optimization starts from the pose of the last frame
    def track_by_descriptors(self, f_ref: Frame, f_cur: Frame, name="match-frame-frame"):
        Tracking.print(f">>>> tracking {name} with frame {f_ref.id} ...")
        if self.f_ref is not None:
            f_cur.update_pose(self.f_ref.pose())  # start pose optimization from last frame pose

        f_cur.reset_points()
        self.timer_seach_map.start()
        idxs_cur, idxs_ref, num_found_map_pts = DescriptorMatcher.search_frame_by_descriptors(
            f_ref,
            f_cur,
            ratio_test=Parameters.kMatchRatioTestFrameByProjection,
        )
        self.timer_seach_map.refresh()
        self.num_matched_kps = num_found_map_pts
        Tracking.print(f"# matched map points in frame {f_ref.id}: {self.num_matched_kps}")

        if self.num_matched_kps < Parameters.kMinNumMatchedFeaturesSearchReferenceFrame:
            f_cur.reset_points()
            self.pose_is_ok = False
            Printer.orange(f"Not enough matches with frame {f_ref.id}: {self.num_matched_kps}")
            return

        pose_before_pos_opt = f_cur.pose()

        self.pose_optimization(f_cur, name)
        # update matched map points; discard outliers detected in last pose optimization
        self.num_matched_map_points = f_cur.clean_outlier_map_points()

        if not self.pose_is_ok or self.num_matched_map_points < Parameters.kNumMinInliersPoseOptimizationTrackFrame:
            f_cur.reset_points()
            Printer.red(f"failure in tracking {name} {f_ref.id}, # matched map points: {self.num_matched_map_points}")
            self.pose_is_ok = False
            f_cur.update_pose(pose_before_pos_opt)

    # previous frame matching without a predicted pose
    def track_previous_frame_by_descriptors(self, f_ref: Frame, f_cur: Frame):
        if f_ref is None or f_ref.num_matched_points() == 0:
            self.pose_is_ok = False
            Printer.red("[track_previous_frame_by_descriptors]: the previous frame does not track any point")
            return
        self.track_by_descriptors(f_ref, f_cur, name="match-frame-frame")

    def track_reference_keyframe(self, keyframe: KeyFrame, f_cur: Frame):
        if keyframe is None or keyframe.is_bad():
            self.pose_is_ok = False
            Printer.red("[track_reference_keyframe]: no valid reference keyframe")
            return
        self.track_by_descriptors(keyframe, f_cur, name="match-frame-keyframe")

    # rebuild the local map window around f_cur
    def update_local_map(self, f_cur: Frame):
        # mark the already matched points as seen in f_cur (they are skipped by the search)
        f_cur.clean_bad_map_points()
        kf_ref, local_keyframes, local_points = self.local_map.update(f_cur)
        if kf_ref is not None:
            self.kf_ref = kf_ref
            f_cur.kf_ref = kf_ref
        return local_keyframes, local_points

    # track camera motion of f_cur w.r.t. the local map:
    # find matches between {local map points} and {unmatched keypoints of f_cur} and refine the pose
    def track_local_map(self, f_cur: Frame):
        Tracking.print(">>>> tracking local map...")
        self.timer_seach_map.start()

        local_keyframes, local_points = self.update_local_map(f_cur)
        if len(local_points) == 0:
            Printer.red("failure in tracking local map: empty local map")
            self.pose_is_ok = False
            return

        reproj_err_frame_map_sigma = Parameters.kMaxReprojectionDistanceMap
        if f_cur.id < self.last_reloc_frame_id + 2:
            reproj_err_frame_map_sigma = Parameters.kMaxReprojectionDistanceMapReloc

        # use the updated local map to search for matches between {local map points} and {unmatched keypoints of f_cur}
        num_found_map_pts, _ = self.local_map.search_in_frustum(
            f_cur,
            max_reproj_distance=reproj_err_frame_map_sigma,
            max_descriptor_distance=self.descriptor_distance_sigma,
            ratio_test=Parameters.kMatchRatioTestMap,
        )
        self.timer_seach_map.refresh()
        Tracking.print(
            f"# matched map points in local map: {num_found_map_pts}, # local keyframes: {len(local_keyframes)}, # local points: {len(local_points)}"
        )

        pose_before_pos_opt = f_cur.pose()

        # f_cur pose optimization 2 with all the matched local map points
        self.pose_optimization(f_cur, "proj-map-frame")

        self.num_matched_map_points = f_cur.update_map_points_statistics()

        # more inliers are required right after a relocalization
        num_min_inliers = Parameters.kNumMinInliersTrackLocalMap
        if f_cur.id < self.last_reloc_frame_id + self.max_frames_between_kfs:
            num_min_inliers = Parameters.kNumMinInliersTrackLocalMapAfterReloc

        if not self.pose_is_ok or self.num_matched_map_points < num_min_inliers:
            Printer.red(f"failure in tracking local map, # matched map points: {self.num_matched_map_points}")
            self.pose_is_ok = False
            f_cur.update_pose(pose_before_pos_opt)

    # store frame history in order to retrieve the complete camera trajectory
    def update_tracking_history(self):
        if self.state == TrackingState.WORKING and self.f_cur is not None and self.f_cur.kf_ref is not None:
            # pose of current frame w.r.t. current reference keyframe kf_ref
            Tcr = self.f_cur.Tcw() @ self.f_cur.kf_ref.Twc()
            self.tracking_history.relative_frame_poses.append(Tcr)
            self.tracking_history.kf_references.append(self.f_cur.kf_ref)
            self.tracking_history.timestamps.append(self.f_cur.timestamp)
            self.tracking_history.ids.append(self.f_cur.id)
        elif len(self.tracking_history.relative_frame_poses) > 0:
            self.tracking_history.relative_frame_poses.append(self.tracking_history.relative_frame_poses[-1])
            self.tracking_history.kf_references.append(self.tracking_history.kf_references[-1])
            self.tracking_history.timestamps.append(self.tracking_history.timestamps[-1])
            self.tracking_history.ids.append(self.tracking_history.ids[-1])
        self.tracking_history.tracking_states.append(self.state)

    # keyframe insertion policy:
    # (1a) max_frames_between_kfs frames have passed from the last keyframe (forces a periodic insertion) or
    # (1b) min_frames_between_kfs frames have passed or local mapping is idle, and
    # (2)  the current frame tracks less than a ratio of the points tracked by the reference keyframe;
    # in any case, the current frame must track more than kNumMinPointsForNewKf map points
    # and the local mapping queue must not be saturated
    def need_new_keyframe(self, f_cur: Frame):
        num_keyframes = self.map.num_keyframes()

        # do not insert keyframes if not enough frames have passed from last relocalisation
        if f_cur.id < self.last_reloc_frame_id + self.max_frames_between_kfs and num_keyframes > self.max_frames_between_kfs:
            Tracking.print(
                f"Not inserting keyframe {f_cur.id}: too close to the last reloc frame {self.last_reloc_frame_id}"
            )
            return False

        nMinObs = kNumMinObsForKeyFrameDefault
        if num_keyframes <= 2:
            nMinObs = 2  # if just two keyframes then we can have just two observations
        num_kf_ref_tracked_points = self.kf_ref.num_tracked_points(nMinObs)  # number of tracked points in kf_ref
        num_f_cur_tracked_points = f_cur.num_matched_inlier_map_points()  # number of inliers map points in f_cur
        self.num_kf_ref_tracked_points = num_kf_ref_tracked_points
        Tracking.print(
            f"F({f_cur.id}) #matched points: {num_f_cur_tracked_points}, KF({self.kf_ref.id}) #matched points: {num_kf_ref_tracked_points}"
        )

        is_local_mapping_idle = self.local_mapping.is_idle()
        local_mapping_queue_size = self.local_mapping.queue_size()
        Tracking.print(
            f"is_local_mapping_idle: {is_local_mapping_idle}, local_mapping_queue_size: {local_mapping_queue_size}"
        )

        thRefRatio = Parameters.kThNewKfRefRatioMonocular

        # condition 1a: more than "max_frames_between_kfs" have passed from last keyframe insertion
        cond1a = f_cur.id >= (self.kf_last.id + self.max_frames_between_kfs)

        # condition 1b: more than "min_frames_between_kfs" have passed or local mapping is idle
        cond1b = (f_cur.id >= (self.kf_last.id + self.min_frames_between_kfs)) or is_local_mapping_idle

        # condition 2: few tracked points compared to reference keyframe
        cond2 = num_f_cur_tracked_points < num_kf_ref_tracked_points * thRefRatio

        # a keyframe must track a minimum number of map points
        has_enough_points = num_f_cur_tracked_points > Parameters.kNumMinPointsForNewKf

        condition_checks = has_enough_points and (cond1a or (cond1b and cond2))
        if not condition_checks:
            return False
        Tracking.print(f"KF conditions: #points: {has_enough_points} and (1a: {cond1a} or (1b: {cond1b} and 2: {cond2}))")

        if is_local_mapping_idle:
            return True
        # admission control: do not overload the local mapping queue
        if local_mapping_queue_size < Parameters.kLocalMappingMaxQueueSize:
            return True
        Printer.orange(f"Tracking: local mapping queue is full ({local_mapping_queue_size}), skipping keyframe")
        return False

    def create_new_keyframe(self, f_cur: Frame):
        kf_new = KeyFrame(f_cur)
        self.kf_last = kf_new
        self.kf_ref = kf_new
        f_cur.kf_ref = kf_new

        self.map.add_keyframe(kf_new)  # add kf_new to map and register its observations
        Printer.green(f"Adding new KF with id {kf_new.id} (kid: {kf_new.kid})")

        self.local_mapping.push_keyframe(kf_new)
        return kf_new

    def relocalize(self, f_cur: Frame):
        Printer.green(f"Relocalizing frame id: {f_cur.id}...")
        if self.slam.loop_closing is not None:
            return self.slam.loop_closing.relocalize(f_cur)
        Printer.yellow("[Tracking]: WARNING you did not set any loop closing / relocalize method!")
        return False

    # bootstrap the map from the initial reference frame and the current frame
    def initialize(self, f_cur: Frame):
        self.state = TrackingState.INITIALIZING
        initializer_output, initializer_is_ok = self.initializer.initialize(f_cur)
        if not initializer_is_ok:
            # the initializer keeps (or replaces) its reference and we retry with the next frame
            self.state = TrackingState.NOT_INITIALIZED
            return False

        kf_ref = initializer_output.kf_ref
        kf_cur = initializer_output.kf_cur

        self.map.add_frame(kf_ref)  # add first frame in map
        self.map.add_frame(kf_cur)  # add second frame in map
        self.map.add_keyframe(kf_ref)  # add first keyframe in map and update its kid
        self.map.add_keyframe(kf_cur)  # add second keyframe in map and update its kid

        new_pts_count, _, _ = self.map.add_points(
            initializer_output.pts,
            None,
            kf_cur,
            kf_ref,
            initializer_output.idxs_cur,
            initializer_output.idxs_ref,
            do_check=False,
        )
        self.num_initial_map_points = new_pts_count
        Printer.green(f"map: initialized with kfs {kf_ref.id}, {kf_cur.id} and {new_pts_count} new map points")

        kf_ref.update_connections()
        kf_cur.update_connections()

        self.f_cur = kf_cur
        self.f_cur.kf_ref = kf_ref
        self.kf_ref = kf_cur  # set reference keyframe
        self.kf_last = kf_cur  # set last added keyframe
        self.local_map.update_from_keyframe(self.kf_ref)
        self.state = TrackingState.WORKING

        self.update_tracking_history()
        self.motion_model.update_pose_matrix(kf_cur.timestamp, kf_cur.pose())
        # after initialization we cannot use the motion model for the next frame pose prediction
        # (the initialized frames may not be consecutive)
        self.motion_model.is_ok = False

        self.initializer.reset()

        if self.slam.loop_closing is not None:
            Tracking.print(f"pushing new keyframes {kf_ref.id}, {kf_cur.id} to loop closing...")
            self.slam.loop_closing.add_keyframe(kf_ref)
            self.slam.loop_closing.add_keyframe(kf_cur)
        return True

    # predict the pose of f_cur and track it against the previous frame or the reference keyframe
    def track_working(self, f_ref: Frame, f_cur: Frame):
        if Parameters.kUseMotionModel and self.motion_model.is_ok:
            Tracking.print("using motion model for next pose prediction")
            # refresh the pose of the previous frame from its reference keyframe (that may have been refined)
            if len(self.tracking_history) > 0 and self.tracking_history.ids[-1] == f_ref.id:
                kf_ref_prev = self.tracking_history.kf_references[-1]
                if not kf_ref_prev.is_bad():
                    f_ref.update_pose(self.tracking_history.relative_frame_poses[-1] @ kf_ref_prev.Tcw())
            self.predicted_pose = self.motion_model.predict_pose_matrix(f_cur.timestamp, f_ref.pose())
            f_cur.update_pose(self.predicted_pose)
        else:
            Tracking.print("setting f_cur.pose <-- f_ref.pose")
            f_cur.update_pose(f_ref.pose())

        # (1) motion model: the map points of the previous frame are searched around their predicted projections
        if Parameters.kUseMotionModel and self.motion_model.is_ok and f_cur.id >= self.last_reloc_frame_id + 2:
            self.track_previous_frame(f_ref, f_cur)
        # (2) previous frame: descriptor matching with the tracked keypoints of the previous frame
        if not self.pose_is_ok:
            Printer.orange("using frame-frame matching")
            self.track_previous_frame_by_descriptors(f_ref, f_cur)
        # (3) last resort: descriptor matching with the reference keyframe
        if not self.pose_is_ok and (self.kf_ref is None or self.kf_ref.id != f_ref.id):
            Printer.orange("using frame-keyframe matching")
            self.track_reference_keyframe(self.kf_ref, f_cur)

    def track_relocalize(self, f_cur: Frame):
        if self.relocalize(f_cur):
            self.last_reloc_frame_id = f_cur.id
            self.num_relocalizations += 1
            self.pose_is_ok = True
            self.kf_ref = f_cur.kf_ref  # updated by the relocalizer
            self.kf_last = self.kf_ref
            Printer.green(f"Relocalization successful, frame id: {f_cur.id}, reconnected to keyframe id {f_cur.kf_ref.id}")
            self.local_map.update_from_keyframe(self.kf_ref)
            self.motion_model.reset()
            self.motion_model.update_pose_matrix(f_cur.timestamp, f_cur.pose())
        else:
            self.pose_is_ok = False
            Printer.red("Relocalization failed")

    # @ main track method @
    # out: the estimated pose Tcw [4x4] of the image or None if no pose is available
    def track(self, img, timestamp=None):
        with self._lock:
            if img.shape[0:2] != (self.camera.height, self.camera.width):
                raise ValueError(
                    f"Tracking: image shape {img.shape[0:2]} does not match the camera ({self.camera.height}x{self.camera.width})"
                )
            # the initialization uses a larger number of features
            if self.state in (TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED):
                FeatureTrackerShared.feature_tracker.set_double_num_features()
            else:
                FeatureTrackerShared.feature_tracker.set_normal_num_features()

            self.timer_frame.start()
            f_cur = Frame(self.camera, img, timestamp=timestamp)
            self.timer_frame.refresh()
            return self.track_frame(f_cur)

    # track a pre-built frame
    # out: the estimated pose Tcw [4x4] of the frame or None if no pose is available
    def track_frame(self, f_cur: Frame):
        with self._lock:
            # reset poll point: a requested reset is executed only between two cycles
            self.slam.reset_if_requested()
            self.slam.check_reset_by_publishers()

            if self.state == TrackingState.SYSTEM_NOT_READY:
                Printer.red("Tracking: system not ready")
                return None

            Tracking.print(f"@tracking frame id: {f_cur.id}, # kps: {f_cur.num_keypoints()}, state: {self.state.name}")
            time_start = time.time()
            self.timer_main_track.start()

            self.last_processed_state = self.state
            self.f_cur = f_cur

            if self.state == TrackingState.NO_IMAGES_YET:
                self.initializer.init(f_cur)
                self.state = TrackingState.NOT_INITIALIZED
                return None  # EXIT (jump to second frame)

            if self.state == TrackingState.NOT_INITIALIZED:
                if self.initialize(f_cur):
                    return self.f_cur.pose()
                return None  # EXIT (jump to next frame)

            force_relocalisation = self.consume_force_relocalisation()

            f_ref = self.map.get_frame(-1)
            self.f_ref = f_ref

            self.map.add_frame(f_cur)
            f_cur.kf_ref = self.kf_ref

            self.pose_is_ok = False

            if self.state == TrackingState.WORKING and not force_relocalisation and f_ref is not None:
                self.track_working(f_ref, f_cur)
            else:
                if force_relocalisation:
                    Printer.orange(f"Tracking: forced relocalization on frame id: {f_cur.id}")
                self.track_relocalize(f_cur)

            # the local map refinement is mandatory before accepting a pose
            if self.pose_is_ok:
                self.track_local_map(f_cur)

            if self.pose_is_ok:
                self.state = TrackingState.WORKING
            else:
                if self.state == TrackingState.WORKING:
                    Printer.red("tracking failure")
                self.state = TrackingState.LOST

            if self.pose_is_ok:
                # if tracking was successful
                self.motion_model.update_pose_matrix(f_cur.timestamp, f_cur.pose())
                if f_cur.id <= self.last_reloc_frame_id:
                    self.motion_model.is_ok = False

                f_cur.clean_vo_matches()  # remove the matches with points no keyframe observes
                f_cur.clean_outlier_map_points()

                if self.need_new_keyframe(f_cur):
                    self.create_new_keyframe(f_cur)
                    Tracking.print(
                        f"New keyframe created: {f_cur.id}, local_mapping_queue_size: {self.local_mapping.queue_size()}"
                    )
                    if not Parameters.kLocalMappingOnSeparateThread:
                        while self.local_mapping.queue_size() > 0:
                            self.local_mapping.step()
            else:
                # the velocity estimate is lost with the track
                self.motion_model.reset()
                if (
                    Parameters.kResetWhenLostEarly
                    and self.map.num_keyframes() <= Parameters.kNumKeyframesForResetWhenLost
                ):
                    Printer.yellow("Tracking: lost soon after initialization, requesting reset...")
                    self.slam.request_reset()

            self.update_tracking_history()
            self.timer_main_track.refresh()
            self.time_track = time.time() - time_start
            Tracking.print(f"Tracking: frame {f_cur.id} done in {self.time_track:.3f}s, state: {self.state.name}")

            if self.state == TrackingState.WORKING:
                return f_cur.pose()
            return None
