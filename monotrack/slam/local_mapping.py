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

import os
import time
import traceback
import numpy as np

from threading import RLock, Thread, Condition
from queue import Queue

from monotrack.config_parameters import Parameters
from monotrack.utilities.timer import TimerFps
from monotrack.utilities.logging import Printer, Logging
from monotrack.utilities.geom_triangulation import triangulate_normalized_points
from monotrack.utilities.data_management import empty_queue

from .keyframe import KeyFrame
from .map_point import MapPoint
from .geometry_matchers import EpipolarMatcher

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    # Only imported when type checking, not at runtime
    from .slam import Slam


kVerbose = True
kTimerVerbose = False

kLocalMappingDebugAndPrintToFile = Parameters.kLocalMappingDebugAndPrintToFile

kNumMinObsForRedundantPoint = 3  # a point is redundant for a keyframe if at least other 3 keyframes observe it

kLocalMappingSleepTime = 5e-3  # [s]


# Background collaborator that consumes the keyframes inserted by tracking:
# it refreshes the keyframe points and covisibility connections, culls the recently created points
# that are not tracked, triangulates new points with the neighbor keyframes and culls redundant keyframes.
# Tracking reads its backlog (queue_size(), is_idle()) for keyframe admission control.
class LocalMapping:
    print = staticmethod(lambda *args, **kwargs: None)  # Default: no-op

    def __init__(self, slam: "Slam"):
        self.slam = slam

        self.timer_verbose = kTimerVerbose  # set this to True if you want to print timings
        self.timer_triangulation = TimerFps("Triangulation", is_verbose=self.timer_verbose)
        self.timer_pts_culling = TimerFps("Culling points", is_verbose=self.timer_verbose)
        self.timer_kf_culling = TimerFps("Culling kfs", is_verbose=self.timer_verbose)

        self.queue = Queue()
        self.queue_condition = Condition()
        self.work_thread = None  # Thread(target=self.run)
        self.is_running = False

        self._is_idle = True
        self.idle_condition = Condition()

        self.reset_requested = False
        self.reset_mutex = RLock()

        self.kf_cur: KeyFrame | None = None  # current processed keyframe
        self.recently_added_points: set[MapPoint] = set()

        self.time_local_mapping = None

        self.last_num_triangulated_points = None
        self.total_num_triangulated_points = 0
        self.last_num_culled_points = None
        self.total_num_culled_points = 0
        self.last_num_culled_keyframes = None
        self.total_num_culled_keyframes = 0

        self.init_print()

    def init_print(self):
        if kVerbose:
            if Parameters.kLocalMappingOnSeparateThread:
                if kLocalMappingDebugAndPrintToFile:
                    # Default log to file: logs/local_mapping.log
                    logging_file = os.path.join(Parameters.kLogsFolder, "local_mapping.log")
                    LocalMapping.local_logger = Logging.setup_file_logger(
                        "local_mapping_logger", logging_file, formatter=Logging.simple_log_formatter
                    )

                    def file_print(*args, **kwargs):
                        message = " ".join(str(arg) for arg in args)
                        LocalMapping.local_logger.info(message)

                else:

                    def file_print(*args, **kwargs):
                        message = " ".join(str(arg) for arg in args)
                        return print(message, **kwargs)

                LocalMapping.print = staticmethod(file_print)
            else:
                LocalMapping.print = staticmethod(print)

    @property
    def map(self):
        return self.slam.map

    def request_reset(self):
        LocalMapping.print("LocalMapping: Requesting reset...")
        with self.reset_mutex:
            if self.reset_requested:
                LocalMapping.print("LocalMapping: reset already requested...")
                return
            self.reset_requested = True
        if self.is_running and self.work_thread is not None:
            # blocking: wait for the worker to empty its queue
            while True:
                with self.queue_condition:
                    self.queue_condition.notify_all()  # to unblock self.pop_keyframe()
                with self.reset_mutex:
                    if not self.reset_requested:
                        break
                time.sleep(0.1)
                LocalMapping.print("LocalMapping: waiting for reset...")
        else:
            self.reset_if_requested()
        LocalMapping.print("LocalMapping: ...Reset done.")

    def reset_if_requested(self):
        with self.reset_mutex:
            if self.reset_requested:
                LocalMapping.print("LocalMapping: reset_if_requested() starting...")
                empty_queue(self.queue)
                self.kf_cur = None
                self.recently_added_points.clear()
                self.total_num_triangulated_points = 0
                self.total_num_culled_points = 0
                self.total_num_culled_keyframes = 0
                self.last_num_triangulated_points = None
                self.reset_requested = False
                self.set_idle(True)
                LocalMapping.print("LocalMapping: reset_if_requested() ...done")

    def start(self):
        LocalMapping.print(f"LocalMapping: starting...")
        self.is_running = True
        self.work_thread = Thread(target=self.run, name="LocalMapping", daemon=True)
        self.work_thread.start()

    def quit(self):
        LocalMapping.print("LocalMapping: quitting...")
        if self.is_running and self.work_thread is not None:
            self.is_running = False
            with self.queue_condition:
                self.queue_condition.notify_all()
            self.work_thread.join(timeout=5)
        self.is_running = False
        LocalMapping.print("LocalMapping: done")

    # push the new keyframe into the queue
    def push_keyframe(self, keyframe: KeyFrame):
        with self.queue_condition:
            self.queue.put(keyframe)
            self.queue_condition.notify_all()

    # blocking call
    def pop_keyframe(self, timeout=Parameters.kLocalMappingTimeoutPopKeyframe):
        with self.queue_condition:
            while self.queue.empty() and self.is_running and not self.reset_requested:
                ok = self.queue_condition.wait(timeout=timeout)
                if not ok:
                    break  # Timeout occurred
            if self.queue.empty() or self.reset_requested:
                return None
            keyframe = self.queue.get_nowait()
            self.set_idle(False)  # busy until the keyframe is processed
            return keyframe

    def queue_size(self):
        return self.queue.qsize()

    def is_idle(self):
        with self.idle_condition:
            return self._is_idle

    def set_idle(self, flag):
        with self.idle_condition:
            self._is_idle = flag
            self.idle_condition.notify_all()

    # wait until the queue is empty and the last popped keyframe has been processed
    # out: False if the timeout expired
    def wait_idle(self, timeout=None):
        if not self.is_running:
            return True
        with self.idle_condition:
            while (not self._is_idle or not self.queue.empty()) and self.is_running:
                LocalMapping.print("LocalMapping: waiting for idle...")
                ok = self.idle_condition.wait(timeout=timeout)
                if not ok:
                    Printer.yellow(f"LocalMapping: timeout {timeout}s reached, quit waiting for idle")
                    return False
        return True

    def run(self):
        while self.is_running:
            self.step()
        empty_queue(self.queue)  # empty the queue before exiting
        LocalMapping.print("LocalMapping: loop exit...")

    def step(self):
        if self.map.num_keyframes() > 0:
            kf = self.pop_keyframe() if self.is_running else self.pop_keyframe(timeout=0)
            if kf is not None:
                self.kf_cur = kf
                try:
                    self.do_local_mapping()
                except Exception as e:
                    Printer.red(f"LocalMapping: encountered exception: {e}")
                    LocalMapping.print(traceback.format_exc())
                self.set_idle(True)
            else:
                self.set_idle(True)
        else:
            time.sleep(kLocalMappingSleepTime)
        self.reset_if_requested()

    def do_local_mapping(self):
        LocalMapping.print("local mapping: starting...")
        time_start = time.time()

        if self.kf_cur is None or self.kf_cur.is_bad():
            Printer.red("local mapping: no keyframe to process")
            return

        LocalMapping.print("..................................")
        LocalMapping.print("processing KF: ", self.kf_cur.id, ", queue size: ", self.queue_size())

        self.process_new_keyframe()

        # do map points culling
        self.timer_pts_culling.start()
        num_culled_points = self.cull_map_points()
        self.last_num_culled_points = num_culled_points
        self.total_num_culled_points += num_culled_points
        self.timer_pts_culling.refresh()
        LocalMapping.print(f"#culled points: {num_culled_points}, timing: {self.timer_pts_culling.last_elapsed}")

        # create new points by triangulation
        self.timer_triangulation.start()
        total_new_pts = self.create_new_map_points()
        self.last_num_triangulated_points = total_new_pts
        self.total_num_triangulated_points += total_new_pts
        self.timer_triangulation.refresh()
        LocalMapping.print(f"#new map points: {total_new_pts}, timing: {self.timer_triangulation.last_elapsed}")

        if self.queue.empty() and Parameters.kUseKeyframeCulling:
            # check redundant local keyframes
            self.timer_kf_culling.start()
            num_culled_keyframes = self.cull_keyframes()
            self.last_num_culled_keyframes = num_culled_keyframes
            self.total_num_culled_keyframes += num_culled_keyframes
            self.timer_kf_culling.refresh()
            LocalMapping.print(
                f"\t #culled keyframes: {num_culled_keyframes}, timing: {self.timer_kf_culling.last_elapsed}"
            )

        if self.slam.loop_closing is not None and not self.kf_cur.is_bad():
            LocalMapping.print(f"pushing new keyframe {self.kf_cur.id} to loop closing...")
            self.slam.loop_closing.add_keyframe(self.kf_cur)

        elapsed_time = time.time() - time_start
        self.time_local_mapping = elapsed_time
        LocalMapping.print(f"local mapping elapsed time: {elapsed_time}")

    # update normal and descriptor of the keyframe points and the covisibility connections
    # (the point observations are registered by Map.add_keyframe() when tracking inserts the keyframe)
    def process_new_keyframe(self):
        LocalMapping.print(f">>>> processing new keyframe ...")
        for p in self.kf_cur.get_matched_good_points():
            p.update_info()
        self.kf_cur.update_connections()

    def cull_map_points(self):
        LocalMapping.print(">>>> culling map points...")
        th_num_observations = Parameters.kLocalMappingRecentPointsMinObs
        min_found_ratio = Parameters.kLocalMappingRecentPointsMinFoundRatio
        current_kid = self.kf_cur.kid
        remove_set = set()
        num_culled_points = 0
        for p in self.recently_added_points:
            if p.is_bad():
                remove_set.add(p)
            elif p.get_found_ratio() < min_found_ratio:
                self.map.remove_point(p)
                remove_set.add(p)
                num_culled_points += 1
            elif (current_kid - p.first_kid) >= 2 and p.num_observations() <= th_num_observations:
                self.map.remove_point(p)
                remove_set.add(p)
                num_culled_points += 1
            elif (current_kid - p.first_kid) >= 3:  # after three keyframes we do not consider the point a recent one
                remove_set.add(p)
        self.recently_added_points = self.recently_added_points - remove_set
        return num_culled_points

    # triangulate matched keypoints (without a corresponding map point) amongst the neighbor keyframes
    def create_new_map_points(self):
        LocalMapping.print(">>>> creating new map points")
        total_new_pts = 0

        local_keyframes = self.kf_cur.get_best_covisible_keyframes(Parameters.kLocalMappingNumNeighborKeyFrames)
        LocalMapping.print(
            "local map keyframes: ", [kf.id for kf in local_keyframes if not kf.is_bad()], " + ", self.kf_cur.id, "..."
        )

        for i, kf in enumerate(local_keyframes):
            if kf is self.kf_cur or kf.is_bad():
                continue
            if i > 0 and not self.queue.empty():
                LocalMapping.print("creating new map points *** interruption ***")
                break

            # N.B.: all the matched keypoints are without a corresponding map point
            idxs_cur, idxs, num_found_matches = EpipolarMatcher.search_frame_for_triangulation(self.kf_cur, kf)
            if num_found_matches == 0:
                continue

            # try to triangulate the matched keypoints that do not have a corresponding map point
            pts3d, good_pts_idxs = triangulate_normalized_points(
                self.kf_cur.pose(), kf.pose(), self.kf_cur.kpsn[idxs_cur], kf.kpsn[idxs]
            )
            mask_pts3d = np.zeros(len(pts3d), dtype=bool)
            mask_pts3d[good_pts_idxs] = True

            new_pts_count, _, list_added_points = self.map.add_points(
                pts3d, mask_pts3d, self.kf_cur, kf, idxs_cur, idxs, do_check=True
            )
            LocalMapping.print(f"\t #added map points: {new_pts_count} for KFs ({self.kf_cur.id}), ({kf.id})")
            total_new_pts += new_pts_count
            self.recently_added_points.update(list_added_points)

        if total_new_pts > 0:
            self.kf_cur.update_connections()
        return total_new_pts

    # a keyframe is redundant if the 90% of the map points it sees are seen in at least other 3 keyframes
    # (in the same or finer scale)
    def cull_keyframes(self):
        LocalMapping.print(">>>> culling keyframes...")
        num_culled_keyframes = 0
        covisible_kfs = self.kf_cur.get_covisible_keyframes()
        for kf in covisible_kfs:
            if kf.kid == 0 or kf.is_bad():
                continue
            kf_num_points = 0  # num good points for kf
            kf_num_redundant_observations = 0  # num redundant observations for kf
            for i, p in enumerate(kf.get_points()):
                if p is None or p.is_bad():
                    continue
                kf_num_points += 1
                if p.num_observations() > kNumMinObsForRedundantPoint:
                    scale_level = kf.octaves[i]  # scale level of observation in kf
                    p_num_observations = 0
                    for kf_j, idx in p.observations():
                        if kf_j is kf:
                            continue
                        if kf_j.octaves[idx] <= scale_level + 1:
                            p_num_observations += 1
                            if p_num_observations >= kNumMinObsForRedundantPoint:
                                break
                    if p_num_observations >= kNumMinObsForRedundantPoint:
                        kf_num_redundant_observations += 1
            remove_kf = kf_num_redundant_observations > Parameters.kKeyframeCullingRedundantObsRatio * kf_num_points
            if remove_kf and self.map.remove_keyframe(kf):
                num_culled_keyframes += 1
                if self.slam.loop_closing is not None:
                    self.slam.loop_closing.remove_keyframe(kf)
                LocalMapping.print(
                    "culling keyframe ",
                    kf.id,
                    " - redundant observations: ",
                    kf_num_redundant_observations / max(kf_num_points, 1),
                )
        return num_culled_keyframes
