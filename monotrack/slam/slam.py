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

from threading import RLock, Event

from monotrack.config_parameters import Parameters
from monotrack.local_features.feature_tracker import OrbFeatureTracker
from monotrack.utilities.logging import Printer

from .camera import Camera
from .frame import Frame
from .map import Map
from .local_map import LocalMap
from .local_mapping import LocalMapping
from .loop_closing import LoopClosing
from .tracking import Tracking
from .slam_commons import TrackingState
from .feature_tracker_shared import FeatureTrackerShared

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from monotrack.config import Config


kVerbose = True

if not kVerbose:

    def print(*args, **kwargs):
        pass


# Main slam system class containing all the required modules.
# The tracking runs in the caller thread, local mapping and loop closing run in their own threads
# (see Parameters.kLocalMappingOnSeparateThread and Parameters.kLoopClosingOnSeparateThread).
class Slam(object):
    def __init__(self, camera: Camera, feature_tracker: OrbFeatureTracker = None, config: "Config" = None):
        self.camera = camera
        self.config = config

        self.feature_tracker = None
        self.init_feature_tracker(feature_tracker)

        self.map = Map()
        self.local_map = LocalMap(self.map)

        # reset side channel (independent from the tracking lock)
        self.reset_mutex = RLock()
        self.reset_requested = False

        # set when the publishers (e.g. a viewer) are running, cleared when they are stopped
        self.publishers_running = Event()
        self.publishers_running.set()

        self.tracking = None
        self.local_mapping = LocalMapping(self)
        self.loop_closing = LoopClosing(self)

        if Parameters.kLocalMappingOnSeparateThread:
            self.local_mapping.start()
        if Parameters.kLoopClosingOnSeparateThread:
            self.loop_closing.start()

        self.tracking = Tracking(self)  # after all the other initializations
        self.tracking.set_ready()

    def init_feature_tracker(self, feature_tracker: OrbFeatureTracker = None):
        if feature_tracker is None:
            if self.config is not None:
                feature_tracker = OrbFeatureTracker(
                    num_features=self.config.num_features_to_extract,
                    num_levels=self.config.num_levels,
                    scale_factor=self.config.scale_factor,
                )
            else:
                feature_tracker = OrbFeatureTracker()
        self.feature_tracker = feature_tracker
        # Set the static field of the class FeatureTrackerShared.
        # NOTE: Here, we set force=True since we don't care if the feature_tracker is already set.
        FeatureTrackerShared.set_feature_tracker(feature_tracker, force=True)

    # @ main track methods @
    # out: the estimated camera pose Tcw [4x4] or None if no pose is available
    def track(self, img, timestamp=None):
        return self.tracking.track(img, timestamp)

    def track_frame(self, frame: Frame):
        return self.tracking.track_frame(frame)

    def get_tracking_state(self) -> TrackingState:
        return self.tracking.state

    def force_relocalisation(self):
        self.tracking.force_relocalisation()

    # out: list of (timestamp, Twc [4x4]) of the processed frames
    def get_trajectory(self):
        with self.tracking.lock:
            return self.tracking.tracking_history.get_trajectory()

    # can be called from any thread: the reset is executed by tracking at its next cycle
    def request_reset(self):
        with self.reset_mutex:
            self.reset_requested = True

    def is_reset_requested(self):
        with self.reset_mutex:
            return self.reset_requested

    # poll point of the tracking cycle
    def reset_if_requested(self):
        with self.reset_mutex:
            if not self.reset_requested:
                return False
            self.reset()
            self.reset_requested = False
            return True

    def reset(self):
        Printer.yellow("SLAM: reset...")
        self.tracking.reset()

    def stop_publishers(self):
        self.publishers_running.clear()

    def resume_publishers(self):
        self.publishers_running.set()

    # block while the publishers are stopped
    # out: False if the timeout expired before the publishers were resumed
    def check_reset_by_publishers(self, timeout=None):
        if self.publishers_running.is_set():
            return True
        print("SLAM: waiting for the publishers...")
        return self.publishers_running.wait(timeout=timeout)

    def quit(self):
        print("SLAM: quitting ...")
        if self.local_mapping is not None:
            self.local_mapping.quit()
        if self.loop_closing is not None:
            self.loop_closing.quit()
        print("SLAM: done")
