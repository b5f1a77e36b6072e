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

from threading import RLock, Thread, Condition
from queue import Queue

from monotrack.config_parameters import Parameters
from monotrack.utilities.logging import Printer, Logging
from monotrack.utilities.timer import TimerFps
from monotrack.utilities.data_management import empty_queue

from .frame import Frame
from .keyframe import KeyFrame
from .place_recognition import KeyFrameDatabase
from .relocalizer import Relocalizer

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .slam import Slam


kVerbose = True
kTimerVerbose = False


# LoopClosing is the keyframe consumer that owns the place recognition database:
# - it receives every new keyframe (from tracking at initialization and then from local mapping)
#   and stores it into the keyframe database
# - it serves the relocalization queries of tracking
# - after a map correction, it asks tracking to relocalize (the tracked pose is no longer consistent with the map)
class LoopClosing:
    print = staticmethod(lambda *args, **kwargs: None)  # Default: no-op

    def __init__(self, slam: "Slam", keyframe_database: KeyFrameDatabase = None):
        self.slam = slam

        self.timer = TimerFps("LoopClosing", is_verbose=kTimerVerbose)

        self.keyframe_database = keyframe_database if keyframe_database is not None else KeyFrameDatabase()
        self.relocalizer = Relocalizer(self.keyframe_database)

        self.queue = Queue()
        self.queue_condition = Condition()
        self.work_thread = None
        self.is_running = False

        self.reset_mutex = RLock()
        self.reset_requested = False

        self.num_map_corrections = 0

        self.init_print()

    def init_print(self):
        if kVerbose:
            if Parameters.kLoopClosingOnSeparateThread:
                # redirect the prints of loop closing to the file logs/loop_closing.log
                # you can watch the output in separate shell by running:
                # $ tail -f logs/loop_closing.log
                logging_file = Parameters.kLogsFolder + "/loop_closing.log"
                LoopClosing.local_logger = Logging.setup_file_logger(
                    "loop_closing_logger", logging_file, formatter=Logging.simple_log_formatter
                )

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)  # Convert all arguments to strings and join with spaces
                    return LoopClosing.local_logger.info(message)

            else:

                def print_file(*args, **kwargs):
                    message = " ".join(str(arg) for arg in args)
                    return print(message, **kwargs)

            LoopClosing.print = staticmethod(print_file)

    @property
    def map(self):
        return self.slam.map

    def request_reset(self):
        LoopClosing.print("LoopClosing: Requesting reset...")
        with self.reset_mutex:
            if self.reset_requested:
                LoopClosing.print("LoopClosing: reset already requested...")
                return
            self.reset_requested = True
        if self.is_running and self.work_thread is not None:
            while True:
                with self.queue_condition:
                    self.queue_condition.notify_all()  # to unblock self.pop_keyframe()
                with self.reset_mutex:
                    if not self.reset_requested:
                        break
                time.sleep(0.1)
        else:
            self.reset_if_requested()
        LoopClosing.print("LoopClosing: ...Reset done.")

    def reset_if_requested(self):
        with self.reset_mutex:
            if self.reset_requested:
                LoopClosing.print("LoopClosing: reset_if_requested()...")
                empty_queue(self.queue)
                self.keyframe_database.clear()
                self.reset_requested = False

    def start(self):
        LoopClosing.print("LoopClosing: starting...")
        self.is_running = True
        self.work_thread = Thread(target=self.run, name="LoopClosing", daemon=True)
        self.work_thread.start()

    def quit(self):
        LoopClosing.print("LoopClosing: quitting...")
        if self.is_running and self.work_thread is not None:
            self.is_running = False
            with self.queue_condition:
                self.queue_condition.notify_all()
            self.work_thread.join(timeout=5)
        self.is_running = False
        LoopClosing.print("LoopClosing: done")

    def add_keyframe(self, keyframe: KeyFrame):
        LoopClosing.print(f"LoopClosing: Adding keyframe with id: {keyframe.id} (kid: {keyframe.kid})")
        with self.queue_condition:
            self.queue.put(keyframe)
            self.queue_condition.notify_all()
        if not self.is_running:
            self.step()

    # drop a culled keyframe from the place recognition database
    def remove_keyframe(self, keyframe: KeyFrame):
        self.keyframe_database.erase(keyframe)

    def queue_size(self):
        return self.queue.qsize()

    # blocking call
    def pop_keyframe(self, timeout=Parameters.kLoopClosingTimeoutPopKeyframe):
        with self.queue_condition:
            while self.queue.empty() and self.is_running and not self.reset_requested:
                ok = self.queue_condition.wait(timeout=timeout)
                if not ok:
                    break  # Timeout occurred
            if self.queue.empty() or self.reset_requested:
                return None
            return self.queue.get_nowait()

    # main loop in LoopClosing thread
    def run(self):
        while self.is_running:
            self.step()
        empty_queue(self.queue)
        LoopClosing.print("LoopClosing: loop exit...")

    def step(self):
        self.reset_if_requested()
        while True:
            keyframe = self.pop_keyframe() if self.is_running else self.pop_keyframe(timeout=0)
            if keyframe is None:
                break
            if keyframe.is_bad():
                continue
            self.timer.start()
            self.keyframe_database.add(keyframe)
            self.timer.refresh()
            LoopClosing.print(
                f"LoopClosing: stored KF {keyframe.id} into the keyframe database (size: {self.keyframe_database.size()})"
            )
            if self.is_running:
                break

    # out: True if the frame pose has been recovered against one of the stored keyframes
    def relocalize(self, frame: Frame):
        LoopClosing.print(f"Relocalization: Starting on frame id: {frame.id}...")
        res = self.relocalizer.relocalize(frame)
        LoopClosing.print(f'Relocalization: {"Success" if res else "Failed"} on frame id: {frame.id}...')
        return res

    # called after the map has been corrected (e.g. by a loop correction): the tracked pose is no longer
    # consistent with the map and tracking must relocalize at its next cycle
    def notify_map_corrected(self):
        self.num_map_corrections += 1
        Printer.yellow("LoopClosing: map corrected, forcing relocalization")
        if self.slam.tracking is not None:
            self.slam.tracking.force_relocalisation()
