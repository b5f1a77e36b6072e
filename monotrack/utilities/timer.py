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

from .logging import Printer

timer_print = Printer.cyan


# A class for computing a moving average (mean value) with a given window size.
class MovingAverage:
    def __init__(self, average_width=10):
        self._average_width = average_width
        self._idx_ring = 0
        self._average = 0.0
        self._is_init = False
        self._ring_buffer = np.zeros(average_width)

    def init(self, init_val=None):
        if init_val is None:
            init_val = 0.0
        self._ring_buffer = np.full(self._average_width, init_val, dtype=float)
        self._average = init_val
        self._is_init = True

    def get_average(self, new_val=None):
        if not self._is_init:
            self.init(new_val)
        if new_val is None:
            return self._average
        old_val = self._ring_buffer[self._idx_ring]
        self._average += (new_val - old_val) / self._average_width
        self._ring_buffer[self._idx_ring] = new_val
        self._idx_ring = (self._idx_ring + 1) % self._average_width
        return self._average


class Timer:
    def __init__(self, name="", is_verbose=False):
        self._name = name
        self._is_verbose = is_verbose
        self._is_paused = False
        self._start_time = None
        self._accumulated = 0
        self._elapsed = 0
        self.last_elapsed = None
        self.start()

    def start(self):
        self._accumulated = 0
        self._is_paused = False
        self._start_time = cv2.getTickCount()

    def pause(self):
        now_time = cv2.getTickCount()
        self._accumulated += (now_time - self._start_time) / cv2.getTickFrequency()
        self._is_paused = True

    def resume(self):
        if self._is_paused:  # considered only if paused
            self._start_time = cv2.getTickCount()
            self._is_paused = False

    def elapsed(self):
        if self._is_paused:
            self._elapsed = self._accumulated
        else:
            now = cv2.getTickCount()
            self._elapsed = self._accumulated + (now - self._start_time) / cv2.getTickFrequency()
        if self._is_verbose:
            name = self._name + (" [paused]" if self._is_paused else "")
            timer_print(f"Timer::{name} - elapsed: {self._elapsed}")
        return self._elapsed


class TimerFps(Timer):
    def __init__(self, name="", average_width=10, is_verbose=True):
        super().__init__(name, is_verbose)
        self.moving_average = MovingAverage(average_width)

    def refresh(self):
        elapsed = self.elapsed()
        self.last_elapsed = elapsed
        self.moving_average.get_average(elapsed)
        self.start()
        if self._is_verbose:
            dT = self.moving_average.get_average()
            if dT > 0:
                timer_print(f"Timer::{self._name} - fps: {1.0 / dT}, T: {dT}")
