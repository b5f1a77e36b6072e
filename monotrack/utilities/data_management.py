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

from queue import Empty as QueueEmpty

from .logging import Printer


def empty_queue(queue, verbose=True):
    try:
        while not queue.empty():
            queue.get_nowait()
    except QueueEmpty:
        pass
    except (OSError, ValueError) as e:
        if verbose:
            Printer.red(f"EXCEPTION in empty_queue: {e}")
