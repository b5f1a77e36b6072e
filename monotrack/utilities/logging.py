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

import sys
import os
import logging

from termcolor import colored


# ANSI escape codes used by Printer
class TerminalColors:
    """
    TerminalColors: reset all colors with TerminalColors.reset; use the sub classes
    fg (foreground) and bg (background) as TerminalColors.fg.red, TerminalColors.bg.green.
    """

    reset = "\033[0m"
    bold = "\033[01m"
    underline = "\033[04m"

    class fg:
        red = "\033[31m"
        green = "\033[32m"
        orange = "\033[33m"
        blue = "\033[34m"
        purple = "\033[35m"
        cyan = "\033[36m"
        lightgrey = "\033[37m"
        yellow = "\033[93m"
        lightblue = "\033[94m"

    class bg:
        red = "\033[41m"
        green = "\033[42m"
        orange = "\033[43m"


def _print_with_color(color, *args, file=None, **kwargs):
    out = file if file is not None else sys.stdout
    print(color, *args, file=out, **kwargs)
    print(TerminalColors.reset, end="", file=out)


class Printer(object):
    @staticmethod
    def red(*args, **kwargs):
        _print_with_color(TerminalColors.fg.red, *args, **kwargs)

    @staticmethod
    def green(*args, **kwargs):
        _print_with_color(TerminalColors.fg.green, *args, **kwargs)

    @staticmethod
    def blue(*args, **kwargs):
        _print_with_color(TerminalColors.fg.blue, *args, **kwargs)

    @staticmethod
    def lightblue(*args, **kwargs):
        _print_with_color(TerminalColors.fg.lightblue, *args, **kwargs)

    @staticmethod
    def cyan(*args, **kwargs):
        _print_with_color(TerminalColors.fg.cyan, *args, **kwargs)

    @staticmethod
    def orange(*args, **kwargs):
        _print_with_color(TerminalColors.fg.orange, *args, **kwargs)

    @staticmethod
    def purple(*args, **kwargs):
        _print_with_color(TerminalColors.fg.purple, *args, **kwargs)

    @staticmethod
    def yellow(*args, **kwargs):
        _print_with_color(TerminalColors.fg.yellow, *args, **kwargs)

    @staticmethod
    def error(*args, **kwargs):
        _print_with_color(TerminalColors.fg.red, *args, file=sys.stderr, **kwargs)

    @staticmethod
    def warning(*args, **kwargs):
        _print_with_color(TerminalColors.fg.yellow, *args, **kwargs)

    @staticmethod
    def info(*args, **kwargs):
        _print_with_color(TerminalColors.fg.cyan, *args, **kwargs)

    @staticmethod
    def bold(*args, **kwargs):
        _print_with_color(TerminalColors.bold, *args, **kwargs)

    @staticmethod
    def bold_green(*args, **kwargs):
        _print_with_color(f"{TerminalColors.bold}{TerminalColors.fg.green}", *args, **kwargs)


# tracking state -> termcolor color
kStateColors = {
    "SYSTEM_NOT_READY": "magenta",
    "NO_IMAGES_YET": "cyan",
    "NOT_INITIALIZED": "yellow",
    "INITIALIZING": "yellow",
    "WORKING": "green",
    "LOST": "red",
}


def colored_state(state):
    """Return the name of a tracking state colored by health (for status lines)."""
    name = state.name if hasattr(state, "name") else str(state)
    return colored(name, kStateColors.get(name, "white"), attrs=["bold"])


# for logging to multiple files, streams, etc.
class Logging(object):
    """
    A class for logging to multiple files, streams, etc.
    Example:
    # file logger
    logger = Logging.setup_file_logger('tracking_logger', 'logs/tracking.log')
    logger.info('This is just info message')
    """

    time_log_formatter = logging.Formatter("%(levelname)s[%(asctime)s] %(message)s")
    notime_log_formatter = logging.Formatter("%(levelname)s %(message)s")
    simple_log_formatter = logging.Formatter("%(message)s")
    thread_log_formatter = logging.Formatter("%(levelname)s] (%(threadName)-10s) %(message)s")

    @staticmethod
    def setup_logger(name, level=logging.INFO, formatter=time_log_formatter):  # to sys.stderr
        """To setup as many loggers as you want with a selected formatter"""
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        return logger

    @staticmethod
    def setup_file_logger(
        name, log_file, level=logging.INFO, mode="+w", formatter=time_log_formatter
    ):  # to file
        """To setup as many loggers as you want with a selected formatter"""
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # the same logger can be requested by several instances (e.g. after a reset)
        if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            handler = logging.FileHandler(log_file, mode=mode)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        return logger
