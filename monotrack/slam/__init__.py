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

# core classes of the tracking front-end (imported in dependency order)
from .slam_commons import TrackingState, MapInvariantError
from .camera import Camera, PinholeCamera
from .feature_tracker_shared import FeatureTrackerShared
from .frame import Frame, kNoPoint
from .keyframe import KeyFrame
from .map_point import MapPoint
from .map import Map
from .motion_model import MotionModel, MotionModelDamping
from .geometry_matchers import ProjectionMatcher, DescriptorMatcher, EpipolarMatcher
from .initializer import Initializer, InitializerOutput
from .local_map import LocalMap
from .place_recognition import BinaryWordsEncoder, KeyFrameDatabase
from .relocalizer import Relocalizer
from .local_mapping import LocalMapping
from .loop_closing import LoopClosing
from .tracking import Tracking, TrackingHistory
from .slam import Slam
