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

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    # Only imported when type checking, not at runtime
    from monotrack.local_features.feature_tracker import OrbFeatureTracker
    from monotrack.local_features.feature_matcher import FeatureMatcher


# Shared frame stuff. Normally, this information is exclusively used by the tracking front-end.
class FeatureTrackerShared:
    feature_tracker: "OrbFeatureTracker | None" = None
    feature_matcher: "FeatureMatcher | None" = None
    descriptor_distance = None
    descriptor_distances = None
    oriented_features = False

    @staticmethod
    def set_feature_tracker(feature_tracker, force=False):
        from .frame import FrameBase  # import at runtime

        FrameBase.reset_id()  # reset the frame counter

        if not force and FeatureTrackerShared.feature_tracker is not None:
            raise RuntimeError("FeatureTrackerShared: Tracker is already set!")
        FeatureTrackerShared.feature_tracker = feature_tracker
        FeatureTrackerShared.feature_matcher = feature_tracker.matcher
        FeatureTrackerShared.descriptor_distance = feature_tracker.descriptor_distance
        FeatureTrackerShared.descriptor_distances = feature_tracker.descriptor_distances
        FeatureTrackerShared.oriented_features = feature_tracker.oriented_features

    @staticmethod
    def is_set():
        return FeatureTrackerShared.feature_tracker is not None
