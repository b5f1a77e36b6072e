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


kScriptPath = os.path.realpath(__file__)
kScriptFolder = os.path.dirname(kScriptPath)
kRootFolder = os.path.join(kScriptFolder, "..")


# List of shared static parameters for configuring the tracking modules.
# Values can be overridden from the settings file (GLOBAL_PARAMETERS section) by using set_from_dict().
class Parameters:

    # ================================================================
    # Logs
    # ================================================================
    # Folder where logs are stored. This can be changed by monotrack/config.py to redirect the logs in a different folder.
    kLogsFolder = kRootFolder + "/logs"

    # ================================================================
    # Tracking-mapping threads
    # ================================================================
    kLocalMappingOnSeparateThread = True  # True: local mapping runs on a separate thread, False: tracking steps local mapping itself
    kLoopClosingOnSeparateThread = True
    kLocalMappingTimeoutPopKeyframe = 0.5  # [s]
    kLoopClosingTimeoutPopKeyframe = 0.5  # [s]
    kLocalMappingDebugAndPrintToFile = True
    kTrackingDebugAndPrintToFile = True
    kRelocalizationDebugAndPrintToFile = True
    kLocalMappingMaxQueueSize = 3  # max number of keyframes waiting in the local mapping queue (backpressure bound)
    kLocalMappingNumNeighborKeyFrames = 10  # [# frames] neighbors used for triangulating new points
    kLocalMappingRecentPointsMinFoundRatio = 0.25
    kLocalMappingRecentPointsMinObs = 2  # a point created less than 3 keyframes ago must be observed by at least this number of keyframes
    kKeyframeCullingRedundantObsRatio = 0.9  # a keyframe is redundant if this ratio of its points is seen by at least 3 other keyframes
    kUseKeyframeCulling = True

    # ================================================================
    # Features
    # ================================================================
    kNumFeatures = 1000  # default number of keypoints (can be overridden by the settings file)
    kNumLevels = 8
    kScaleFactor = 1.2
    kSigmaLevel0 = 1.0  # sigma of the keypoint localization at level 0
    kInitializerFeatureMultiplier = 2  # the initialization extractor detects kInitializerFeatureMultiplier*kNumFeatures keypoints
    kMaxDescriptorDistance = 100  # [Hamming] max descriptor distance for ORB-like binary descriptors
    kMaxDescriptorDistanceSearchByProjection = 100  # [Hamming]

    # ================================================================
    # Initializer
    # ================================================================
    kInitializerDesiredMedianDepth = 1  # when initializing, the initial median depth is computed and forced to this value
    kInitializerNumMinFeatures = 100
    kInitializerMinMatches = 100  # min number of keypoint matches between the initial reference and the current frame
    kInitializerNumMinTriangulatedPoints = 50
    kInitializerFeatureMatchRatioTest = 0.9
    kInitializerMinParallaxDeg = 1.0  # [deg]
    kInitializerSigma = 1.0  # [pixels] sigma used for scoring the two-view models
    kInitializerRansacProb = 0.999
    kInitializerRansacThreshold = 1.0  # [pixels]
    kInitializerRatioHomography = 0.40  # choose H if SH/(SH+SF) > kInitializerRatioHomography
    kInitializerSearchWindowSize = 100  # [pixels] a match is kept only if the current keypoint is in this window around its last matched position
    kCosMaxParallaxInitializer = 0.99998  # max cos angle for triangulation (min parallax angle) in the Initializer

    # ================================================================
    # Point triangulation and visibility
    # ================================================================
    kCosMaxParallax = 0.9998  # max cos angle for triangulation (min parallax angle)
    kViewingCosLimitForPoint = 0.5  # must be viewing cos > kViewingCosLimitForPoint (viewing angle must be less than 60 deg)
    kScaleConsistencyFactor = 1.5
    kMinDistanceFromEpipole = 10.0  # [pixels] used with search by triangulation to check the distance of a keypoint from the epipole
    kMinRatioBaselineDepth = 0.01  # min ratio baseline/median depth for triangulating new points between two keyframes
    kMaxDistanceToleranceFactor = 1.2
    kMinDistanceToleranceFactor = 0.8

    # ================================================================
    # Tracking
    # ================================================================
    kUseMotionModel = True  # use the motion model for the next frame pose prediction
    kUseMotionModelDamping = False
    kMotionModelDampingFactor = 0.95
    kMinNumMatchedFeaturesSearchFrameByProjection = 20  # if the number of tracked features is below this, a wider search is performed
    kMinNumMatchedFeaturesSearchReferenceFrame = 15
    kNumMinInliersPoseOptimizationTrackFrame = 10
    kNumMinInliersTrackLocalMap = 30  # min inliers for accepting a WORKING result
    kNumMinInliersTrackLocalMapAfterReloc = 50  # min inliers within kMaxFrames of the last relocalization
    kMaxReprojectionDistanceFrame = 7  # [pixels]
    kMaxReprojectionDistanceMap = 3  # [pixels]
    kMaxReprojectionDistanceMapReloc = 5  # [pixels] used right after a relocalization
    kMatchRatioTestMap = 0.8
    kMatchRatioTestFrameByProjection = 0.9
    kMaxNumOfKeyframesInLocalMap = 80
    kNumBestCovisibilityKeyFrames = 10
    kMinNumOfCovisiblePointsForCreatingConnection = 15
    kResetWhenLostEarly = False  # request a reset when tracking is lost with few keyframes in the map
    kNumKeyframesForResetWhenLost = 5

    # ================================================================
    # Keyframe generation
    # ================================================================
    kNumMinPointsForNewKf = 15  # minimum number of matched map points for spawning a new KeyFrame
    kThNewKfRefRatioMonocular = 0.9  # for determining if a new KF must be spawned, condition on the ratio of tracked points w.r.t. the reference KF
    kNumMinObsForKeyFrameTrackedPoints = 3
    kMinFramesBetweenKfs = 0  # [# frames]
    kMaxFramesBetweenKfs = None  # [# frames] None: use the camera fps

    # ================================================================
    # Pose optimization
    # ================================================================
    kPoseOptimizationNumRounds = 4
    kPoseOptimizationMinNumPoints = 6  # a pose cannot be estimated with fewer points

    # ================================================================
    # Place recognition
    # ================================================================
    kPlaceRecognitionNumTables = 4  # number of hash tables used for quantizing binary descriptors into words
    kPlaceRecognitionNumBitsPerWord = 12  # number of descriptor bits sampled by each table
    kPlaceRecognitionSeed = 0  # seed of the sampled bit positions (the same words must be generated across runs)
    kPlaceRecognitionMinCommonWordsRatio = 0.8
    kPlaceRecognitionNumCovisiblesForScore = 10
    kPlaceRecognitionMinAccScoreRatio = 0.75

    # ================================================================
    # Relocalization
    # ================================================================
    kRelocalizationMaxNumCandidates = 10
    kRelocalizationMinKpsMatches = 15
    kRelocalizationFeatureMatchRatioTest = 0.75
    kRelocalizationFeatureMatchRatioTestLarge = 0.9  # used by the searches by projection
    kRelocalizationPnPRansacIterations = 300
    kRelocalizationPnPReprojectionError = 4.0  # [pixels]
    kRelocalizationPoseOpt1MinMatches = 10
    kRelocalizationDoPoseOpt2NumInliers = 50
    kRelocalizationMaxReprojectionDistanceMapSearchCoarse = 10  # [pixels]
    kRelocalizationMaxReprojectionDistanceMapSearchFine = 3  # [pixels]

    # ================================================================
    # Other parameters
    # ================================================================
    kChi2Mono = 5.991  # chi-square 2 DOFs, used for reprojection error  (Hartley Zisserman pg 119)
    kMinDepth = 1e-2
    kMaxLenFrameDeque = 20


def set_from_dict(cls, config):
    for key, value in config.items():
        if hasattr(cls, key):  # ensures it is a defined class attribute
            setattr(cls, key, value)
        else:
            print(f"Unknown config key: {key}")


def to_dict(cls):
    return {
        key: getattr(cls, key)
        for key in dir(cls)
        if not key.startswith("__") and not callable(getattr(cls, key))
    }
