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

import unittest
from unittest import TestCase

import numpy as np

from monotrack.slam import BinaryWordsEncoder, KeyFrameDatabase, KeyFrame, Frame, Relocalizer

from synthetic_scene import make_camera, empty_frame


def random_descriptors(num, seed):
    rng = np.random.RandomState(seed)
    return rng.randint(0, 256, size=(num, 32)).astype(np.uint8)


# flip 'num_bits' random bits of each descriptor
def perturb_descriptors(des, num_bits, seed):
    rng = np.random.RandomState(seed)
    bits = np.unpackbits(des, axis=1)
    for row in bits:
        idxs = rng.choice(bits.shape[1], num_bits, replace=False)
        row[idxs] = 1 - row[idxs]
    return np.packbits(bits, axis=1)


class TestPlaceRecognition(TestCase):
    num_features = 300

    def setUp(self):
        print("\n=================================================================")
        np.random.seed(0)
        self.camera = make_camera()
        self.descriptors = [random_descriptors(self.num_features, seed) for seed in range(3)]
        self.keyframes = [self.make_keyframe(des) for des in self.descriptors]
        self.db = KeyFrameDatabase()
        for kf in self.keyframes:
            self.db.add(kf)

    def make_frame(self, des):
        kps = np.random.uniform([0, 0], [self.camera.width, self.camera.height], size=(len(des), 2))
        return Frame(self.camera, kps=kps, des=des)

    def make_keyframe(self, des):
        return KeyFrame(self.make_frame(des))

    def test_encoder_is_deterministic(self):
        des = self.descriptors[0]
        words1 = BinaryWordsEncoder().compute_word_ids(des)
        words2 = BinaryWordsEncoder().compute_word_ids(des)
        np.testing.assert_array_equal(words1, words2)
        encoder = BinaryWordsEncoder()
        self.assertEqual(words1.shape, (len(des), encoder.num_tables))
        self.assertTrue(np.all(words1 >= 0) and np.all(words1 < encoder.size()))

    def test_score(self):
        encoder = BinaryWordsEncoder()
        v1 = encoder.compute_bow_vector(self.descriptors[0])
        v2 = encoder.compute_bow_vector(self.descriptors[1])
        self.assertAlmostEqual(encoder.score(v1, v1), 1.0)
        self.assertLess(encoder.score(v1, v2), 0.5)

    def test_candidates(self):
        self.assertEqual(self.db.size(), len(self.keyframes))
        query = self.make_frame(perturb_descriptors(self.descriptors[1], num_bits=2, seed=10))
        candidates = self.db.detect_relocalization_candidates(query)
        self.assertGreater(len(candidates), 0)
        self.assertIs(candidates[0], self.keyframes[1])
        self.assertNotIn(self.keyframes[0], candidates)
        self.assertNotIn(self.keyframes[2], candidates)

    def test_erase(self):
        self.db.erase(self.keyframes[1])
        self.assertEqual(self.db.size(), len(self.keyframes) - 1)
        self.assertFalse(self.db.contains(self.keyframes[1]))
        query = self.make_frame(self.descriptors[1].copy())
        candidates = self.db.detect_relocalization_candidates(query)
        self.assertNotIn(self.keyframes[1], candidates)

    def test_no_candidates(self):
        self.assertEqual(self.db.detect_relocalization_candidates(empty_frame(self.camera)), [])
        self.db.clear()
        self.assertEqual(self.db.size(), 0)
        query = self.make_frame(self.descriptors[0].copy())
        self.assertEqual(self.db.detect_relocalization_candidates(query), [])

    def test_relocalizer_without_candidates(self):
        relocalizer = Relocalizer(KeyFrameDatabase())
        query = self.make_frame(self.descriptors[0].copy())
        self.assertFalse(relocalizer.relocalize(query))


if __name__ == "__main__":
    unittest.main()
