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

from collections import defaultdict, Counter
from threading import Lock

from monotrack.config_parameters import Parameters

from .frame import Frame
from .keyframe import KeyFrame


# Quantize binary descriptors into visual words by locality sensitive hashing:
# each table samples a fixed set of descriptor bits and the sampled bits form the word key.
# Descriptors that differ by a few bits share, with high probability, the word of at least one table.
class BinaryWordsEncoder(object):
    def __init__(
        self,
        num_tables=Parameters.kPlaceRecognitionNumTables,
        num_bits=Parameters.kPlaceRecognitionNumBitsPerWord,
        seed=Parameters.kPlaceRecognitionSeed,
    ):
        self.num_tables = num_tables
        self.num_bits = num_bits
        self.seed = seed
        self.bit_idxs = None  # [num_tables x num_bits] sampled bit positions (set on the first descriptor)
        self.descriptor_num_bits = None
        self.powers = (1 << np.arange(num_bits, dtype=np.int64)).astype(np.int64)

    def size(self):
        return self.num_tables * (1 << self.num_bits)

    def _init_bit_idxs(self, descriptor_num_bits):
        rng = np.random.RandomState(self.seed)
        self.descriptor_num_bits = descriptor_num_bits
        self.bit_idxs = np.array(
            [rng.choice(descriptor_num_bits, self.num_bits, replace=False) for _ in range(self.num_tables)],
            dtype=np.intp,
        )

    # out: [N x num_tables] array of word ids
    def compute_word_ids(self, des):
        des = np.ascontiguousarray(des, dtype=np.uint8)
        if des.ndim != 2 or des.shape[0] == 0:
            return np.empty((0, self.num_tables), dtype=np.int64)
        bits = np.unpackbits(des, axis=1)
        if self.bit_idxs is None:
            self._init_bit_idxs(bits.shape[1])
        elif bits.shape[1] != self.descriptor_num_bits:
            raise ValueError(
                f"BinaryWordsEncoder: got {bits.shape[1]}-bit descriptors, expected {self.descriptor_num_bits}-bit ones"
            )
        word_ids = np.empty((bits.shape[0], self.num_tables), dtype=np.int64)
        for t in range(self.num_tables):
            keys = bits[:, self.bit_idxs[t]].astype(np.int64) @ self.powers
            word_ids[:, t] = t * (1 << self.num_bits) + keys
        return word_ids

    # bag of words vector: word id -> L1-normalized term frequency
    def compute_bow_vector(self, des):
        word_ids = self.compute_word_ids(des)
        if word_ids.size == 0:
            return {}
        counts = Counter(word_ids.ravel().tolist())
        total = float(sum(counts.values()))
        return {word_id: count / total for word_id, count in counts.items()}

    # L1 score in [0,1] between two L1-normalized bow vectors (1: same vector)
    @staticmethod
    def score(v1, v2):
        if len(v1) > len(v2):
            v1, v2 = v2, v1
        s = 0.0
        for word_id, w1 in v1.items():
            w2 = v2.get(word_id)
            if w2 is not None:
                s += abs(w1) + abs(w2) - abs(w1 - w2)
        return 0.5 * s


# Keyframe database with an inverted file (word id -> keyframes), queried for relocalization candidates.
# The query only reads the database; keyframes are added by loop closing and removed when they are culled.
class KeyFrameDatabase(object):
    def __init__(self, encoder: BinaryWordsEncoder = None):
        self.encoder = encoder if encoder is not None else BinaryWordsEncoder()
        self.inverted_file = defaultdict(list)  # word id -> list of keyframes
        self.bow_vectors = {}  # keyframe -> bow vector
        self.mutex = Lock()

    def size(self):
        with self.mutex:
            return len(self.bow_vectors)

    def contains(self, keyframe: KeyFrame):
        with self.mutex:
            return keyframe in self.bow_vectors

    def add(self, keyframe: KeyFrame):
        bow_vector = self.encoder.compute_bow_vector(keyframe.des)
        with self.mutex:
            if keyframe in self.bow_vectors:
                return
            self.bow_vectors[keyframe] = bow_vector
            for word_id in bow_vector.keys():
                self.inverted_file[word_id].append(keyframe)

    def erase(self, keyframe: KeyFrame):
        with self.mutex:
            bow_vector = self.bow_vectors.pop(keyframe, None)
            if bow_vector is None:
                return
            for word_id in bow_vector.keys():
                kf_list = self.inverted_file.get(word_id)
                if kf_list is not None and keyframe in kf_list:
                    kf_list.remove(keyframe)
                    if len(kf_list) == 0:
                        del self.inverted_file[word_id]

    def clear(self):
        with self.mutex:
            self.inverted_file.clear()
            self.bow_vectors.clear()

    # out: list of candidate keyframes ranked by accumulated covisibility score (best first);
    #      an empty list if no keyframe shares words with the frame
    def detect_relocalization_candidates(self, frame: Frame, max_num_candidates=Parameters.kRelocalizationMaxNumCandidates):
        frame_bow_vector = self.encoder.compute_bow_vector(frame.des)
        if len(frame_bow_vector) == 0:
            return []

        # search all keyframes that share a word with the current frame
        kfs_sharing_words = []
        with self.mutex:
            for word_id in frame_bow_vector.keys():
                for kf in self.inverted_file.get(word_id, ()):
                    if kf.reloc_query_id != frame.id:
                        kf.num_reloc_words = 0
                        kf.reloc_query_id = frame.id
                        kfs_sharing_words.append(kf)
                    kf.num_reloc_words += 1
            kf_bow_vectors = {kf: self.bow_vectors[kf] for kf in kfs_sharing_words}

        kfs_sharing_words = [kf for kf in kfs_sharing_words if not kf.is_bad()]
        if not kfs_sharing_words:
            return []

        # only compare against those keyframes that share enough words
        max_common_words = max(kf.num_reloc_words for kf in kfs_sharing_words)
        min_common_words = int(max_common_words * Parameters.kPlaceRecognitionMinCommonWordsRatio)

        score_and_match = []
        for kf in kfs_sharing_words:
            if kf.num_reloc_words > min_common_words:
                si = self.encoder.score(frame_bow_vector, kf_bow_vectors[kf])
                kf.reloc_score = si
                score_and_match.append((si, kf))
            else:
                kf.reloc_score = 0
        if not score_and_match:
            return []

        # accumulate score by covisibility
        acc_score_and_match = []
        best_acc_score = 0
        for score, kf in score_and_match:
            best_score = score
            acc_score = score
            best_kf = kf
            for kf2 in kf.get_best_covisible_keyframes(Parameters.kPlaceRecognitionNumCovisiblesForScore):
                if kf2.reloc_query_id == frame.id and not kf2.is_bad():
                    acc_score += kf2.reloc_score
                    if kf2.reloc_score > best_score:
                        best_kf = kf2
                        best_score = kf2.reloc_score
            acc_score_and_match.append((acc_score, best_kf))
            best_acc_score = max(best_acc_score, acc_score)

        # return all those keyframes with a score higher than 0.75*best_acc_score
        min_score_to_retain = Parameters.kPlaceRecognitionMinAccScoreRatio * best_acc_score
        acc_score_and_match.sort(key=lambda x: x[0], reverse=True)
        already_added = set()
        reloc_candidates = []
        for acc_score, kf in acc_score_and_match:
            if acc_score > min_score_to_retain and kf not in already_added:
                reloc_candidates.append(kf)
                already_added.add(kf)
                if len(reloc_candidates) >= max_num_candidates:
                    break
        return reloc_candidates
