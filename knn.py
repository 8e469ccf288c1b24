from __future__ import annotations

import json
import logging
import os
from enum import IntEnum
from typing import Iterable, Optional

import cv2
import numpy as np

from models import DigitReading, GlyphModelError, LabelReading

logger = logging.getLogger(__name__)

GLYPH_SIZE = 20
DIGIT_LABELS = {code: str(code) for code in range(10)}
LABELS_SUFFIX = ".labels.json"

Rect = tuple[int, int, int, int]


# --- Glyph preprocessing ---


def resize_fill_square(img: np.ndarray, size: int = GLYPH_SIZE) -> np.ndarray:
    """Pads a glyph to a centred square, then resizes it to ``size`` x ``size``."""
    h, w = img.shape[:2]
    side = max(h, w)
    canvas = np.zeros((side, side), dtype=np.uint8)
    y0 = (side - h) // 2
    x0 = (side - w) // 2
    canvas[y0 : y0 + h, x0 : x0 + w] = img
    return cv2.resize(canvas, (size, size), interpolation=cv2.INTER_AREA)


def glyph_features(glyph: np.ndarray) -> np.ndarray:
    return resize_fill_square(glyph).reshape(-1).astype(np.float32) / 255.0


def tight_crop(img: np.ndarray) -> Optional[np.ndarray]:
    ys, xs = np.nonzero(img)
    if len(xs) == 0:
        return None
    return img[ys.min() : ys.max() + 1, xs.min() : xs.max() + 1]


def merge_broken_rects(rects: Iterable[Rect], overlap: float = 0.5) -> list[Rect]:
    """
    Joins rects that overlap horizontally by at least ``overlap`` of the
    narrower one, so a glyph split into pieces is classified as a whole.
    """
    merged = sorted(rects, key=lambda r: r[0])
    changed = True
    while changed:
        changed = False
        for i in range(len(merged)):
            for j in range(i + 1, len(merged)):
                x, y, w, h = merged[i]
                mx, my, mw, mh = merged[j]
                shared = min(x + w, mx + mw) - max(x, mx)
                if shared >= overlap * min(w, mw):
                    nx, ny = min(x, mx), min(y, my)
                    merged[i] = (
                        nx,
                        ny,
                        max(x + w, mx + mw) - nx,
                        max(y + h, my + mh) - ny,
                    )
                    del merged[j]
                    changed = True
                    break
            if changed:
                break
    return sorted(merged, key=lambda r: r[0])


def find_glyph_rects(mask: np.ndarray, min_height_ratio: float = 0.3) -> list[Rect]:
    contours, _ = cv2.findContours(
        (mask > 0).astype(np.uint8), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
    )
    rects = merge_broken_rects(cv2.boundingRect(c) for c in contours)
    min_height = mask.shape[0] * min_height_ratio
    return [r for r in rects if r[3] >= min_height]


# --- Reference set ---


class GlyphReferenceSet:
    """A trained k-NN model plus the response code -> character table."""

    def __init__(self, knn, labels: dict[int, str], sample_count: Optional[int] = None):
        if not knn.isTrained():
            raise GlyphModelError("Glyph k-NN model is not trained")
        self.knn = knn
        self.labels = dict(labels)
        self.sample_count = sample_count

    @classmethod
    def train(cls, samples: dict[str, list[np.ndarray]]) -> GlyphReferenceSet:
        """Trains from labelled binary glyph images (foreground > 0)."""
        codes = {}
        next_code = 10
        for char in sorted(samples):
            if char.isdigit() and len(char) == 1:
                codes[char] = int(char)
            else:
                codes[char] = next_code
                next_code += 1

        features, responses = [], []
        for char, images in samples.items():
            for image in images:
                glyph = tight_crop(image)
                if glyph is None:
                    raise GlyphModelError(f"Empty reference sample for '{char}'")
                features.append(glyph_features(glyph))
                responses.append(codes[char])
        if not features:
            raise GlyphModelError("No reference glyph samples")

        knn = cv2.ml.KNearest_create()
        knn.train(
            np.array(features, dtype=np.float32),
            cv2.ml.ROW_SAMPLE,
            np.array(responses, dtype=np.float32).reshape(-1, 1),
        )
        labels = {code: char for char, code in codes.items()}
        logger.info(f"Trained glyph reference set: {len(features)} samples, {len(labels)} labels")
        return cls(knn, labels, sample_count=len(features))

    @classmethod
    def load(cls, path: str) -> GlyphReferenceSet:
        if not os.path.isfile(path):
            raise GlyphModelError(f"Glyph model not found at {path}")
        try:
            knn = cv2.ml.KNearest_load(path)
        except cv2.error as e:
            raise GlyphModelError(f"Cannot load glyph model {path}: {e}") from e

        labels = DIGIT_LABELS
        sample_count = None
        labels_path = path + LABELS_SUFFIX
        if os.path.isfile(labels_path):
            try:
                with open(labels_path, "r", encoding="utf-8") as f:
                    sidecar = json.load(f)
                labels = {int(code): str(char) for code, char in sidecar["labels"].items()}
                sample_count = sidecar.get("sample_count")
            except (ValueError, KeyError, AttributeError) as e:
                raise GlyphModelError(f"Malformed glyph labels {labels_path}: {e}") from e
        return cls(knn, labels, sample_count)

    def save(self, path: str):
        self.knn.save(path)
        with open(path + LABELS_SUFFIX, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "labels": {str(code): char for code, char in self.labels.items()},
                    "sample_count": self.sample_count,
                },
                f,
            )

    def find_nearest(self, features: np.ndarray, k: int) -> tuple[np.ndarray, np.ndarray]:
        if self.sample_count is not None:
            k = min(k, self.sample_count)
        _, _, responses, dists = self.knn.findNearest(features, k)
        return responses, dists


# --- Classifier ---


class GlyphClassifier:
    def __init__(
        self,
        reference: GlyphReferenceSet,
        k: int = 1,
        reject_distance: float = 60.0,
        min_height_ratio: float = 0.3,
    ):
        self.reference = reference
        self.k = max(1, k)
        self.reject_distance = reject_distance
        self.min_height_ratio = min_height_ratio

    def segment(self, mask: np.ndarray) -> list[np.ndarray]:
        return [
            mask[y : y + h, x : x + w]
            for x, y, w, h in find_glyph_rects(mask, self.min_height_ratio)
        ]

    @staticmethod
    def _vote(responses: np.ndarray, dists: np.ndarray) -> tuple[int, float]:
        """Majority vote, ties broken by lowest total distance."""
        tally: dict[int, list[float]] = {}
        for response, dist in zip(responses, dists):
            tally.setdefault(int(response), []).append(float(dist))
        code = min(tally, key=lambda c: (-len(tally[c]), sum(tally[c])))
        return code, min(tally[code])

    def classify(self, mask: np.ndarray) -> DigitReading:
        glyphs = self.segment(mask)
        if not glyphs:
            return DigitReading.absent()

        features = np.array([glyph_features(g) for g in glyphs], dtype=np.float32)
        responses, dists = self.reference.find_nearest(features, self.k)

        chars, distances = [], []
        for row_responses, row_dists in zip(responses, dists):
            code, distance = self._vote(row_responses, row_dists)
            chars.append(self.reference.labels.get(code, "?"))
            distances.append(round(distance, 4))
        text = "".join(chars)
        low_confidence = any(d > self.reject_distance for d in distances) or "?" in text
        logger.debug(f"Classified '{text}' with distances {distances}")
        return DigitReading(text, tuple(distances), low_confidence)


def classify_by_ratio(masks: dict[IntEnum, np.ndarray], min_ratio: float) -> LabelReading:
    """Picks the label whose mask covers the largest share of the ROI."""
    ratios = {
        label: (float(np.count_nonzero(mask)) / mask.size if mask.size else 0.0)
        for label, mask in masks.items()
    }
    if not ratios:
        return LabelReading(None, ratios)
    best = max(ratios, key=lambda label: ratios[label])
    if ratios[best] < min_ratio:
        return LabelReading(None, ratios)
    return LabelReading(best, ratios)
