from __future__ import annotations

from abc import ABC, abstractmethod

import cv2
import numpy as np

from models import ClearStatus, LayoutVariant, RatingClass
from settings import OcrSettings

# Label colours (r, g, b) as rendered on the result screen
RATING_CLASS_COLORS = {
    RatingClass.PAST: (20, 150, 205),
    RatingClass.PRESENT: (120, 180, 50),
    RatingClass.FUTURE: (130, 60, 140),
    RatingClass.BEYOND: (170, 30, 50),
    RatingClass.ETERNAL: (150, 130, 200),
}

CLEAR_STATUS_COLORS = {
    ClearStatus.TRACK_LOST: (160, 40, 70),
    ClearStatus.TRACK_COMPLETE: (110, 90, 160),
    ClearStatus.FULL_RECALL: (200, 80, 200),
    ClearStatus.PURE_MEMORY: (60, 190, 230),
}


def remove_small_blobs(mask: np.ndarray, min_area: int) -> np.ndarray:
    """Drops 8-connected foreground components smaller than ``min_area`` pixels."""
    if min_area <= 1 or not mask.any():
        return mask
    n_labels, labels, stats, _ = cv2.connectedComponentsWithStats(
        (mask > 0).astype(np.uint8), connectivity=8
    )
    keep = np.zeros(n_labels, dtype=bool)
    keep[1:] = stats[1:, cv2.CC_STAT_AREA] >= min_area
    return np.where(keep[labels], 255, 0).astype(np.uint8)


def mask_color(roi: np.ndarray, rgb: tuple[int, int, int], tolerance: int) -> np.ndarray:
    color = np.array(rgb, dtype=np.int16)
    lower = np.clip(color - tolerance, 0, 255).astype(np.uint8)
    upper = np.clip(color + tolerance, 0, 255).astype(np.uint8)
    return cv2.inRange(roi, lower, upper)


class RoiMasker(ABC):
    """Binarizes ROIs of one layout variant into 0/255 ``uint8`` masks."""

    layout: LayoutVariant
    label_tolerance_bonus = 0

    def __init__(self, settings: OcrSettings | None = None):
        self.settings = settings or OcrSettings()

    @staticmethod
    def for_layout(layout: LayoutVariant, settings: OcrSettings | None = None) -> RoiMasker:
        maskers = {LayoutVariant.T1: RoiMaskerT1, LayoutVariant.T2: RoiMaskerT2}
        return maskers[layout](settings)

    @abstractmethod
    def threshold_digits(self, roi: np.ndarray) -> np.ndarray:
        """Raw 0/255 digit mask before noise cleanup."""

    def digits(self, roi: np.ndarray) -> np.ndarray:
        return remove_small_blobs(self.threshold_digits(roi), self.settings.min_blob_area)

    def score(self, roi: np.ndarray) -> np.ndarray:
        return self.digits(roi)

    def pure(self, roi: np.ndarray) -> np.ndarray:
        return self.digits(roi)

    def far(self, roi: np.ndarray) -> np.ndarray:
        return self.digits(roi)

    def lost(self, roi: np.ndarray) -> np.ndarray:
        return self.digits(roi)

    def max_recall(self, roi: np.ndarray) -> np.ndarray:
        return self.digits(roi)

    @property
    def label_tolerance(self) -> int:
        return self.settings.label_color_tolerance + self.label_tolerance_bonus

    def color(self, roi: np.ndarray, rgb: tuple[int, int, int]) -> np.ndarray:
        mask = mask_color(roi, rgb, self.label_tolerance)
        return remove_small_blobs(mask, self.settings.min_blob_area)

    def rating_class(self, roi: np.ndarray) -> dict[RatingClass, np.ndarray]:
        return {label: self.color(roi, rgb) for label, rgb in RATING_CLASS_COLORS.items()}

    def clear_status(self, roi: np.ndarray) -> dict[ClearStatus, np.ndarray]:
        return {label: self.color(roi, rgb) for label, rgb in CLEAR_STATUS_COLORS.items()}


class RoiMaskerT1(RoiMasker):
    """Digits sit on a solid panel, a luminance cut is enough."""

    layout = LayoutVariant.T1

    def threshold_digits(self, roi: np.ndarray) -> np.ndarray:
        gray = cv2.cvtColor(roi, cv2.COLOR_RGB2GRAY)
        _, mask = cv2.threshold(gray, self.settings.t1_digit_threshold, 255, cv2.THRESH_BINARY)
        return mask


class RoiMaskerT2(RoiMasker):
    """Digits sit on a coloured gradient; keep bright, unsaturated pixels only."""

    layout = LayoutVariant.T2
    label_tolerance_bonus = 10

    def threshold_digits(self, roi: np.ndarray) -> np.ndarray:
        hsv = cv2.cvtColor(roi, cv2.COLOR_RGB2HSV)
        lower = np.array([0, 0, self.settings.t2_min_value], dtype=np.uint8)
        upper = np.array([179, self.settings.t2_max_saturation, 255], dtype=np.uint8)
        return cv2.inRange(hsv, lower, upper)
