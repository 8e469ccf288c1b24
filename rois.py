from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from models import LayoutVariant, RoiOutOfBoundsError

logger = logging.getLogger(__name__)

# --- CONFIGURATION CONSTANTS ---
# ROI rectangles are defined on a 1920x1080 reference frame.
# Format: (dx, dy, w, h) where (dx, dy) is the top-left corner relative to
# the image centre. Scaling keeps the game's 16:9 render area centred.
REF_W, REF_H = 1920, 1080

ROI_NAMES = (
    "rating_class",
    "score",
    "pure",
    "far",
    "lost",
    "max_recall",
    "jacket",
    "partner_icon",
    "clear_status",
)

ROI_CONFIG = {
    LayoutVariant.T1: {
        "partner_icon": (-45, -520, 90, 75),
        "clear_status": (-275, -420, 550, 60),
        "score": (-140, -330, 280, 45),
        "rating_class": (-610, -250, 265, 35),
        "max_recall": (-465, -200, 150, 35),
        "jacket": (-610, -143, 375, 375),
        "pure": (5, 110, 150, 35),
        "far": (5, 150, 150, 35),
        "lost": (5, 192, 150, 35),
    },
    LayoutVariant.T2: {
        "partner_icon": (-900, -520, 100, 80),
        "clear_status": (-300, -380, 600, 60),
        "score": (-160, -280, 320, 50),
        "rating_class": (150, -200, 240, 40),
        "max_recall": (150, -140, 160, 40),
        "jacket": (-560, -200, 400, 400),
        "pure": (150, 80, 160, 40),
        "far": (150, 130, 160, 40),
        "lost": (150, 180, 160, 40),
    },
}

# Probe pixels that tell the variants apart.
# Format: (x_ratio, y_ratio, (r, g, b)), relative to the normalized image.
LAYOUT_PROBES = {
    LayoutVariant.T1: (
        (0.02, 0.5, (66, 66, 82)),
        (0.98, 0.5, (66, 66, 82)),
    ),
    LayoutVariant.T2: ((0.5, 0.97, (232, 222, 240)),),
}

# Accepted width / height ratio per variant
LAYOUT_ASPECT_RANGES = {
    LayoutVariant.T1: (1.3, 2.5),
    LayoutVariant.T2: (1.0, 2.5),
}

SELECTION_ORDER = (LayoutVariant.T1, LayoutVariant.T2)
DEFAULT_LAYOUT = LayoutVariant.T2


# --- LAYOUT SELECTOR ---


def _probe_color(img: np.ndarray, x_ratio: float, y_ratio: float) -> np.ndarray:
    """Mean colour of the 3x3 patch around a relative coordinate."""
    h, w = img.shape[:2]
    x = min(max(int(round(w * x_ratio)), 0), w - 1)
    y = min(max(int(round(h * y_ratio)), 0), h - 1)
    patch = img[max(y - 1, 0) : y + 2, max(x - 1, 0) : x + 2]
    return patch.reshape(-1, 3).astype(np.float32).mean(axis=0)


def matches_layout(img: np.ndarray, layout: LayoutVariant, tolerance: int = 12) -> bool:
    h, w = img.shape[:2]
    if h == 0 or w == 0:
        return False
    low, high = LAYOUT_ASPECT_RANGES[layout]
    if not low <= w / h <= high:
        return False
    for x_ratio, y_ratio, expected in LAYOUT_PROBES[layout]:
        color = _probe_color(img, x_ratio, y_ratio)
        if np.abs(color - np.array(expected, dtype=np.float32)).max() > tolerance:
            return False
    return True


def select_layout(img: np.ndarray, tolerance: int = 12) -> LayoutVariant:
    """Picks the first variant whose probes match, else the default one."""
    for layout in SELECTION_ORDER:
        if matches_layout(img, layout, tolerance):
            logger.info(f"Selected layout {layout.value}")
            return layout
    logger.info(f"No layout probe matched, falling back to {DEFAULT_LAYOUT.value}")
    return DEFAULT_LAYOUT


# --- ROI TABLE ---


class DeviceRois:
    """ROI rectangles of one layout variant scaled to a concrete image size."""

    def __init__(
        self,
        layout: LayoutVariant,
        width: int,
        height: int,
        table: Optional[dict[str, tuple[int, int, int, int]]] = None,
    ):
        self.layout = layout
        self.w = width
        self.h = height
        self.table = dict(table if table is not None else ROI_CONFIG[layout])
        self.rects: dict[str, tuple[int, int, int, int]] = {
            name: self._scale(ref) for name, ref in self.table.items()
        }

    @property
    def factor(self) -> float:
        if self.w / self.h < REF_W / REF_H:
            return self.w / REF_W
        return self.h / REF_H

    def _scale(self, ref: tuple[int, int, int, int]) -> tuple[int, int, int, int]:
        dx, dy, rw, rh = ref
        factor = self.factor
        x = int(round(self.w / 2 + dx * factor))
        y = int(round(self.h / 2 + dy * factor))
        return x, y, int(round(rw * factor)), int(round(rh * factor))

    def rect(self, name: str) -> tuple[int, int, int, int]:
        return self.rects[name]

    def validate(self):
        for name, (x, y, w, h) in self.rects.items():
            if w <= 0 or h <= 0 or x < 0 or y < 0 or x + w > self.w or y + h > self.h:
                raise RoiOutOfBoundsError(
                    f"ROI '{name}' of layout {self.layout.value} at {(x, y, w, h)}"
                    f" does not fit a {self.w}x{self.h} image"
                )


# --- ROI EXTRACTOR ---


class RoiExtractor:
    def __init__(self, rois: DeviceRois, img: np.ndarray):
        h, w = img.shape[:2]
        if (rois.w, rois.h) != (w, h):
            raise RoiOutOfBoundsError(
                f"ROI table scaled for {rois.w}x{rois.h} used on a {w}x{h} image"
            )
        rois.validate()
        self.rois = rois
        self.img = img

    @classmethod
    def for_layout(cls, layout: LayoutVariant, img: np.ndarray) -> RoiExtractor:
        h, w = img.shape[:2]
        return cls(DeviceRois(layout, w, h), img)

    @property
    def layout(self) -> LayoutVariant:
        return self.rois.layout

    def crop(self, name: str) -> np.ndarray:
        x, y, w, h = self.rois.rect(name)
        return self.img[y : y + h, x : x + w].copy()

    def __getattr__(self, name: str) -> np.ndarray:
        if name in ROI_NAMES:
            return self.crop(name)
        raise AttributeError(name)
