from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def _uniform_color(line: np.ndarray, std_threshold: float) -> Optional[np.ndarray]:
    """Mean colour of a row or column, or None when it is not uniform."""
    line = line.astype(np.float32)
    if line.std(axis=0).max() >= std_threshold:
        return None
    return line.mean(axis=0)


def _is_border_line(
    line: np.ndarray, border: np.ndarray, std_threshold: float, color_tolerance: float
) -> bool:
    color = _uniform_color(line, std_threshold)
    if color is None:
        return False
    return bool(np.abs(color - border).max() <= color_tolerance)


def _band_depth(lines, count: int, std_threshold: float, color_tolerance: float) -> int:
    """Number of leading lines matching the colour of the outermost one."""
    if count == 0:
        return 0
    border = _uniform_color(lines(0), std_threshold)
    if border is None:
        return 0
    depth = 1
    while depth < count and _is_border_line(lines(depth), border, std_threshold, color_tolerance):
        depth += 1
    return depth


def crop_uniform_edges(
    img: np.ndarray, std_threshold: float = 2.0, color_tolerance: float = 12
) -> tuple[np.ndarray, tuple[int, int, int, int]]:
    """
    Strips letterbox bands from each side independently.

    A side's band is the run of uniform lines matching that side's outermost
    line. Returns the cropped view and its (x, y, w, h) bounds in the source
    image. An image without such bands, or one that is uniform everywhere,
    comes back unchanged.
    """
    h, w = img.shape[:2]
    full = (0, 0, w, h)
    if h == 0 or w == 0:
        return img, full

    top = _band_depth(lambda i: img[i], h, std_threshold, color_tolerance)
    if top == h:
        return img, full
    bottom = h - _band_depth(lambda i: img[h - 1 - i], h - top, std_threshold, color_tolerance)
    if bottom == top:
        return img, full

    rows = img[top:bottom]
    left = _band_depth(lambda i: rows[:, i], w, std_threshold, color_tolerance)
    if left == w:
        return img, full
    right = w - _band_depth(lambda i: rows[:, w - 1 - i], w - left, std_threshold, color_tolerance)
    if right <= left:
        return img, full

    bounds = (left, top, right - left, bottom - top)
    if bounds != full:
        logger.info(f"Cropped uniform edges: {w}x{h} -> {bounds[2]}x{bounds[3]} at ({left}, {top})")
    return img[top:bottom, left:right], bounds
