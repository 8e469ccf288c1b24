"""Shared fixtures: synthetic glyphs, icons and result-screen screenshots.

Digits are drawn with ``cv2.putText`` both for the reference glyph set and on
the screenshots, so a recognized glyph matches its reference exactly.
"""
import os
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from analyzer import DeviceOcrPipeline
from knn import GlyphReferenceSet
from masker import CLEAR_STATUS_COLORS, RATING_CLASS_COLORS
from models import ClearStatus, LayoutVariant, Modifier, RatingClass
from phash_db import PhashDatabase
from rois import LAYOUT_PROBES, DeviceRois
from scoring import PartnerModifiers
from settings import OcrSettings

FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 1.0
FONT_THICKNESS = 2
GLYPH_STEP = 30

PANEL_COLOR = (30, 30, 40)
WHITE = (255, 255, 255)

SCREEN_W, SCREEN_H = 1920, 1080

DIGIT_FIELDS = ("score", "pure", "far", "lost", "max_recall")

DEFAULT_FIELDS = {
    "score": "9969875",
    "pure": "969",
    "far": "2",
    "lost": "0",
    "max_recall": "971",
}


def render_glyph(char):
    canvas = np.zeros((48, 48), dtype=np.uint8)
    cv2.putText(canvas, char, (10, 36), FONT, FONT_SCALE, 255, FONT_THICKNESS, cv2.LINE_8)
    return canvas


def make_icon(seed, width, height):
    """A blocky colour pattern, distinct per seed."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
    return cv2.resize(blocks, (width, height), interpolation=cv2.INTER_NEAREST)


def paint_probes(img, layout):
    h, w = img.shape[:2]
    for x_ratio, y_ratio, color in LAYOUT_PROBES[layout]:
        x = int(round(w * x_ratio))
        y = int(round(h * y_ratio))
        img[max(y - 4, 0) : y + 5, max(x - 4, 0) : x + 5] = color


def paint_panel(img, rect, layout):
    x, y, w, h = rect
    if layout == LayoutVariant.T1:
        img[y : y + h, x : x + w] = PANEL_COLOR
    else:
        # saturated gradient, never bright and grey at once
        start = np.array([40, 20, 120], dtype=np.float32)
        end = np.array([200, 60, 160], dtype=np.float32)
        ramp = np.linspace(0.0, 1.0, w, dtype=np.float32)[:, None]
        row = (start + (end - start) * ramp).astype(np.uint8)
        img[y : y + h, x : x + w] = row[None, :, :]


def draw_digits(img, rect, text):
    x, y, w, h = rect
    baseline = y + h - 6
    for i, char in enumerate(text):
        cv2.putText(
            img,
            char,
            (x + 6 + i * GLYPH_STEP, baseline),
            FONT,
            FONT_SCALE,
            WHITE,
            FONT_THICKNESS,
            cv2.LINE_8,
        )


def paint_label(img, rect, color):
    x, y, w, h = rect
    img[y : y + h, x : x + w] = PANEL_COLOR
    img[y + 8 : y + h - 8, x + 10 : x + w // 2] = color


def icon_sizes(name):
    sizes = []
    for layout in LayoutVariant:
        _, _, w, h = DeviceRois(layout, SCREEN_W, SCREEN_H).rect(name)
        sizes.append((w, h))
    return sizes


JACKET_SEEDS = {"song_a": 11, "song_b": 12}
PARTNER_SEEDS = {"partner_hard": 21, "partner_easy": 22, "partner_plain": 23}


def make_screenshot(
    layout,
    fields=None,
    rating_class=RatingClass.FUTURE,
    clear_status=ClearStatus.TRACK_COMPLETE,
    song="song_a",
    partner="partner_hard",
    size=(SCREEN_W, SCREEN_H),
    seed=7,
):
    """A noisy result screen with every field painted at its ROI."""
    w, h = size
    rng = np.random.default_rng(seed)
    img = rng.integers(0, 60, size=(h, w, 3), dtype=np.uint8)
    paint_probes(img, layout)
    rois = DeviceRois(layout, w, h)

    values = dict(DEFAULT_FIELDS)
    values.update(fields or {})
    for name in DIGIT_FIELDS:
        rect = rois.rect(name)
        paint_panel(img, rect, layout)
        if values[name]:
            draw_digits(img, rect, values[name])

    if rating_class is not None:
        paint_label(img, rois.rect("rating_class"), RATING_CLASS_COLORS[rating_class])
    if clear_status is not None:
        paint_label(img, rois.rect("clear_status"), CLEAR_STATUS_COLORS[clear_status])

    for name, identity, seeds in (
        ("jacket", song, JACKET_SEEDS),
        ("partner_icon", partner, PARTNER_SEEDS),
    ):
        if identity is None:
            continue
        x, y, rw, rh = rois.rect(name)
        img[y : y + rh, x : x + rw] = make_icon(seeds[identity], rw, rh)
    return img


@pytest.fixture(scope="session")
def glyph_reference():
    return GlyphReferenceSet.train({d: [render_glyph(d)] for d in "0123456789"})


@pytest.fixture(scope="session")
def phash_db():
    images = {"jacket": {}, "partner_icon": {}}
    for kind, seeds in (("jacket", JACKET_SEEDS), ("partner_icon", PARTNER_SEEDS)):
        for identity, seed in seeds.items():
            images[kind][identity] = [make_icon(seed, w, h) for w, h in icon_sizes(kind)]
    return PhashDatabase.build(images)


@pytest.fixture(scope="session")
def partner_modifiers():
    return PartnerModifiers(
        {
            "partner_hard": Modifier.HARD,
            "partner_easy": Modifier.EASY,
            "partner_plain": Modifier.NORMAL,
        }
    )


@pytest.fixture(scope="session")
def settings():
    return OcrSettings()


@pytest.fixture(scope="session")
def pipeline(glyph_reference, phash_db, partner_modifiers, settings):
    return DeviceOcrPipeline(glyph_reference, phash_db, partner_modifiers, settings)


@pytest.fixture
def data_dir(tmp_path, glyph_reference, phash_db):
    glyph_reference.save(os.path.join(tmp_path, "digits.knn.yml"))
    phash_db.save(os.path.join(tmp_path, "phash.json"))
    with open(os.path.join(tmp_path, "partner_modifiers.json"), "w") as f:
        f.write('{"partner_hard": 2, "partner_easy": 1, "partner_plain": 0}')
    return tmp_path
