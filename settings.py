from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

if getattr(sys, "frozen", False):
    BASEDIR = os.path.dirname(sys.executable)
else:
    BASEDIR = os.path.dirname(os.path.abspath(__file__))

DEFAULT_DATA_DIR = os.path.join(BASEDIR, "ocr_data")
KNN_MODEL_FILENAME = "digits.knn.yml"
PHASH_DB_FILENAME = "phash.json"
PARTNER_MODIFIERS_FILENAME = "partner_modifiers.json"

ENV_PREFIX = "ARC_OCR_"


def env_int_or_default(key, default, min_val, max_val):
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring {key}={raw!r}: not an integer")
        return default
    return max(min_val, min(value, max_val))


def env_float_or_default(key, default, min_val, max_val):
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring {key}={raw!r}: not a number")
        return default
    return max(min_val, min(value, max_val))


# (min, max) accepted from the environment for each numeric setting
_ENV_LIMITS = {
    "edge_std_threshold": (0.0, 64.0),
    "edge_color_tolerance": (0, 255),
    "probe_tolerance": (0, 255),
    "t1_digit_threshold": (0, 255),
    "t2_max_saturation": (0, 255),
    "t2_min_value": (0, 255),
    "min_blob_area": (0, 10_000),
    "min_glyph_height_ratio": (0.0, 1.0),
    "knn_k": (1, 15),
    "knn_reject_distance": (0.0, 10_000.0),
    "label_color_tolerance": (0, 255),
    "label_min_ratio": (0.0, 1.0),
    "phash_accept_distance": (0, 1024),
}


@dataclass(frozen=True)
class OcrSettings:
    # Geometry Normalizer
    edge_std_threshold: float = 2.0
    edge_color_tolerance: int = 12
    # Layout Selector
    probe_tolerance: int = 12
    # Region Masker
    t1_digit_threshold: int = 180
    t2_max_saturation: int = 60
    t2_min_value: int = 200
    min_blob_area: int = 6
    # Glyph Classifier
    min_glyph_height_ratio: float = 0.3
    knn_k: int = 1
    knn_reject_distance: float = 60.0
    label_color_tolerance: int = 20
    label_min_ratio: float = 0.02
    # Identity Matcher
    phash_accept_distance: int = 10

    data_dir: str = DEFAULT_DATA_DIR

    @property
    def knn_model_path(self) -> str:
        return os.path.join(self.data_dir, KNN_MODEL_FILENAME)

    @property
    def phash_db_path(self) -> str:
        return os.path.join(self.data_dir, PHASH_DB_FILENAME)

    @property
    def partner_modifiers_path(self) -> str:
        return os.path.join(self.data_dir, PARTNER_MODIFIERS_FILENAME)

    @classmethod
    def from_env(cls, **overrides) -> OcrSettings:
        """Build settings from ``ARC_OCR_*`` environment variables.

        ``ARC_OCR_KNN_K=3`` overrides ``knn_k`` and so on. Out-of-range values
        are clamped, unparsable ones are ignored. Keyword overrides win.
        """
        values = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if f.name == "data_dir":
                values[f.name] = os.getenv(key, f.default)
                continue
            min_val, max_val = _ENV_LIMITS[f.name]
            if isinstance(f.default, float):
                values[f.name] = env_float_or_default(key, f.default, min_val, max_val)
            else:
                values[f.name] = env_int_or_default(key, f.default, min_val, max_val)
        values.update(overrides)
        return cls(**values)
