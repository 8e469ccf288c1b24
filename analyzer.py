from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Iterable, Optional, Union

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from edges import crop_uniform_edges
from knn import GlyphClassifier, GlyphReferenceSet, classify_by_ratio
from masker import RoiMasker
from models import (
    ArchiveException,
    DeviceOcrResult,
    DigitReading,
    IdentityMatch,
    ImageLoadError,
    LabelReading,
    LayoutMismatchError,
    PlayResult,
)
from phash_db import PhashDatabase
from rois import RoiExtractor, select_layout
from scoring import (
    PartnerModifiers,
    read_capture_metadata_from_file,
    resolve_timestamp,
    to_play_result,
)
from settings import OcrSettings

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".bmp")


# --- Image input ---


def to_raw_image(image: Union[Image.Image, np.ndarray]) -> np.ndarray:
    """Returns a read-only RGB ``uint8`` array."""
    if isinstance(image, Image.Image):
        arr = np.array(image.convert("RGB"), dtype=np.uint8)
    else:
        arr = np.array(image, dtype=np.uint8)
        if arr.ndim == 2:
            arr = np.stack([arr] * 3, axis=-1)
        elif arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ImageLoadError(f"Expected an RGB image, got array of shape {arr.shape}")
        arr = arr[:, :, :3].copy()
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise ImageLoadError("Image is empty")
    arr.flags.writeable = False
    return arr


def load_image(path: str) -> np.ndarray:
    """Decodes a screenshot, applying its EXIF orientation."""
    try:
        with Image.open(path) as img:
            img.load()
            return to_raw_image(ImageOps.exif_transpose(img))
    except FileNotFoundError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageLoadError(f"Cannot decode image {path}: {e}") from e


# --- CORE OCR CLASS ---


class DeviceOcr:
    """
    Reads every field of one normalized screenshot.

    The extractor and masker must belong to the same layout variant.
    """

    def __init__(
        self,
        extractor: RoiExtractor,
        masker: RoiMasker,
        glyphs: GlyphClassifier,
        phash_db: PhashDatabase,
        settings: Optional[OcrSettings] = None,
    ):
        if extractor.layout != masker.layout:
            raise LayoutMismatchError(
                f"ROI extractor is {extractor.layout.value} but masker is {masker.layout.value}"
            )
        self.extractor = extractor
        self.masker = masker
        self.glyphs = glyphs
        self.phash_db = phash_db
        self.settings = settings or OcrSettings()

    def _read_digits(self, name: str) -> DigitReading:
        roi = self.extractor.crop(name)
        mask = getattr(self.masker, name)(roi)
        reading = self.glyphs.classify(mask)
        if reading.is_absent:
            logger.info(f"No glyphs found in '{name}'")
        elif reading.low_confidence:
            logger.warning(f"Low confidence reading '{reading.text}' for '{name}'")
        return reading

    def rating_class(self) -> LabelReading:
        masks = self.masker.rating_class(self.extractor.crop("rating_class"))
        return classify_by_ratio(masks, self.settings.label_min_ratio)

    def score(self) -> DigitReading:
        return self._read_digits("score")

    def pure(self) -> DigitReading:
        return self._read_digits("pure")

    def far(self) -> DigitReading:
        return self._read_digits("far")

    def lost(self) -> DigitReading:
        return self._read_digits("lost")

    def max_recall(self) -> DigitReading:
        return self._read_digits("max_recall")

    def song(self) -> IdentityMatch:
        return self.phash_db.lookup_jacket(
            self.extractor.crop("jacket"), self.settings.phash_accept_distance
        )

    def partner(self) -> IdentityMatch:
        return self.phash_db.lookup_partner_icon(
            self.extractor.crop("partner_icon"), self.settings.phash_accept_distance
        )

    def clear_status(self) -> LabelReading:
        masks = self.masker.clear_status(self.extractor.crop("clear_status"))
        return classify_by_ratio(masks, self.settings.label_min_ratio)

    def ocr(self) -> DeviceOcrResult:
        return DeviceOcrResult(
            layout=self.extractor.layout,
            rating_class=self.rating_class(),
            score=self.score(),
            pure=self.pure(),
            far=self.far(),
            lost=self.lost(),
            max_recall=self.max_recall(),
            song=self.song(),
            partner=self.partner(),
            clear_status=self.clear_status(),
        )


def ocr_result_to_play_result(
    image_path: str,
    ocr_result: DeviceOcrResult,
    partner_modifiers: Optional[PartnerModifiers] = None,
    fallback_date: Optional[datetime] = None,
    override_date: Optional[datetime] = None,
) -> PlayResult:
    """Attaches the capture time and an "OCR <filename>" comment to a result."""
    metadata = None
    if override_date is None:
        try:
            metadata = read_capture_metadata_from_file(image_path)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            logger.warning(f"Cannot read capture metadata of {image_path}: {e}")

    filename = os.path.basename(image_path) if image_path else None
    return to_play_result(
        ocr_result,
        partner_modifiers,
        date=resolve_timestamp(override_date, metadata, fallback_date),
        comment=f"OCR {filename}" if filename else None,
    )


# --- Pipeline ---


class OcrTask:
    def __init__(
        self,
        path: str,
        result: Optional[DeviceOcrResult] = None,
        play_result: Optional[PlayResult] = None,
        error: Optional[Exception] = None,
    ):
        self._path = path
        self._result = result
        self._play_result = play_result
        self._error = error

    @property
    def path(self):
        return self._path

    @property
    def result(self):
        return self._result

    @property
    def play_result(self):
        return self._play_result

    @property
    def error(self):
        return self._error

    @property
    def ok(self) -> bool:
        return self._error is None

    def json(self):
        if not self.ok:
            return {"file": self.path, "error": str(self.error)}
        return {
            "file": self.path,
            "ocr": self.result.json(),
            "play_result": self.play_result.json(),
        }


class DeviceOcrPipeline:
    """
    Holds the shared read-only reference data and runs recognitions.

    A single instance can serve any number of threads at once.
    """

    def __init__(
        self,
        glyph_reference: GlyphReferenceSet,
        phash_db: PhashDatabase,
        partner_modifiers: Optional[PartnerModifiers] = None,
        settings: Optional[OcrSettings] = None,
    ):
        self.settings = settings or OcrSettings()
        self.phash_db = phash_db
        self.partner_modifiers = partner_modifiers or PartnerModifiers()
        self.glyphs = GlyphClassifier(
            glyph_reference,
            k=self.settings.knn_k,
            reject_distance=self.settings.knn_reject_distance,
            min_height_ratio=self.settings.min_glyph_height_ratio,
        )

    @classmethod
    def from_settings(cls, settings: Optional[OcrSettings] = None) -> DeviceOcrPipeline:
        """Loads the k-NN model, phash database and partner modifiers from ``data_dir``."""
        settings = settings or OcrSettings.from_env()
        glyph_reference = GlyphReferenceSet.load(settings.knn_model_path)
        phash_db = PhashDatabase.load(settings.phash_db_path)
        if os.path.isfile(settings.partner_modifiers_path):
            partner_modifiers = PartnerModifiers.load(settings.partner_modifiers_path)
        else:
            logger.warning(
                f"{settings.partner_modifiers_path} not found, partner modifiers unavailable"
            )
            partner_modifiers = PartnerModifiers()
        return cls(glyph_reference, phash_db, partner_modifiers, settings)

    def prepare(self, image: Union[Image.Image, np.ndarray]) -> DeviceOcr:
        img = to_raw_image(image)
        cropped, _ = crop_uniform_edges(
            img, self.settings.edge_std_threshold, self.settings.edge_color_tolerance
        )
        layout = select_layout(cropped, self.settings.probe_tolerance)
        extractor = RoiExtractor.for_layout(layout, cropped)
        masker = RoiMasker.for_layout(layout, self.settings)
        return DeviceOcr(extractor, masker, self.glyphs, self.phash_db, self.settings)

    def recognize(self, image: Union[Image.Image, np.ndarray]) -> DeviceOcrResult:
        return self.prepare(image).ocr()

    def recognize_file(
        self,
        path: str,
        fallback_date: Optional[datetime] = None,
        override_date: Optional[datetime] = None,
    ) -> tuple[DeviceOcrResult, PlayResult]:
        result = self.recognize(load_image(path))
        play_result = ocr_result_to_play_result(
            path, result, self.partner_modifiers, fallback_date, override_date
        )
        return result, play_result

    def _run_task(self, path: str, fallback_date: Optional[datetime]) -> OcrTask:
        try:
            result, play_result = self.recognize_file(path, fallback_date)
        except (ArchiveException, OSError) as e:
            logger.error(f"OCR failed for {path}: {e}")
            return OcrTask(path, error=e)
        return OcrTask(path, result, play_result)

    def recognize_many(
        self,
        paths: Iterable[str],
        max_workers: int = 4,
        fallback_date: Optional[datetime] = None,
    ) -> list[OcrTask]:
        """Recognizes screenshots in parallel; results keep the input order."""
        paths = list(paths)
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            return list(executor.map(lambda p: self._run_task(p, fallback_date), paths))


# --- INITIALIZATION AND EXECUTION ---


def iter_image_paths(targets: Iterable[str]) -> list[str]:
    paths = []
    for target in targets:
        if os.path.isdir(target):
            for name in sorted(os.listdir(target)):
                if name.lower().endswith(IMAGE_EXTENSIONS):
                    paths.append(os.path.join(target, name))
        else:
            paths.append(target)
    return paths


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Recognize play results from result-screen screenshots."
    )
    parser.add_argument("targets", nargs="+", help="screenshot files or directories")
    parser.add_argument("--data-dir", help="directory holding the OCR reference data")
    parser.add_argument("--workers", type=int, default=4)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    overrides = {"data_dir": args.data_dir} if args.data_dir else {}
    try:
        pipeline = DeviceOcrPipeline.from_settings(OcrSettings.from_env(**overrides))
    except ArchiveException as e:
        logger.error(str(e))
        return 2

    tasks = pipeline.recognize_many(iter_image_paths(args.targets), args.workers)
    for task in tasks:
        print(json.dumps(task.json(), ensure_ascii=False))
    return 0 if all(task.ok for task in tasks) else 1


if __name__ == "__main__":
    sys.exit(main())
