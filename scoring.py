from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from PIL import ExifTags, Image

from models import (
    ClearStatus,
    ClearType,
    DeviceOcrResult,
    Modifier,
    PartnerModifiersError,
    PlayResult,
)

logger = logging.getLogger(__name__)

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


# --- Capture timestamp ---


class CaptureMetadata:
    """Original-capture time embedded in the screenshot."""

    def __init__(self, date_time_original: datetime):
        self._date_time_original = date_time_original

    @property
    def date_time_original(self):
        return self._date_time_original

    @property
    def has_offset(self) -> bool:
        return self._date_time_original.tzinfo is not None

    @property
    def timestamp(self) -> datetime:
        """UTC instant; without an embedded offset the local zone is assumed."""
        return to_utc(self._date_time_original)

    def __repr__(self):
        return f"CaptureMetadata({self._date_time_original.isoformat()})"


def to_utc(dt: datetime) -> datetime:
    # astimezone() treats naive datetimes as local time
    return dt.astimezone(timezone.utc)


def parse_exif_datetime(value: Optional[str], offset: Optional[str] = None) -> Optional[CaptureMetadata]:
    """Parses EXIF ``DateTimeOriginal`` plus an optional ``OffsetTimeOriginal``."""
    if not value:
        return None
    value = value.strip().rstrip("\x00")
    try:
        date_time = datetime.strptime(value, EXIF_DATETIME_FORMAT)
    except ValueError:
        logger.warning(f"Ignoring unparsable EXIF DateTimeOriginal {value!r}")
        return None

    if offset:
        offset = offset.strip().rstrip("\x00")
        try:
            tz = datetime.strptime(offset, "%z").tzinfo
        except ValueError:
            logger.warning(f"Ignoring unparsable EXIF OffsetTimeOriginal {offset!r}")
        else:
            date_time = date_time.replace(tzinfo=tz)
    return CaptureMetadata(date_time)


def read_capture_metadata(img: Image.Image) -> Optional[CaptureMetadata]:
    exif = img.getexif()
    if not exif:
        return None
    exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    return parse_exif_datetime(
        exif_ifd.get(ExifTags.Base.DateTimeOriginal),
        exif_ifd.get(ExifTags.Base.OffsetTimeOriginal),
    )


def read_capture_metadata_from_file(path: str) -> Optional[CaptureMetadata]:
    with Image.open(path) as img:
        return read_capture_metadata(img)


def resolve_timestamp(
    override: Optional[datetime] = None,
    metadata: Optional[CaptureMetadata] = None,
    fallback: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Override first, then the embedded capture time, then the fallback.
    Returns an aware UTC datetime, or None when nothing is known.
    """
    if override is not None:
        return to_utc(override)
    if metadata is not None:
        return metadata.timestamp
    if fallback is not None:
        return to_utc(fallback)
    return None


# --- Partner modifiers ---


class PartnerModifiers:
    """Partner id -> score modifier, read from a JSON object like ``{"0": 0, "7": 2}``."""

    def __init__(self, modifiers: Optional[dict[str, Modifier]] = None):
        self._modifiers = dict(modifiers or {})

    @classmethod
    def from_json(cls, data) -> PartnerModifiers:
        if not isinstance(data, dict):
            raise PartnerModifiersError("Partner modifiers must be a JSON object")
        modifiers = {}
        for partner_id, value in data.items():
            try:
                modifiers[str(partner_id)] = Modifier(int(value))
            except (TypeError, ValueError) as e:
                raise PartnerModifiersError(
                    f"Invalid modifier {value!r} for partner '{partner_id}'"
                ) from e
        return cls(modifiers)

    @classmethod
    def load(cls, path: str) -> PartnerModifiers:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise PartnerModifiersError(f"Cannot read partner modifiers {path}: {e}") from e
        except ValueError as e:
            raise PartnerModifiersError(f"Partner modifiers {path} is not valid JSON: {e}") from e
        return cls.from_json(data)

    def get(self, partner_id: Optional[str]) -> Optional[Modifier]:
        if partner_id is None:
            return None
        return self._modifiers.get(partner_id)

    def __contains__(self, partner_id):
        return partner_id in self._modifiers

    def __len__(self):
        return len(self._modifiers)


# --- Play result ---

_CLEAR_TYPE_BY_STATUS = {
    ClearStatus.TRACK_LOST: ClearType.TRACK_LOST,
    ClearStatus.TRACK_COMPLETE: ClearType.NORMAL_CLEAR,
    ClearStatus.FULL_RECALL: ClearType.FULL_RECALL,
    ClearStatus.PURE_MEMORY: ClearType.PURE_MEMORY,
}


def clear_type_for(
    clear_status: Optional[ClearStatus], modifier: Optional[Modifier]
) -> Optional[ClearType]:
    if clear_status is None:
        return None
    if clear_status == ClearStatus.TRACK_COMPLETE:
        if modifier == Modifier.EASY:
            return ClearType.EASY_CLEAR
        if modifier == Modifier.HARD:
            return ClearType.HARD_CLEAR
    return _CLEAR_TYPE_BY_STATUS[clear_status]


def to_play_result(
    result: DeviceOcrResult,
    partner_modifiers: Optional[PartnerModifiers] = None,
    date: Optional[datetime] = None,
    comment: Optional[str] = None,
) -> PlayResult:
    partner_modifiers = partner_modifiers or PartnerModifiers()
    modifier = partner_modifiers.get(result.partner_id)
    if result.partner_id is not None and modifier is None:
        logger.warning(f"Partner '{result.partner_id}' has no known modifier")

    return PlayResult(
        song_id=result.song_id,
        rating_class=result.rating_class.value,
        score=result.score.value,
        pure=result.pure.value,
        far=result.far.value,
        lost=result.lost.value,
        max_recall=result.max_recall.value,
        clear_type=clear_type_for(result.clear_status.value, modifier),
        modifier=modifier,
        date=date,
        comment=comment,
    )
