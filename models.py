from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from imagehash import ImageHash


class ArchiveException(Exception):
    def __init__(self, msg: str):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return f"Error: {self.msg}"


class ImageLoadError(ArchiveException):
    """The screenshot could not be opened or decoded."""


class RoiOutOfBoundsError(ArchiveException):
    """A scaled ROI rectangle does not fit inside the normalized image."""


class LayoutMismatchError(ArchiveException):
    """ROI extractor and masker were built for different layout variants."""


class PhashDatabaseError(ArchiveException):
    pass


class GlyphModelError(ArchiveException):
    pass


class PartnerModifiersError(ArchiveException):
    pass


class LayoutVariant(Enum):
    T1 = "T1"
    T2 = "T2"


class RatingClass(IntEnum):
    PAST = 0
    PRESENT = 1
    FUTURE = 2
    BEYOND = 3
    ETERNAL = 4


class ClearStatus(IntEnum):
    TRACK_LOST = 0
    TRACK_COMPLETE = 1
    FULL_RECALL = 2
    PURE_MEMORY = 3


class ClearType(IntEnum):
    TRACK_LOST = 0
    NORMAL_CLEAR = 1
    FULL_RECALL = 2
    PURE_MEMORY = 3
    EASY_CLEAR = 4
    HARD_CLEAR = 5


class Modifier(IntEnum):
    NORMAL = 0
    EASY = 1
    HARD = 2


class DigitReading:
    """
    Result of reading one digit strip.

    ``text`` is None when the strip held no glyphs at all, which is distinct
    from a strip that was read as "0".
    """

    def __init__(
        self,
        text: Optional[str],
        distances: tuple[float, ...] = (),
        low_confidence: bool = False,
    ):
        self._text = text
        self._distances = tuple(distances)
        self._low_confidence = low_confidence

    @classmethod
    def absent(cls) -> DigitReading:
        return cls(None)

    @property
    def text(self):
        return self._text

    @property
    def distances(self):
        return self._distances

    @property
    def low_confidence(self):
        return self._low_confidence

    @property
    def is_absent(self) -> bool:
        return self._text is None

    @property
    def value(self) -> Optional[int]:
        if self._text is None or not self._text.isdigit():
            return None
        return int(self._text)

    def json(self):
        return {
            "text": self.text,
            "value": self.value,
            "distances": list(self.distances),
            "low_confidence": self.low_confidence,
        }

    def __eq__(self, other):
        if not isinstance(other, DigitReading):
            return NotImplemented
        return self.json() == other.json()

    def __repr__(self):
        return f"DigitReading(text={self.text!r}, low_confidence={self.low_confidence})"


class IdentityMatch:
    """Nearest perceptual-hash entry for an icon ROI."""

    def __init__(
        self,
        candidate: Optional[str],
        distance: Optional[int],
        hash_bits: int,
        confident: bool,
        phash: Optional[ImageHash] = None,
    ):
        self._candidate = candidate
        self._distance = distance
        self._hash_bits = hash_bits
        self._confident = confident and candidate is not None
        self._phash = phash

    @property
    def candidate(self):
        return self._candidate

    @property
    def identity(self) -> Optional[str]:
        return self._candidate if self._confident else None

    @property
    def distance(self):
        return self._distance

    @property
    def confident(self):
        return self._confident

    @property
    def phash(self):
        return self._phash

    @property
    def similarity(self) -> Optional[float]:
        if self._distance is None or not self._hash_bits:
            return None
        return 1 - self._distance / self._hash_bits

    def json(self):
        return {
            "identity": self.identity,
            "candidate": self.candidate,
            "distance": self.distance,
            "similarity": self.similarity,
            "phash": str(self.phash) if self.phash is not None else None,
        }

    def __eq__(self, other):
        if not isinstance(other, IdentityMatch):
            return NotImplemented
        return self.json() == other.json()

    def __repr__(self):
        return f"IdentityMatch(identity={self.identity!r}, distance={self.distance})"


class LabelReading:
    """A colour-coded label (rating class, clear status) and its foreground ratios."""

    def __init__(self, value: Optional[IntEnum], ratios: dict):
        self._value = value
        self._ratios = dict(ratios)

    @property
    def value(self):
        return self._value

    @property
    def ratios(self):
        return self._ratios

    @property
    def is_absent(self) -> bool:
        return self._value is None

    def json(self):
        return {
            "value": self.value.name if self.value is not None else None,
            "ratios": {label.name: round(ratio, 6) for label, ratio in self.ratios.items()},
        }

    def __eq__(self, other):
        if not isinstance(other, LabelReading):
            return NotImplemented
        return self.json() == other.json()

    def __repr__(self):
        return f"LabelReading(value={self.value!r})"


class DeviceOcrResult:
    def __init__(
        self,
        layout: LayoutVariant,
        rating_class: LabelReading,
        score: DigitReading,
        pure: DigitReading,
        far: DigitReading,
        lost: DigitReading,
        max_recall: DigitReading,
        song: IdentityMatch,
        partner: IdentityMatch,
        clear_status: LabelReading,
    ):
        self._layout = layout
        self._rating_class = rating_class
        self._score = score
        self._pure = pure
        self._far = far
        self._lost = lost
        self._max_recall = max_recall
        self._song = song
        self._partner = partner
        self._clear_status = clear_status

    def __str__(self):
        return (
            f"{self.song_id} [{self.rating_class.value.name if self.rating_class.value is not None else '?'}]"
            f" | Score: {self.score.text}\nP/F/L: {self.pure.text}/{self.far.text}/{self.lost.text}"
            f" | MR: {self.max_recall.text}"
        )

    @property
    def layout(self):
        return self._layout

    @property
    def rating_class(self):
        return self._rating_class

    @property
    def score(self):
        return self._score

    @property
    def pure(self):
        return self._pure

    @property
    def far(self):
        return self._far

    @property
    def lost(self):
        return self._lost

    @property
    def max_recall(self):
        return self._max_recall

    @property
    def song(self):
        return self._song

    @property
    def partner(self):
        return self._partner

    @property
    def clear_status(self):
        return self._clear_status

    @property
    def song_id(self):
        return self._song.identity

    @property
    def partner_id(self):
        return self._partner.identity

    @property
    def low_confidence_fields(self) -> list[str]:
        """Fields the caller should offer for manual correction."""
        fields = []
        for name in ("score", "pure", "far", "lost", "max_recall"):
            reading: DigitReading = getattr(self, name)
            if reading.is_absent or reading.low_confidence or reading.value is None:
                fields.append(name)
        for name in ("song", "partner"):
            if getattr(self, name).identity is None:
                fields.append(name)
        for name in ("rating_class", "clear_status"):
            if getattr(self, name).is_absent:
                fields.append(name)
        return fields

    def json(self):
        return {
            "layout": self.layout.value,
            "rating_class": self.rating_class.json(),
            "score": self.score.json(),
            "pure": self.pure.json(),
            "far": self.far.json(),
            "lost": self.lost.json(),
            "max_recall": self.max_recall.json(),
            "song": self.song.json(),
            "partner": self.partner.json(),
            "clear_status": self.clear_status.json(),
            "low_confidence_fields": self.low_confidence_fields,
        }

    def __eq__(self, other):
        if not isinstance(other, DeviceOcrResult):
            return NotImplemented
        return self.json() == other.json()


class PlayResult:
    def __init__(
        self,
        song_id: Optional[str],
        rating_class: Optional[RatingClass],
        score: Optional[int],
        pure: Optional[int],
        far: Optional[int],
        lost: Optional[int],
        max_recall: Optional[int],
        clear_type: Optional[ClearType],
        modifier: Optional[Modifier],
        date: Optional[datetime],
        comment: Optional[str] = None,
    ):
        self._song_id = song_id
        self._rating_class = rating_class
        self._score = score
        self._pure = pure
        self._far = far
        self._lost = lost
        self._max_recall = max_recall
        self._clear_type = clear_type
        self._modifier = modifier
        self._date = date
        self._comment = comment

    def __str__(self):
        rating = self.rating_class.name if self.rating_class is not None else "?"
        return f"{self.song_id} [{rating}] {self.score}\nP/F/L: {self.pure}/{self.far}/{self.lost}"

    def json(self):
        return {
            "song_id": self.song_id,
            "rating_class": int(self.rating_class) if self.rating_class is not None else None,
            "score": self.score,
            "pure": self.pure,
            "far": self.far,
            "lost": self.lost,
            "max_recall": self.max_recall,
            "clear_type": int(self.clear_type) if self.clear_type is not None else None,
            "modifier": int(self.modifier) if self.modifier is not None else None,
            "date": self.date.isoformat() if self.date is not None else None,
            "comment": self.comment,
        }

    @property
    def song_id(self):
        return self._song_id

    @property
    def rating_class(self):
        return self._rating_class

    @property
    def score(self):
        return self._score

    @property
    def pure(self):
        return self._pure

    @property
    def far(self):
        return self._far

    @property
    def lost(self):
        return self._lost

    @property
    def max_recall(self):
        return self._max_recall

    @property
    def clear_type(self):
        return self._clear_type

    @property
    def modifier(self):
        return self._modifier

    @property
    def date(self):
        return self._date

    @date.setter
    def date(self, new_date: Optional[datetime]):
        self._date = new_date

    @property
    def comment(self):
        return self._comment

    @comment.setter
    def comment(self, new_comment: Optional[str]):
        self._comment = new_comment
