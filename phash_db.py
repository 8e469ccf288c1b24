from __future__ import annotations

import json
import logging
from typing import Optional, Union

import imagehash
import numpy as np
from PIL import Image

from models import IdentityMatch, PhashDatabaseError

logger = logging.getLogger(__name__)

JACKET = "jacket"
PARTNER_ICON = "partner_icon"
KINDS = (JACKET, PARTNER_ICON)

ImageLike = Union[Image.Image, np.ndarray]


def to_pil(image: ImageLike) -> Image.Image:
    if isinstance(image, Image.Image):
        return image
    return Image.fromarray(np.ascontiguousarray(image))


class PhashDatabase:
    """
    Perceptual hashes of known jackets and partner icons.

    Stored as JSON::

        {"hash_size": 8,
         "hashes": {"jacket": [{"id": "grievouslady", "hash": "c0c73d38273ed2c3"}],
                    "partner_icon": [...]}}

    An identity may appear several times (e.g. a song whose BEYOND chart
    uses a different jacket).
    """

    def __init__(
        self,
        hash_size: int = 8,
        entries: Optional[dict[str, list[tuple[str, imagehash.ImageHash]]]] = None,
    ):
        self.hash_size = hash_size
        self.entries: dict[str, list[tuple[str, imagehash.ImageHash]]] = {
            kind: [] for kind in KINDS
        }
        for kind, kind_entries in (entries or {}).items():
            self.entries.setdefault(kind, []).extend(kind_entries)

    @property
    def hash_bits(self) -> int:
        return self.hash_size * self.hash_size

    # --- Setup Methods ---

    def compute_hash(self, image: ImageLike) -> imagehash.ImageHash:
        return imagehash.phash(to_pil(image), hash_size=self.hash_size)

    @classmethod
    def build(
        cls, images: dict[str, dict[str, Union[ImageLike, list[ImageLike]]]], hash_size: int = 8
    ) -> PhashDatabase:
        """Hashes reference images given as ``{kind: {identity: image(s)}}``."""
        db = cls(hash_size)
        for kind, by_identity in images.items():
            for identity, identity_images in by_identity.items():
                if not isinstance(identity_images, list):
                    identity_images = [identity_images]
                for image in identity_images:
                    db.add(kind, identity, image)
        return db

    def add(self, kind: str, identity: str, image: ImageLike):
        self.entries.setdefault(kind, []).append((identity, self.compute_hash(image)))

    @classmethod
    def from_json(cls, data: dict) -> PhashDatabase:
        try:
            hash_size = int(data["hash_size"])
            db = cls(hash_size)
            for kind, kind_entries in data["hashes"].items():
                for entry in kind_entries:
                    phash = imagehash.hex_to_hash(entry["hash"])
                    if phash.hash.shape != (hash_size, hash_size):
                        raise PhashDatabaseError(
                            f"Hash {entry['hash']} of '{entry['id']}' is not {hash_size}x{hash_size}"
                        )
                    db.entries.setdefault(kind, []).append((str(entry["id"]), phash))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PhashDatabaseError(f"Malformed phash database: {e!r}") from e
        return db

    @classmethod
    def load(cls, path: str) -> PhashDatabase:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise PhashDatabaseError(f"Cannot read phash database {path}: {e}") from e
        except ValueError as e:
            raise PhashDatabaseError(f"Phash database {path} is not valid JSON: {e}") from e
        db = cls.from_json(data)
        logger.info(
            f"Loaded phash database {path}: "
            + ", ".join(f"{len(v)} {k}" for k, v in db.entries.items())
        )
        return db

    def to_json(self) -> dict:
        return {
            "hash_size": self.hash_size,
            "hashes": {
                kind: [{"id": identity, "hash": str(phash)} for identity, phash in kind_entries]
                for kind, kind_entries in self.entries.items()
            },
        }

    def save(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_json(), f, indent=2)

    # --- Lookup ---

    def lookup_hash(
        self, kind: str, target_hash: imagehash.ImageHash, max_distance: int
    ) -> IdentityMatch:
        """Finds the entry with minimum Hamming distance to ``target_hash``."""
        min_distance = None
        best_match = None
        for identity, ref_hash in self.entries.get(kind, []):
            distance = target_hash - ref_hash
            if min_distance is None or distance < min_distance:
                min_distance = distance
                best_match = identity

        confident = min_distance is not None and min_distance <= max_distance
        if best_match is not None and not confident:
            logger.warning(
                f"No confident {kind} match: nearest '{best_match}' at distance {min_distance}"
            )
        return IdentityMatch(
            best_match,
            int(min_distance) if min_distance is not None else None,
            self.hash_bits,
            confident,
            target_hash,
        )

    def lookup(self, kind: str, image: ImageLike, max_distance: int) -> IdentityMatch:
        return self.lookup_hash(kind, self.compute_hash(image), max_distance)

    def lookup_jacket(self, image: ImageLike, max_distance: int) -> IdentityMatch:
        return self.lookup(JACKET, image, max_distance)

    def lookup_partner_icon(self, image: ImageLike, max_distance: int) -> IdentityMatch:
        return self.lookup(PARTNER_ICON, image, max_distance)
