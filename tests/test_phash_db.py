import json

import pytest

from conftest import make_icon
from phash_db import JACKET, PARTNER_ICON, PhashDatabase
from models import PhashDatabaseError


@pytest.fixture
def small_db():
    return PhashDatabase.build(
        {
            JACKET: {"song_a": make_icon(1, 64, 64), "song_b": [make_icon(2, 64, 64)]},
            PARTNER_ICON: {"partner": make_icon(3, 48, 40)},
        }
    )


def test_lookup_exact_image_matches(small_db):
    match = small_db.lookup_jacket(make_icon(1, 64, 64), max_distance=10)
    assert match.identity == "song_a"
    assert match.distance == 0
    assert match.similarity == 1.0
    assert match.confident


def test_lookup_scaled_image_matches(small_db):
    match = small_db.lookup_jacket(make_icon(2, 128, 128), max_distance=10)
    assert match.identity == "song_b"


def test_far_hash_is_no_match_not_a_guess(small_db):
    inverted = 255 - make_icon(1, 64, 64)
    match = small_db.lookup_jacket(inverted, max_distance=10)
    assert match.identity is None
    assert not match.confident
    assert match.candidate is not None
    assert match.distance > 10


def test_empty_kind_is_no_match():
    match = PhashDatabase().lookup_partner_icon(make_icon(5, 32, 32), max_distance=10)
    assert match.identity is None
    assert match.candidate is None
    assert match.distance is None
    assert match.similarity is None


def test_save_and_load_round_trip(tmp_path, small_db):
    path = str(tmp_path / "phash.json")
    small_db.save(path)
    loaded = PhashDatabase.load(path)
    assert loaded.to_json() == small_db.to_json()
    assert loaded.lookup_partner_icon(make_icon(3, 48, 40), 10).identity == "partner"


@pytest.mark.parametrize(
    "data",
    [
        {"hashes": {}},
        {"hash_size": 8, "hashes": {"jacket": [{"id": "x", "hash": "zz"}]}},
        {"hash_size": 8, "hashes": {"jacket": [{"id": "x", "hash": "ffff"}]}},
        {"hash_size": 8, "hashes": {"jacket": [{"hash": "c0c73d38273ed2c3"}]}},
        {"hash_size": 8, "hashes": []},
    ],
)
def test_malformed_database_fails_at_load(tmp_path, data):
    path = tmp_path / "phash.json"
    path.write_text(json.dumps(data))
    with pytest.raises(PhashDatabaseError):
        PhashDatabase.load(str(path))


def test_missing_or_invalid_file(tmp_path):
    with pytest.raises(PhashDatabaseError):
        PhashDatabase.load(str(tmp_path / "missing.json"))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(PhashDatabaseError):
        PhashDatabase.load(str(bad))
