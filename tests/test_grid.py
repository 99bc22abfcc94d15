import math
import random
import re

import pytest

from app.services.grid import LETTERS, NUMBERS, GridPoint, decode, encode, is_valid

LABEL = re.compile(r"^[A-Z]:[1-9][0-9]?$")

SAMPLES = [
    (0.0, 0.0),
    (40.7128, -74.0060),
    (51.5074, -0.1278),
    (-33.8688, 151.2093),
    (-0.0005, -0.0005),
    (89.9999, 179.9999),
    (-90.0, -180.0),
    (0.025, 0.098),
]


def test_encode_origin():
    assert encode(0, 0) == "A:1"


def test_encode_known_city():
    assert encode(40.7128, -74.0060) == "W:47"


def test_encode_last_cell():
    assert encode(0.025, 0.098) == "Z:99"


def test_encode_wraps_letters_and_numbers():
    assert encode(0.026, 0.099) == "A:1"
    assert encode(0.027, 0.1) == "B:2"


def test_negative_coordinates_use_floor_mod():
    # floor(-1) mod 26 == 25, floor(-1) mod 99 == 98
    assert encode(-0.001, -0.001) == "Z:99"
    # -0.0005 * 1000 floors to -1, not 0
    assert encode(-0.0005, -0.0005) == "Z:99"


@pytest.mark.parametrize("lat,lng", SAMPLES)
def test_encode_label_shape(lat, lng):
    assert LABEL.match(encode(lat, lng))


@pytest.mark.parametrize("lat,lng", SAMPLES)
def test_label_is_stable_through_decode(lat, lng):
    label = encode(lat, lng)
    point = decode(label)
    assert encode(point.lat, point.lng) == label


def test_decode_is_lossy():
    point = decode(encode(40.7128, -74.0060))
    assert (point.lat, point.lng) != (40.7128, -74.0060)


def test_decode_known_labels():
    assert decode("Z:99") == GridPoint(lat=0.025, lng=0.098)
    assert decode("A:1") == GridPoint(lat=0, lng=0)


@pytest.mark.parametrize("label", ["not-a-grid", "", "a:1", "A1", "A:", ":1", "AA:1", "A:1\n", "A:-1", "A:1.5"])
def test_decode_invalid_returns_none(label):
    assert decode(label) is None


def test_decode_non_string_returns_none():
    assert decode(None) is None
    assert decode(42) is None


def test_is_valid():
    assert is_valid("K:42")
    assert not is_valid("k:42")


def test_encode_rejects_non_finite():
    with pytest.raises(ValueError):
        encode(math.nan, 0)
    with pytest.raises(ValueError):
        encode(0, math.inf)


def test_decode_overlong_number_returns_none():
    # longer than the interpreter will convert to int
    assert decode("A:" + "9" * 5000) is None
    assert not is_valid("A:" + "9" * 5000)


ANCHORS = range(-3000, 3001)


def test_every_anchor_encodes_to_its_own_cell():
    for k in ANCHORS:
        value = k / 1000
        expected = f"{chr(ord('A') + k % LETTERS)}:{k % NUMBERS + 1}"
        assert encode(value, value) == expected, value


def test_every_anchor_label_is_stable():
    for k in ANCHORS:
        label = encode(k / 1000, -k / 1000)
        assert LABEL.match(label), label
        assert encode(*_as_tuple(decode(label))) == label, label


def test_random_coordinates_give_stable_labels():
    rng = random.Random(20261018)
    for _ in range(5000):
        lat = rng.uniform(-90, 90)
        lng = rng.uniform(-180, 180)
        label = encode(lat, lng)
        assert LABEL.match(label), (lat, lng)
        assert encode(*_as_tuple(decode(label))) == label, (lat, lng)


def test_values_just_under_an_edge_snap_up():
    # 0.029 * 1000 is 28.999999999999996 in binary floating point
    assert encode(0.029, 0) == "D:1"
    assert encode(0.0289999999999, 0) == "D:1"
    assert encode(0.0289999, 0) == "C:1"


def _as_tuple(point):
    return point.lat, point.lng
