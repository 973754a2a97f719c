"""Tests for the File record encoding."""

import msgpack
import pytest

from drive.errors import CorruptRecord
from drive.record import File, decode_file, encode_file, now_timestamp, parse_timestamp


def test_encode_decode_keeps_every_field():
    f = File("a.txt", "cid1", 12, now_timestamp(), "alice")
    assert decode_file("a.txt", encode_file(f)) == f


def test_decode_ignores_unknown_fields():
    data = msgpack.packb({"key": "a", "cid": "c", "size": 3, "owner": "bob", "checksum": "abc"})
    f = decode_file("a", data)
    assert f.cid == "c"
    assert f.owner == "bob"


def test_decode_fills_defaults_for_missing_fields():
    data = msgpack.packb({"key": "a", "cid": "c", "size": 3})
    f = decode_file("a", data)
    assert f.timestamp == ""
    assert f.owner == ""


@pytest.mark.parametrize("data", [
    b"not msgpack at all",
    msgpack.packb([1, 2, 3]),
    msgpack.packb({"key": "a", "size": 3}),
])
def test_decode_rejects_invalid_records(data):
    with pytest.raises(CorruptRecord) as exc_info:
        decode_file("a", data)
    assert exc_info.value.key == "a"


def test_timestamp_is_rfc1123():
    stamp = now_timestamp()
    assert stamp.endswith("GMT")
    assert parse_timestamp(stamp) is not None


@pytest.mark.parametrize("stamp", ["", "yesterday"])
def test_unparsable_timestamp(stamp):
    assert parse_timestamp(stamp) is None
