"""
The File record and its byte encoding.

Records are stored as msgpack maps. Decoding ignores fields it does not know
and fills in defaults for fields that are missing, so records written by an
older or newer version of the drive keep decoding.
"""
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Optional

import msgpack
from serde import serde, from_dict, to_dict, SerdeError

from drive.errors import CorruptRecord


@serde
class File:
    """Metadata of one drive entry."""
    key: str
    cid: str  # content address in the content store
    size: int
    timestamp: str = ""  # RFC1123, advisory only
    owner: str = ""


def now_timestamp() -> str:
    return format_datetime(datetime.now(timezone.utc), usegmt=True)


def parse_timestamp(timestamp: str) -> Optional[datetime]:
    try:
        return parsedate_to_datetime(timestamp)
    except (TypeError, ValueError, IndexError):
        return None


def encode_file(f: File) -> bytes:
    return msgpack.packb(to_dict(f), use_bin_type=True)


def decode_file(key: str, data: bytes) -> File:
    """
    Decode a stored record.

    Raises:
        CorruptRecord: if the bytes are not a valid File record
    """
    try:
        raw = msgpack.unpackb(data, raw=False)
    except (ValueError, msgpack.UnpackException) as e:
        raise CorruptRecord(key, str(e)) from e
    if not isinstance(raw, dict):
        raise CorruptRecord(key, f"expected a map, got {type(raw).__name__}")
    try:
        return from_dict(File, raw)
    except (SerdeError, KeyError, TypeError, ValueError) as e:
        raise CorruptRecord(key, str(e)) from e
