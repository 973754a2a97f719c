"""
Drive: a key -> file abstraction over a replicated metadata index and a
content-addressed blob store.
"""

from .errors import (DriveError, InvalidArgument, NotFound, CorruptRecord, ContentStoreError,
                     AccessControlError, InvalidSeek, MetadataIndexError)
from .record import File, encode_file, decode_file
from .listing import ListResult, ListField
from .options import OpenDriveOptions, merge_options
from .access import LocalAccessController
from .stream import ContentStream
from .drive import Drive

__all__ = ['DriveError', 'InvalidArgument', 'NotFound', 'CorruptRecord', 'ContentStoreError',
           'AccessControlError', 'InvalidSeek', 'MetadataIndexError', 'File', 'encode_file',
           'decode_file', 'ListResult', 'ListField', 'OpenDriveOptions', 'merge_options',
           'LocalAccessController', 'ContentStream', 'Drive']
