"""
FUSE presentation of a drive.
This module provides the pyfuse3 operations and the mount lifecycle.
"""

from .fuse_binding import DriveOperations
from .mount import Mount
from .nodes import (Directory, EntryKind, ExistingFile, OpenDescriptor, PendingFile,
                    WriteBuffer)

__all__ = ['DriveOperations', 'Mount', 'EntryKind', 'Directory', 'ExistingFile',
           'PendingFile', 'OpenDescriptor', 'WriteBuffer']
