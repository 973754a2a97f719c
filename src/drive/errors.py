"""
Exceptions raised by the drive and its collaborators.
"""
import io


class DriveError(Exception):
    """
    Base class for every error the drive reports.
    """
    pass


class InvalidArgument(DriveError):
    """
    Raised for an empty key, an empty resolve name or a missing stream/handle.
    """
    pass


class NotFound(DriveError):
    """
    Raised when no record exists under the requested key.
    """
    def __init__(self, key: str):
        super().__init__(f"no such key: {key}")
        self.key = key


class CorruptRecord(DriveError):
    """
    Raised when a record is present but cannot be decoded.
    """
    def __init__(self, key: str, reason: str = ""):
        message = f"corrupt record for key {key!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.key = key


class ContentStoreError(DriveError):
    """
    Raised by the content store when add, get, pin or unpin fails.
    """
    pass


class AccessControlError(DriveError):
    """
    Raised when granting or revoking a permission fails.
    """
    pass


class InvalidSeek(DriveError, io.UnsupportedOperation):
    """
    Raised when seeking a stream whose source does not support it.
    """
    pass


class MetadataIndexError(DriveError):
    """
    Raised by the metadata index for unknown addresses or use after close.
    """
    pass
