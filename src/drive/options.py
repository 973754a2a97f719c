"""
Options for opening a drive.
"""
from dataclasses import dataclass, fields
from typing import Optional

from drive.interfaces import AccessController

DEFAULT_DIRECTORY = "./merkledrive"


@dataclass
class OpenDriveOptions:
    create: Optional[bool] = None
    directory: Optional[str] = None
    access_controller: Optional[AccessController] = None
    identity: Optional[str] = None
    replay: Optional[int] = None  # logged operations to replay after the snapshot, -1 for all
    owns_index: Optional[bool] = None

    @property
    def should_create(self) -> bool:
        return bool(self.create)

    @property
    def resolved_directory(self) -> str:
        return self.directory or DEFAULT_DIRECTORY

    @property
    def replay_amount(self) -> int:
        return -1 if self.replay is None else self.replay

    @property
    def closes_index(self) -> bool:
        return True if self.owns_index is None else self.owns_index


def merge_options(*opts: Optional[OpenDriveOptions]) -> OpenDriveOptions:
    """Combine options; for each field the last value that is set wins."""
    merged = OpenDriveOptions()
    for opt in opts:
        if opt is None:
            continue
        for f in fields(opt):
            value = getattr(opt, f.name)
            if value is not None:
                setattr(merged, f.name, value)
    return merged
