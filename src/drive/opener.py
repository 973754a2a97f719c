"""
Opening a drive over a key-value index.

This module depends on the metadata package and is imported as drive.opener.
"""
import logging
import os
import uuid
from typing import Optional

from drive.access import LocalAccessController
from drive.drive import Drive
from drive.errors import DriveError, InvalidArgument
from drive.interfaces import ContentStore
from drive.options import OpenDriveOptions, merge_options
from metadata.keyvalue_index import KeyValueIndex

logger = logging.getLogger(__name__)

IDENTITY_FILE = "identity"
ACCESS_FILE = "access.json"


def local_identity(directory: str) -> str:
    """Identity stored under directory, created on first use."""
    fname = os.path.join(directory, IDENTITY_FILE)
    try:
        with open(fname, "r") as f:
            identity = f.read().strip()
        if identity:
            return identity
    except FileNotFoundError:
        pass
    identity = uuid.uuid4().hex
    os.makedirs(directory, exist_ok=True)
    with open(fname, "w") as f:
        f.write(identity)
    return identity


async def open_drive(content_store: ContentStore, resolve: str,
                     *opts: Optional[OpenDriveOptions]) -> Drive:
    """
    Open a drive by address or by a name registered under the options' directory.

    Raises:
        InvalidArgument: if resolve is empty or content_store is None
        MetadataIndexError: if the name is unknown and create is not set
    """
    if not resolve:
        raise InvalidArgument("resolve name cannot be empty")
    if content_store is None:
        raise InvalidArgument("accepts only a non-nil content store")
    opt = merge_options(*opts)
    directory = opt.resolved_directory
    identity = opt.identity or local_identity(directory)

    index = await KeyValueIndex.open(content_store, resolve, directory, identity, create=opt.should_create)
    try:
        if not await index.load_snapshot():
            logger.info("no snapshot for %s, starting from the log", index.address)
    except DriveError as e:
        logger.warning("could not load snapshot for %s: %s", index.address, e)
    await index.load(opt.replay_amount)

    access_controller = opt.access_controller
    if access_controller is None:
        access_controller = LocalAccessController(os.path.join(index.path, ACCESS_FILE))
        if not access_controller.members("write"):
            await access_controller.grant("write", identity)

    return Drive(content_store, index, access_controller, identity, owns_index=opt.closes_index)
