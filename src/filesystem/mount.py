"""
Mounting a drive as a FUSE filesystem.
"""
import asyncio
import contextlib
import logging

import pyfuse3
import pyfuse3.asyncio

from drive.drive import Drive
from filesystem.fuse_binding import DriveOperations

logger = logging.getLogger(__name__)

FS_NAME = "merkledrive"


class Mount:
    """
    One mount of a drive. `serve` runs until the shutdown event is set or
    the filesystem is unmounted from outside; `unmount` may be called any
    number of times.
    """
    mountpoint: str
    drive: Drive
    mounted: bool

    def __init__(self, mountpoint: str, drive: Drive, allow_other: bool = False, debug: bool = False):
        self.mountpoint = mountpoint
        self.drive = drive
        self.allow_other = allow_other
        self.debug = debug
        self.operations = DriveOperations(drive)
        self.mounted = False

    def fuse_options(self) -> set[str]:
        options = set(pyfuse3.default_options)
        options.add(f"fsname={FS_NAME}")
        options.add(f"subtype={FS_NAME}")
        if self.allow_other:
            options.add("allow_other")
        if self.debug:
            options.add("debug")
        return options

    async def serve(self, shutdown: asyncio.Event) -> None:
        pyfuse3.asyncio.enable()
        pyfuse3.init(self.operations, self.mountpoint, self.fuse_options())
        self.mounted = True
        logger.info("mounted %s at %s", self.drive.address, self.mountpoint)

        fuse_main = asyncio.create_task(pyfuse3.main())
        stop = asyncio.create_task(shutdown.wait())
        try:
            done, _ = await asyncio.wait({fuse_main, stop}, return_when=asyncio.FIRST_COMPLETED)
            if fuse_main in done:
                # Unmounted from outside; surface any error from the main loop
                fuse_main.result()
        finally:
            for task in (fuse_main, stop):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
            self.unmount()

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        pyfuse3.close(unmount=True)
        logger.info("unmounted %s", self.mountpoint)
