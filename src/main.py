"""
Main entry point: open a drive, mount it and serve its HTTP API.
"""
import argparse
import asyncio
import logging
import os
import signal
import uuid
from typing import Optional

import fastapi
from serde import serde
from serde.json import from_json, to_json
import uvicorn

from content_store.data_store import DataStore
from content_store.ipfs_store import IPFSStore
from drive.drive import Drive
from drive.interfaces import ContentStore
from drive.opener import open_drive
from drive.options import DEFAULT_DIRECTORY, OpenDriveOptions
from filesystem.mount import Mount
from networking.api_server import APIHandler

logger = logging.getLogger(__name__)

LOCAL_STORE = "local"


@serde
class Config:
    name: str = "drive"
    directory: str = DEFAULT_DIRECTORY
    mountpoint: str = "./mnt"
    content_store: str = LOCAL_STORE  # "local" or an IPFS RPC address
    blockstore: str = ""  # defaults to <directory>/blocks
    host: str = "127.0.0.1"
    port: int = 8000
    create: bool = True
    identity: str = ""
    fsync_interval: float = 10.0
    allow_other: bool = False
    log_level: str = "INFO"


def load_config(fname: str) -> Config:
    """Read the config and write it back with defaults filled in."""
    try:
        with open(fname, "r") as f:
            config = from_json(Config, f.read())
    except FileNotFoundError:
        config = Config()
    save_config(fname, config)
    return config


def save_config(fname: str, config: Config):
    with open(fname, "w") as f:
        f.write(to_json(config))


def make_content_store(config: Config) -> ContentStore:
    if config.content_store == LOCAL_STORE:
        return DataStore(config.blockstore or os.path.join(config.directory, "blocks"))
    return IPFSStore(config.content_store)


async def default_identity(content_store: ContentStore) -> str:
    """The IPFS peer id when the content lives on an IPFS node, a random id otherwise."""
    if isinstance(content_store, IPFSStore):
        return await content_store.identity()
    return uuid.uuid4().hex


def fsync_loop(drive: Drive, interval: float, shutdown: asyncio.Event):
    async def inner():
        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=interval)
            except TimeoutError:
                pass
            await drive.index.fsync()
    return inner


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mount a drive backed by a content-addressed store.")
    parser.add_argument("config", help="path to the JSON config; created with defaults if missing")
    parser.add_argument("--log-level", default=None, help="overrides log_level from the config")
    return parser.parse_args(argv)


async def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = load_config(args.config)
    logging.basicConfig(level=(args.log_level or config.log_level).upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    os.makedirs(config.directory, exist_ok=True)
    os.makedirs(config.mountpoint, exist_ok=True)

    content_store = make_content_store(config)
    if not config.identity:
        config.identity = await default_identity(content_store)
        save_config(args.config, config)
    drive = await open_drive(content_store, config.name,
                             OpenDriveOptions(create=config.create, directory=config.directory,
                                              identity=config.identity))
    logger.info("opened %s as %s", drive.address, drive.identity)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    app = fastapi.FastAPI()
    APIHandler(drive, shutdown).install(app)
    uconfig = uvicorn.Config(app=app, host=config.host, port=config.port, log_level=config.log_level.lower())
    # While serving, uvicorn takes over SIGINT/SIGTERM; its exit sets shutdown below
    server = uvicorn.Server(config=uconfig)
    mount = Mount(config.mountpoint, drive, allow_other=config.allow_other)

    async def fuse_main():
        try:
            await mount.serve(shutdown)
        finally:
            shutdown.set()
            server.should_exit = True

    async def fastapi_main():
        try:
            await server.serve()
        finally:
            shutdown.set()

    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(fuse_main())
            tg.create_task(fastapi_main())
            tg.create_task(fsync_loop(drive, config.fsync_interval, shutdown)())
    finally:
        mount.unmount()
        await drive.close()
        if isinstance(content_store, IPFSStore):
            await content_store.aclose()
        logger.info("stopped %s", drive.address)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
