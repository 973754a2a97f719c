"""
Index addresses and the local naming facility.

An address looks like /crdt/<manifest-cid>/<name>. The manifest is stored in
the content store, so the same name and settings always give the same address.
"""
import io
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from serde import serde
from serde.json import to_json

from drive.errors import InvalidArgument, MetadataIndexError
from drive.interfaces import ContentStore

logger = logging.getLogger(__name__)

ADDRESS_PROTOCOL = "crdt"
STORE_TYPE = "keyvalue"
NAMES_FILE = "names.json"


@serde
class Manifest:
    name: str
    type: str
    access_controller: str


@dataclass(frozen=True)
class Address:
    root: str
    name: str

    def __str__(self) -> str:
        return f"/{ADDRESS_PROTOCOL}/{self.root}/{self.name}"

    @staticmethod
    def is_valid(address: str) -> bool:
        parts = address.split("/")
        return len(parts) == 4 and parts[0] == "" and parts[1] == ADDRESS_PROTOCOL and all(parts[2:])

    @staticmethod
    def parse(address: str) -> 'Address':
        if not Address.is_valid(address):
            raise MetadataIndexError(f"not an index address: {address!r}")
        parts = address.split("/")
        return Address(parts[2], parts[3])


async def create_address(content_store: ContentStore, name: str, access_controller: str = "local") -> Address:
    if not name or "/" in name:
        raise InvalidArgument(f"invalid index name {name!r}")
    manifest = Manifest(name, STORE_TYPE, access_controller)
    root = await content_store.add(io.BytesIO(to_json(manifest).encode()))
    return Address(root, name)


class NameRegistry:
    """
    Human readable names of the indexes created under one directory.
    """
    def __init__(self, directory: str):
        self.fname = os.path.join(directory, NAMES_FILE)
        self.names: dict[str, str] = {}
        try:
            with open(self.fname, "r") as f:
                self.names = json.load(f)
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            raise MetadataIndexError(f"cannot read {self.fname}: {e}") from e

    def lookup(self, name: str) -> Optional[Address]:
        address = self.names.get(name)
        return Address.parse(address) if address else None

    def register(self, address: Address):
        self.names[address.name] = str(address)
        os.makedirs(os.path.dirname(self.fname), exist_ok=True)
        with open(self.fname, "w") as f:
            json.dump(self.names, f, indent=2, sort_keys=True)
        logger.info("registered %s as %s", address.name, address)


async def resolve_address(content_store: ContentStore, resolve: str, directory: str, create: bool) -> Address:
    """
    Resolve a full address or a registered name.

    Raises:
        MetadataIndexError: if the name is unknown and create is not set
    """
    if Address.is_valid(resolve):
        return Address.parse(resolve)
    registry = NameRegistry(directory)
    address = registry.lookup(resolve)
    if address is not None:
        return address
    if not create:
        raise MetadataIndexError(f"no index named {resolve!r} under {directory}; open it with create")
    address = await create_address(content_store, resolve)
    registry.register(address)
    return address
