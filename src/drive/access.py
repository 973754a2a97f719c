"""
Access list kept next to a metadata index.
"""
import asyncio
import logging
import os
from typing import Optional

from serde import serde, SerdeError
from serde.json import from_json, to_json

from drive.errors import AccessControlError, InvalidArgument

logger = logging.getLogger(__name__)

WILDCARD = "*"


@serde
class AccessList:
    permissions: dict[str, list[str]]


class LocalAccessController:
    """
    Permission -> identities mapping persisted as JSON.
    Grant and revoke are idempotent.
    """
    path: Optional[str]
    access: AccessList
    lock: asyncio.Lock

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.lock = asyncio.Lock()
        self.access = AccessList({})
        if path is not None and os.path.exists(path):
            try:
                with open(path, "r") as f:
                    self.access = from_json(AccessList, f.read())
            except (OSError, ValueError, SerdeError) as e:
                raise AccessControlError(f"cannot load access list {path}: {e}") from e

    def can(self, permission: str, identity: str) -> bool:
        members = self.access.permissions.get(permission, [])
        return identity in members or WILDCARD in members

    def members(self, permission: str) -> list[str]:
        return sorted(self.access.permissions.get(permission, []))

    async def grant(self, permission: str, identity: str) -> None:
        self._check(permission, identity)
        async with self.lock:
            members = self.access.permissions.setdefault(permission, [])
            if identity in members:
                return
            members.append(identity)
            self._save()
        logger.info("granted %s to %s", permission, identity)

    async def revoke(self, permission: str, identity: str) -> None:
        self._check(permission, identity)
        async with self.lock:
            members = self.access.permissions.get(permission, [])
            if identity not in members:
                return
            members.remove(identity)
            if not members:
                del self.access.permissions[permission]
            self._save()
        logger.info("revoked %s from %s", permission, identity)

    def _check(self, permission: str, identity: str):
        if not permission or not identity:
            raise InvalidArgument("permission and identity cannot be empty")

    def _save(self):
        if self.path is None:
            return
        try:
            with open(self.path, "w") as f:
                f.write(to_json(self.access))
                f.flush()
        except OSError as e:
            raise AccessControlError(f"cannot save access list {self.path}: {e}") from e
