import asyncio
import io
import logging
from typing import BinaryIO, Iterator, Optional

import fastapi
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from serde import to_dict

from drive.drive import Drive
from drive.errors import (AccessControlError, ContentStoreError, DriveError, InvalidArgument,
                          NotFound)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Errors not listed map to 500
STATUS_CODES: dict[type, int] = {
    InvalidArgument: 400,
    AccessControlError: 403,
    NotFound: 404,
    ContentStoreError: 502,
}


def status_for(e: DriveError) -> int:
    for cls in type(e).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := stream.read(CHUNK_SIZE):
            yield chunk
    finally:
        stream.close()


class APIHandler:
    drive: Drive
    shutdown: Optional[asyncio.Event]

    def __init__(self, drive: Drive, shutdown: Optional[asyncio.Event] = None):
        self.router = APIRouter()
        self.drive = drive
        self.shutdown = shutdown
        self.router.add_api_route("/healthcheck", self.healthcheck, methods=["GET"])
        self.router.add_api_route("/files", self.list_files, methods=["GET"])
        self.router.add_api_route("/files/table", self.list_table, methods=["GET"])
        self.router.add_api_route("/stat/{key:path}", self.stat, methods=["GET"])
        self.router.add_api_route("/content/{key:path}", self.content, methods=["GET"])
        self.router.add_api_route("/files/{key:path}", self.add, methods=["PUT"])
        self.router.add_api_route("/files/{key:path}", self.remove, methods=["DELETE"])
        self.router.add_api_route("/access/grant", self.grant, methods=["POST"])
        self.router.add_api_route("/access/revoke", self.revoke, methods=["POST"])
        self.router.add_api_route("/unmount", self.unmount, methods=["POST"])

    def install(self, app: fastapi.FastAPI):
        """Mount the routes on app and map drive errors to status codes."""
        app.include_router(self.router)
        app.add_exception_handler(DriveError, self.drive_error)

    async def drive_error(self, request: Request, e: DriveError) -> JSONResponse:
        code = status_for(e)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, e)
        return JSONResponse(status_code=code, content={"detail": str(e), "error": type(e).__name__})

    async def healthcheck(self) -> str:
        return self.drive.identity

    async def list_files(self, prefix: str = "") -> list[dict]:
        return [to_dict(f) for f in await self.drive.list(prefix)]

    async def list_table(self, prefix: str = "", mask: int = 0) -> PlainTextResponse:
        return PlainTextResponse((await self.drive.list(prefix)).render(mask))

    async def stat(self, key: str) -> dict:
        return to_dict(await self.drive.stat(key))

    async def content(self, key: str) -> StreamingResponse:
        f = await self.drive.stat(key)
        stream = await self.drive.get(key)
        return StreamingResponse(iter_stream(stream), media_type="application/octet-stream",
                                 headers={"Content-Length": str(f.size)})

    async def add(self, key: str, request: Request) -> dict:
        body = await request.body()
        return to_dict(await self.drive.add(key, io.BytesIO(body)))

    async def remove(self, key: str) -> dict:
        await self.drive.remove(key)
        return {"removed": key}

    async def grant(self, body: dict[str, str]) -> dict:
        identity, permission = self._access_request(body)
        await self.drive.grant(identity, permission)
        return {"granted": permission, "identity": identity}

    async def revoke(self, body: dict[str, str]) -> dict:
        identity, permission = self._access_request(body)
        await self.drive.revoke(identity, permission)
        return {"revoked": permission, "identity": identity}

    def _access_request(self, body: dict[str, str]) -> tuple[str, str]:
        identity = body.get("identity", "")
        permission = body.get("permission", "")
        if not identity or not permission:
            raise InvalidArgument("both identity and permission are required")
        return identity, permission

    async def unmount(self) -> dict:
        if self.shutdown is None:
            raise InvalidArgument("this server does not control a mount")
        self.shutdown.set()
        return {"unmounting": self.drive.address}
