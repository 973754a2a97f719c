"""
Content store backed by an IPFS node's RPC API.
"""
import io
import json
import logging
from typing import BinaryIO, Optional

import httpx

from drive.errors import ContentStoreError

logger = logging.getLogger(__name__)

DEFAULT_API_ADDRESS = "/ip4/127.0.0.1/tcp/5001"


def api_url(address: str) -> str:
    """
    Turn an API address into a base URL.

    Accepts either an http(s) URL or a multiaddr such as /ip4/127.0.0.1/tcp/5001.
    """
    if address.startswith("http://") or address.startswith("https://"):
        return address.rstrip("/")
    parts = [p for p in address.split("/") if p]
    if len(parts) < 4 or parts[0] not in ("ip4", "ip6", "dns", "dns4", "dns6") or parts[2] != "tcp":
        raise ValueError(f"unsupported API address {address!r}")
    host = parts[1]
    if parts[0] == "ip6":
        host = f"[{host}]"
    return f"http://{host}:{parts[3]}"


class IPFSStore:
    client: httpx.AsyncClient

    def __init__(self, address: str = DEFAULT_API_ADDRESS, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 60.0):
        self.client = client or httpx.AsyncClient(base_url=api_url(address), timeout=timeout)

    async def _call(self, command: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.post(f"/api/v0/{command}", **kwargs)
        except httpx.HTTPError as e:
            raise ContentStoreError(f"ipfs {command} failed: {e}") from e
        return response

    def _error(self, command: str, response: httpx.Response) -> ContentStoreError:
        try:
            message = response.json().get("Message", response.text)
        except ValueError:
            message = response.text
        return ContentStoreError(f"ipfs {command} failed ({response.status_code}): {message}")

    async def add(self, stream: BinaryIO) -> str:
        if stream is None:
            raise ContentStoreError("cannot add from a missing stream")
        response = await self._call("add", params={"pin": "true", "cid-version": "1"},
                                    files={"file": ("file", stream)})
        if response.status_code != 200:
            raise self._error("add", response)
        # One JSON object per line; the last line describes the root
        lines = [line for line in response.text.splitlines() if line.strip()]
        try:
            cid = json.loads(lines[-1])["Hash"]
        except (IndexError, KeyError, ValueError) as e:
            raise ContentStoreError(f"unexpected ipfs add reply: {response.text!r}") from e
        logger.debug("added %s", cid)
        return cid

    async def get(self, cid: str) -> BinaryIO:
        response = await self._call("cat", params={"arg": cid})
        if response.status_code != 200:
            raise self._error("cat", response)
        return io.BytesIO(response.content)

    async def pin(self, cid: str) -> None:
        response = await self._call("pin/add", params={"arg": cid})
        if response.status_code != 200:
            raise self._error("pin/add", response)

    async def unpin(self, cid: str) -> None:
        response = await self._call("pin/rm", params={"arg": cid, "recursive": "true"})
        if response.status_code == 200:
            return
        if _not_pinned(response):
            return
        raise self._error("pin/rm", response)

    async def is_pinned(self, cid: str) -> bool:
        response = await self._call("pin/ls", params={"arg": cid, "type": "recursive"})
        if response.status_code == 200:
            return cid in response.json().get("Keys", {})
        if _not_pinned(response):
            return False
        raise self._error("pin/ls", response)

    async def identity(self) -> str:
        response = await self._call("id")
        if response.status_code != 200:
            raise self._error("id", response)
        return response.json()["ID"]

    async def aclose(self) -> None:
        await self.client.aclose()


def _not_pinned(response: httpx.Response) -> bool:
    return "not pinned" in response.text
