"""Content-addressed put/get against IPFS.

Every read is bounded twice:

  wall clock   asyncio.timeout around the whole fetch (default 30s)
  size         a byte cap checked on every chunk while streaming
               (default 50 MB); the partial buffer is dropped as soon
               as the cap is crossed, so no truncated bytes ever reach
               a caller

Content is typed by sniffing the bytes on read (binary signatures
first, then JSON, then text), never by assuming a fixed format.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from app.core.config import DEFAULT_IPFS_MAX_BYTES, DEFAULT_IPFS_TIMEOUT_SECONDS
from app.core.errors import (
    CredentialServiceError,
    NotFoundError,
    TooLargeError,
    UnavailableError,
)
from app.core.metrics import GATEWAY_LATENCY, IPFS_BYTES
from app.models.credential import StoredContent

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024

# CIDv1 prefix bytes: version 1, raw codec, sha2-256 multihash of 32 bytes.
_CID_V1 = 0x01
_RAW_CODEC = 0x55
_SHA2_256 = 0x12
_DIGEST_LEN = 0x20

_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
]


def compute_cid(data: bytes) -> str:
    """CIDv1 (raw codec, sha2-256) in base32 lower multibase form."""
    digest = hashlib.sha256(data).digest()
    raw = bytes([_CID_V1, _RAW_CODEC, _SHA2_256, _DIGEST_LEN]) + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def load_json(data: bytes | str) -> Any:
    """Strict RFC 8259 parse: NaN, Infinity and -Infinity are rejected."""
    return json.loads(data, parse_constant=_reject_constant)


def detect_content_type(data: bytes) -> str:
    for magic, content_type in _SIGNATURES:
        if data.startswith(magic):
            return content_type
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return "application/octet-stream"
    try:
        load_json(text)
        return "application/json"
    except ValueError:
        pass
    if all(ch.isprintable() or ch in "\r\n\t" for ch in text):
        return "text/plain"
    return "application/octet-stream"


def is_plausible_cid(value: str) -> bool:
    return len(value) >= 10 and value.isascii() and value.isalnum()


@runtime_checkable
class ContentStore(Protocol):
    async def put(
        self, data: bytes, content_type: str = "application/octet-stream", pin: bool = True
    ) -> StoredContent: ...

    async def get(
        self, cid: str, timeout: float | None = None, max_size: int | None = None
    ) -> bytes: ...

    async def ping(self) -> bool: ...

    def url_for(self, cid: str) -> str: ...


def _too_large(cid: str, limit: int) -> TooLargeError:
    logger.warning(
        "Content exceeded %d bytes, read aborted", limit, extra={"cid": cid, "source": "ipfs"}
    )
    return TooLargeError(f"Content {cid} exceeds {limit} bytes", limit=limit)


class InMemoryContentStore:
    """Dict-backed store keyed by the real CID of each payload.

    ``unreachable`` makes every call raise UnavailableError; ``delay``
    stalls reads so the timeout path can be exercised.
    """

    def __init__(
        self,
        *,
        gateway_url: str = "https://ipfs.io",
        timeout: float = DEFAULT_IPFS_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_IPFS_MAX_BYTES,
    ) -> None:
        self._blobs: dict[str, bytes] = {}
        self.pinned: set[str] = set()
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout
        self._max_bytes = max_bytes
        self.unreachable = False
        self.delay = 0.0

    def url_for(self, cid: str) -> str:
        return f"{self._gateway_url}/ipfs/{cid}"

    async def put(
        self, data: bytes, content_type: str = "application/octet-stream", pin: bool = True
    ) -> StoredContent:
        if self.unreachable:
            raise UnavailableError("IPFS node unreachable", source="ipfs")
        cid = compute_cid(data)
        self._blobs[cid] = bytes(data)
        if pin:
            self.pinned.add(cid)
        IPFS_BYTES.labels(direction="put").inc(len(data))
        return StoredContent(cid=cid, url=self.url_for(cid), size=len(data))

    async def get(
        self, cid: str, timeout: float | None = None, max_size: int | None = None
    ) -> bytes:
        limit = max_size if max_size is not None else self._max_bytes
        wait = timeout if timeout is not None else self._timeout
        try:
            async with asyncio.timeout(wait):
                if self.delay:
                    await asyncio.sleep(self.delay)
                if self.unreachable:
                    raise UnavailableError("IPFS node unreachable", source="ipfs")
                blob = self._blobs.get(cid)
                if blob is None:
                    raise NotFoundError(f"Content {cid} not found")
                buffer = bytearray()
                for offset in range(0, len(blob), _CHUNK_SIZE):
                    buffer.extend(blob[offset : offset + _CHUNK_SIZE])
                    if len(buffer) > limit:
                        raise _too_large(cid, limit)
        except TimeoutError:
            raise UnavailableError(
                f"IPFS read of {cid} timed out after {wait}s", source="ipfs"
            ) from None
        IPFS_BYTES.labels(direction="get").inc(len(buffer))
        return bytes(buffer)

    async def ping(self) -> bool:
        return not self.unreachable


class IpfsHttpContentStore:
    """Client for the IPFS (Kubo) RPC API.

    Writes go through /api/v0/add with pin=true and CIDv1; reads stream
    /api/v0/cat.  Optional basic auth covers hosted pinning endpoints
    that issue a project id/secret pair.
    """

    def __init__(
        self,
        *,
        api_url: str,
        gateway_url: str = "https://ipfs.io",
        timeout: float = DEFAULT_IPFS_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_IPFS_MAX_BYTES,
        project_id: str | None = None,
        project_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        auth = (project_id, project_secret or "") if project_id else None
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"), auth=auth, timeout=timeout
        )
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout
        self._max_bytes = max_bytes

    def url_for(self, cid: str) -> str:
        return f"{self._gateway_url}/ipfs/{cid}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def put(
        self, data: bytes, content_type: str = "application/octet-stream", pin: bool = True
    ) -> StoredContent:
        start = time.monotonic()
        try:
            async with asyncio.timeout(self._timeout):
                resp = await self._client.post(
                    "/api/v0/add",
                    params={
                        "pin": "true" if pin else "false",
                        "cid-version": "1",
                        "hash": "sha2-256",
                    },
                    files={"file": ("content", data, content_type)},
                )
                resp.raise_for_status()
        except TimeoutError:
            raise UnavailableError(
                f"IPFS add timed out after {self._timeout}s", source="ipfs"
            ) from None
        except httpx.HTTPError as exc:
            raise UnavailableError(f"IPFS add failed: {exc}", source="ipfs") from exc
        finally:
            GATEWAY_LATENCY.labels(source="ipfs", operation="put").observe(
                time.monotonic() - start
            )

        try:
            cid = resp.json()["Hash"]
        except (ValueError, KeyError, TypeError):
            raise UnavailableError(
                "IPFS add returned an unexpected response", source="ipfs"
            ) from None
        IPFS_BYTES.labels(direction="put").inc(len(data))
        logger.info("Content pinned size=%d", len(data), extra={"cid": cid})
        return StoredContent(cid=cid, url=self.url_for(cid), size=len(data))

    async def get(
        self, cid: str, timeout: float | None = None, max_size: int | None = None
    ) -> bytes:
        limit = max_size if max_size is not None else self._max_bytes
        wait = timeout if timeout is not None else self._timeout
        start = time.monotonic()
        buffer = bytearray()
        try:
            async with asyncio.timeout(wait):
                async with self._client.stream(
                    "POST", "/api/v0/cat", params={"arg": cid}
                ) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread())[:2048].decode("utf-8", "replace")
                        if resp.status_code == 404 or "not found" in body.lower():
                            raise NotFoundError(f"Content {cid} not found")
                        raise UnavailableError(
                            f"IPFS cat returned {resp.status_code}: {body}",
                            source="ipfs",
                        )
                    async for chunk in resp.aiter_bytes(_CHUNK_SIZE):
                        buffer.extend(chunk)
                        if len(buffer) > limit:
                            buffer.clear()
                            raise _too_large(cid, limit)
        except CredentialServiceError:
            raise
        except TimeoutError:
            raise UnavailableError(
                f"IPFS read of {cid} timed out after {wait}s", source="ipfs"
            ) from None
        except httpx.HTTPError as exc:
            raise UnavailableError(f"IPFS read failed: {exc}", source="ipfs") from exc
        finally:
            GATEWAY_LATENCY.labels(source="ipfs", operation="get").observe(
                time.monotonic() - start
            )

        IPFS_BYTES.labels(direction="get").inc(len(buffer))
        return bytes(buffer)

    async def ping(self) -> bool:
        try:
            async with asyncio.timeout(min(self._timeout, 5.0)):
                resp = await self._client.post("/api/v0/version")
            return resp.status_code == 200
        except (TimeoutError, httpx.HTTPError):
            logger.warning("IPFS ping failed", extra={"source": "ipfs"})
            return False
