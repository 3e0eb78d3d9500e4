from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from resume_intake.errors import TransportError
from resume_intake.models import IncomingFile

logger = logging.getLogger(__name__)

ByteProgress = Callable[[int, int], None]


@dataclass(frozen=True)
class UploadOptions:
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    field_name: str = "file"
    timeout: float = 60.0
    chunk_size: int = 64 * 1024


class HttpUploadTransport:
    """
    Multipart upload over httpx with byte-level progress.

    The encoded multipart body is re-chunked and counted as httpx pulls it,
    so ``on_progress(sent, total)`` tracks what actually left the client.
    Cancelling the awaiting task aborts the request.
    """

    def __init__(self, options: UploadOptions, client: Optional[httpx.AsyncClient] = None):
        self.options = options
        self._client = client

    def _build(self, client: httpx.AsyncClient, file: IncomingFile, on_progress: ByteProgress) -> httpx.Request:
        opts = self.options
        files = {opts.field_name: (file.name, file.data, file.mime_type or "application/octet-stream")}
        encoded = httpx.Request(opts.method, opts.url, files=files, headers=opts.headers)
        total = int(encoded.headers.get("Content-Length") or 0)

        async def body():
            sent = 0
            async for chunk in encoded.stream:
                for i in range(0, len(chunk), opts.chunk_size):
                    piece = chunk[i:i + opts.chunk_size]
                    yield piece
                    sent += len(piece)
                    on_progress(sent, total)

        headers = {k: v for k, v in encoded.headers.items() if k.lower() != "host"}
        return client.build_request(
            opts.method, opts.url, headers=headers, content=body(), timeout=opts.timeout
        )

    async def _send(self, client: httpx.AsyncClient, file: IncomingFile, on_progress: ByteProgress) -> httpx.Response:
        return await client.send(self._build(client, file, on_progress))

    async def send(self, file: IncomingFile, on_progress: ByteProgress) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._send(self._client, file, on_progress)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, file, on_progress)
        except httpx.HTTPError as e:
            logger.warning(f"Upload of {file.name!r} failed: {e}")
            raise TransportError("Upload failed due to network error") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Upload failed with status {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Upload response was not valid JSON", status_code=response.status_code) from e

        if not isinstance(body, dict) or not body.get("url"):
            raise TransportError("Upload response did not include a file URL", status_code=response.status_code)
        return body
