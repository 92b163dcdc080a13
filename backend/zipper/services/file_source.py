"""
File sources: where an entry's bytes come from.

Two variants share one capability, `await source.open()`:

- LocalFileSource: a path on this machine, read with aiofiles
- RemoteFileSource: an HTTP(S) URL, streamed with the shared httpx client

The assembler never looks at which one it has.
"""
import asyncio
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import AsyncIterator, Optional

import aiofiles
import httpx

from zipper.core.config import settings
from zipper.core.exceptions import SourceUnavailable
from zipper.models.manifest import FileDescriptor


class SourceStream(ABC):
    """An opened source. Must be closed with aclose() whatever happens."""

    def __init__(self, location: str, modified_at: Optional[datetime] = None):
        self.location = location
        self.modified_at = modified_at or datetime.now(timezone.utc)
        self.bytes_read = 0

    @abstractmethod
    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the source's bytes. Read errors surface as SourceUnavailable."""

    @abstractmethod
    async def aclose(self) -> None:
        """Release the file handle / connection"""


class FileSource(ABC):
    """Something that can be opened into a SourceStream"""

    def __init__(self, location: str):
        self.location = location

    @abstractmethod
    async def open(self) -> SourceStream:
        """Open the source or raise SourceUnavailable"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.location!r})"


# ============ Local files ============

class LocalFileStream(SourceStream):
    def __init__(self, location: str, handle, modified_at: datetime, chunk_size: int):
        super().__init__(location, modified_at)
        self._handle = handle
        self._chunk_size = chunk_size

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            try:
                chunk = await self._handle.read(self._chunk_size)
            except OSError as e:
                raise SourceUnavailable(self.location, f"read failed: {e}") from e
            if not chunk:
                return
            self.bytes_read += len(chunk)
            yield chunk

    async def aclose(self) -> None:
        await self._handle.close()


class LocalFileSource(FileSource):
    """A file on the local filesystem"""

    def __init__(self, path: str, chunk_size: Optional[int] = None):
        super().__init__(path)
        self.chunk_size = chunk_size or settings.READ_CHUNK_SIZE

    async def open(self) -> SourceStream:
        # The open runs in an executor thread and can't be interrupted; if we
        # are cancelled meanwhile, the handle it produces is closed on arrival
        opening = asyncio.ensure_future(aiofiles.open(self.location, "rb"))
        try:
            handle = await asyncio.shield(opening)
        except asyncio.CancelledError:
            opening.add_done_callback(_close_late_handle)
            raise
        except (OSError, ValueError) as e:
            # ValueError: embedded null byte and similar unusable paths
            raise SourceUnavailable(self.location, f"cannot open: {e}") from e

        try:
            stat = os.fstat(handle.fileno())
        except OSError as e:
            await handle.close()
            raise SourceUnavailable(self.location, f"cannot stat: {e}") from e

        modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return LocalFileStream(self.location, handle, modified_at, self.chunk_size)


def _close_late_handle(opening: asyncio.Future) -> None:
    if opening.cancelled() or opening.exception() is not None:
        return
    asyncio.ensure_future(opening.result().close())


# ============ Remote files ============

class RemoteFileStream(SourceStream):
    def __init__(self, location: str, response: httpx.Response):
        super().__init__(location, _last_modified(response))
        self._response = response

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        # No re-chunking: bytes buffered by a chunker would be lost on a dropped connection
        try:
            async for chunk in self._response.aiter_bytes():
                self.bytes_read += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            raise SourceUnavailable(self.location, f"download interrupted: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


class RemoteFileSource(FileSource):
    """
    A file behind an HTTP(S) URL.

    Only a 2xx response counts as success; error pages are never streamed
    into the archive as if they were the file. No retries and no timeout
    beyond what the injected client is configured with.
    """

    def __init__(self, url: str, client: httpx.AsyncClient):
        super().__init__(url)
        self.client = client

    async def open(self) -> SourceStream:
        try:
            request = self.client.build_request("GET", self.location)
            response = await self.client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SourceUnavailable(self.location, f"request failed: {e}") from e

        if not response.is_success:
            await response.aclose()
            raise SourceUnavailable(
                self.location,
                f"HTTP {response.status_code} {response.reason_phrase}".strip()
            )

        return RemoteFileStream(self.location, response)


def _last_modified(response: httpx.Response) -> Optional[datetime]:
    header = response.headers.get("last-modified")
    if not header:
        return None
    try:
        parsed = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def source_for(
    descriptor: FileDescriptor,
    client: httpx.AsyncClient,
    chunk_size: Optional[int] = None,
) -> FileSource:
    """
    Pick the source variant for a manifest entry.

    Local path wins when both are set. An entry with neither is an
    entry-level failure, reported like any other unopenable source.
    """
    if descriptor.local_path:
        return LocalFileSource(descriptor.local_path, chunk_size)
    if descriptor.remote_url:
        return RemoteFileSource(descriptor.remote_url, client)
    raise SourceUnavailable("", f"no Path or URL given for \"{descriptor.file_name}\"")
