"""
Streaming archive assembler.

Turns a manifest into ZIP bytes without ever holding a whole file or the
whole archive. Framing is done by stream-zip: each entry gets its local
header, deflated data and a data descriptor as it goes, and the central
directory is written once at the end, so the output never needs seeking
and can go straight to a socket.

Entry order is manifest order. Up to `fetch_ahead` sources are opened in
the background while the current entry is being written, but entries are
always emitted in sequence; a slow source holds back everything after it.

A source that cannot be opened is skipped. A source that breaks mid-copy
ends its entry early (the header is already out) and is reported. Only a
failing sink stops the archive.
"""
import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from stat import S_IFREG
from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Set, Tuple

import anyio
import httpx
from stream_zip import ZIP_32, ZIP_64, async_stream_zip

from zipper.core.config import settings
from zipper.core.exceptions import SinkFailure, SourceUnavailable
from zipper.core.logging import get_logger, log_entry_skipped
from zipper.models.manifest import FileDescriptor, Manifest
from zipper.services.file_source import SourceStream, source_for
from zipper.services.sanitizer import archive_path

logger = get_logger(__name__)

MEMBER_MODE = S_IFREG | 0o644

# DOS timestamps in the local header cannot go outside this range
DOS_EPOCH = datetime(1980, 1, 1, tzinfo=timezone.utc)
DOS_MAX = datetime(2107, 12, 31, 23, 59, 58, tzinfo=timezone.utc)


@dataclass
class SkippedEntry:
    """An entry that is missing from the archive ("open") or truncated in it ("read")"""
    archive_path: str
    source: str
    stage: str
    reason: str


@dataclass
class ArchiveReport:
    """What happened while assembling one archive"""
    entries_written: List[str] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    bytes_read: int = 0
    aborted: bool = False
    started_at: float = field(default_factory=time.perf_counter)
    finished_at: Optional[float] = None

    @property
    def duration_ms(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.perf_counter()
        return (end - self.started_at) * 1000

    def record_skip(self, path: str, source: str, stage: str, reason: str) -> None:
        self.skipped.append(SkippedEntry(path, source, stage, reason))
        log_entry_skipped(path, stage, reason, source=source)

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = time.perf_counter()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries_written": len(self.entries_written),
            "entries_skipped": len(self.skipped),
            "bytes_read": self.bytes_read,
            "aborted": self.aborted,
            "duration_ms": round(self.duration_ms, 2),
            "skipped": [
                {"archive_path": s.archive_path, "stage": s.stage, "reason": s.reason}
                for s in self.skipped
            ],
        }


def _dos_safe(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return min(max(moment, DOS_EPOCH), DOS_MAX)


class _AssemblyRun:
    """State for one pass over a manifest: fetch-ahead window and open sources"""

    def __init__(self, assembler: "ArchiveAssembler", manifest: Manifest, report: ArchiveReport):
        self.assembler = assembler
        self.report = report
        self.pending: Deque[Tuple[FileDescriptor, str, asyncio.Task]] = deque()
        self.open_streams: Set[SourceStream] = set()
        self._descriptors = iter(manifest)
        self._closed = False

    def _fill(self) -> None:
        while not self._closed and len(self.pending) < self.assembler.fetch_ahead:
            descriptor = next(self._descriptors, None)
            if descriptor is None:
                return
            path = archive_path(descriptor, self.assembler.fallback_name)
            task = asyncio.ensure_future(self._open(descriptor))
            self.pending.append((descriptor, path, task))

    async def _open(self, descriptor: FileDescriptor) -> SourceStream:
        source = source_for(descriptor, self.assembler.http_client, self.assembler.chunk_size)
        stream = await source.open()
        self.open_streams.add(stream)
        return stream

    async def members(self):
        self._fill()
        while self.pending:
            descriptor, path, task = self.pending.popleft()
            self._fill()
            try:
                stream = await task
            except SourceUnavailable as e:
                self.report.record_skip(path, descriptor.source_location, "open", e.message)
                continue

            yield (
                path,
                _dos_safe(stream.modified_at),
                MEMBER_MODE,
                self.assembler.method,
                self._chunks(path, stream),
            )

    async def _chunks(self, path: str, stream: SourceStream) -> AsyncIterator[bytes]:
        try:
            async for chunk in stream.iter_chunks():
                yield chunk
        except SourceUnavailable as e:
            # Header already sent: the entry stays, cut short
            self.report.record_skip(path, stream.location, "read", e.message)
        else:
            self.report.entries_written.append(path)
        finally:
            await self._close_stream(stream)

    async def _close_stream(self, stream: SourceStream) -> None:
        if stream not in self.open_streams:
            return
        self.open_streams.discard(stream)
        self.report.bytes_read += stream.bytes_read
        try:
            await stream.aclose()
        except (OSError, httpx.HTTPError) as e:
            logger.warning("Error closing source", source=stream.location, error=str(e))

    async def release(self) -> None:
        """Cancel pending opens and close everything still open"""
        self._closed = True
        tasks = [task for _, _, task in self.pending]
        self.pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for stream in list(self.open_streams):
            await self._close_stream(stream)


class ArchiveAssembler:
    """
    Writes manifests out as streaming ZIP archives.

    The httpx client is injected and shared across requests; the assembler
    itself holds no per-request state, so one instance can serve many
    archives concurrently.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        fetch_ahead: Optional[int] = None,
        chunk_size: Optional[int] = None,
        zip64: Optional[bool] = None,
        fallback_name: Optional[str] = None,
    ):
        self.http_client = http_client
        self.fetch_ahead = max(1, fetch_ahead if fetch_ahead is not None else settings.fetch_ahead)
        self.chunk_size = chunk_size or settings.READ_CHUNK_SIZE
        self.zip64 = settings.ZIP64 if zip64 is None else zip64
        self.fallback_name = fallback_name or settings.FALLBACK_FILE_NAME

    @property
    def method(self):
        return ZIP_64 if self.zip64 else ZIP_32

    async def stream(
        self,
        manifest: Manifest,
        report: Optional[ArchiveReport] = None,
    ) -> AsyncIterator[bytes]:
        """
        Yield the archive's bytes.

        Pass a report to inspect the outcome afterwards. If the consumer
        stops early (client disconnect, cancellation) the report is marked
        aborted and every open source is released.
        """
        if report is None:
            report = ArchiveReport()
        run = _AssemblyRun(self, manifest, report)
        completed = False
        try:
            async for chunk in async_stream_zip(run.members(), chunk_size=self.chunk_size):
                yield chunk
            completed = True
        finally:
            if not completed:
                report.aborted = True
            with anyio.CancelScope(shield=True):
                await run.release()
            report.finish()
            summary = report.to_dict()
            if report.aborted:
                logger.warning("Archive aborted", **summary)
            else:
                logger.info("Archive finished", **summary)

    async def assemble(self, manifest: Manifest, sink: Any) -> ArchiveReport:
        """
        Write the whole archive to `sink` and close it.

        `sink` needs write() and close(); either may be a coroutine
        function (aiofiles handles, asyncio stream writers) or plain.

        Raises:
            SinkFailure: the sink rejected a write or failed to close;
                remaining entries were abandoned
        """
        report = ArchiveReport()
        chunks = self.stream(manifest, report)
        try:
            try:
                async for chunk in chunks:
                    try:
                        await _maybe_await(sink.write(chunk))
                    except (OSError, ValueError) as e:
                        raise SinkFailure(f"write failed: {e}") from e
            finally:
                await chunks.aclose()
        except SinkFailure:
            await _close_sink(sink, quiet=True)
            raise

        await _close_sink(sink)
        return report


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


async def _close_sink(sink: Any, quiet: bool = False) -> None:
    try:
        await _maybe_await(sink.close())
    except (OSError, ValueError) as e:
        if not quiet:
            raise SinkFailure(f"close failed: {e}") from e
        logger.warning("Error closing sink", error=str(e))
