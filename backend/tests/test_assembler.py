"""
Archive assembler tests
"""

import asyncio
import os

import aiofiles
import httpx
import pytest

from conftest import read_zip
from zipper.core.exceptions import SinkFailure
from zipper.models.manifest import FileDescriptor
from zipper.services.assembler import ArchiveAssembler, ArchiveReport


async def build(assembler, manifest):
    report = ArchiveReport()
    data = b"".join([chunk async for chunk in assembler.stream(manifest, report)])
    return data, report


def local(name, path, folder=""):
    return FileDescriptor(FileName=name, Folder=folder, Path=path)


def remote_entry(name, url, folder=""):
    return FileDescriptor(FileName=name, Folder=folder, URL=url)


class TestArchiveContents:
    """Tests for what ends up in the archive"""

    @pytest.mark.asyncio
    async def test_round_trip_local_files(self, http_client, make_file):
        files = {
            "a.txt": b"hello",
            "b.bin": bytes(range(256)) * 1024,
            "c.txt": b"",
        }
        manifest = [
            local("a.txt", make_file("a.txt", files["a.txt"])),
            local("b.bin", make_file("b.bin", files["b.bin"]), folder="bin"),
            local("c.txt", make_file("c.txt", files["c.txt"]), folder="x/y"),
        ]

        data, report = await build(ArchiveAssembler(http_client), manifest)

        zf = read_zip(data)
        assert zf.namelist() == ["a.txt", "bin/b.bin", "x/y/c.txt"]
        assert zf.read("a.txt") == files["a.txt"]
        assert zf.read("bin/b.bin") == files["b.bin"]
        assert zf.read("x/y/c.txt") == b""
        assert report.entries_written == ["a.txt", "bin/b.bin", "x/y/c.txt"]
        assert report.skipped == []
        assert report.bytes_read == sum(len(v) for v in files.values())
        assert not report.aborted

    @pytest.mark.asyncio
    async def test_entries_are_deflated(self, http_client, make_file):
        path = make_file("big.txt", b"compress me " * 10000)
        data, _ = await build(ArchiveAssembler(http_client), [local("big.txt", path)])

        info = read_zip(data).getinfo("big.txt")
        assert info.compress_type == 8
        assert info.compress_size < info.file_size

    @pytest.mark.asyncio
    async def test_utf8_flag_on_names(self, http_client, make_file):
        path = make_file("plain.txt", b"bonjour")
        data, _ = await build(ArchiveAssembler(http_client), [local("café – été.txt", path, folder="données")])

        zf = read_zip(data)
        info = zf.infolist()[0]
        assert info.filename == "données/café – été.txt"
        assert info.flag_bits & 0x800
        assert zf.read(info) == b"bonjour"

    @pytest.mark.asyncio
    async def test_remote_and_local_mixed(self, http_client, remote, make_file):
        remote.add("http://files.example/r.txt", b"from the web")
        manifest = [
            local("l.txt", make_file("l.txt", b"from disk")),
            remote_entry("r.txt", "http://files.example/r.txt"),
        ]

        data, report = await build(ArchiveAssembler(http_client), manifest)

        zf = read_zip(data)
        assert zf.read("l.txt") == b"from disk"
        assert zf.read("r.txt") == b"from the web"
        assert len(report.entries_written) == 2

    @pytest.mark.asyncio
    async def test_empty_manifest_is_valid_archive(self, http_client):
        data, report = await build(ArchiveAssembler(http_client), [])
        assert read_zip(data).namelist() == []
        assert report.entries_written == []

    @pytest.mark.asyncio
    async def test_sanitized_names_with_fallback(self, http_client, make_file):
        path = make_file("q.txt", b"q")
        data, _ = await build(ArchiveAssembler(http_client), [local("???", path, folder="x")])
        assert read_zip(data).namelist() == ["x/file"]


class TestPartialFailure:
    """Tests for entries that cannot be read"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fetch_ahead", [1, 3])
    async def test_missing_source_skipped_rest_kept(self, http_client, make_file, tmp_path, fetch_ahead):
        manifest = [local(f"f{i}.txt", make_file(f"f{i}.txt", f"content {i}".encode())) for i in range(5)]
        manifest[2] = local("f2.txt", str(tmp_path / "gone.txt"))

        data, report = await build(ArchiveAssembler(http_client, fetch_ahead=fetch_ahead), manifest)

        zf = read_zip(data)
        assert zf.namelist() == ["f0.txt", "f1.txt", "f3.txt", "f4.txt"]
        assert zf.read("f3.txt") == b"content 3"
        assert [(s.archive_path, s.stage) for s in report.skipped] == [("f2.txt", "open")]

    @pytest.mark.asyncio
    async def test_scenario_local_ok_remote_404(self, http_client, remote, make_file):
        remote.add("http://bad.example/404", b"Not Found", status=404)
        manifest = [
            FileDescriptor(FileName="a.txt", Folder="", Path=make_file("a.txt", b"hello")),
            FileDescriptor(FileName="b/c?.txt", Folder="x", URL="http://bad.example/404"),
        ]

        data, report = await build(ArchiveAssembler(http_client), manifest)

        zf = read_zip(data)
        assert zf.namelist() == ["a.txt"]
        assert zf.read("a.txt") == b"hello"
        assert len(report.skipped) == 1
        skipped = report.skipped[0]
        assert skipped.archive_path == "x/bc.txt"
        assert skipped.source == "http://bad.example/404"
        assert "404" in skipped.reason

    @pytest.mark.asyncio
    async def test_descriptor_without_source_skipped(self, http_client, make_file):
        manifest = [
            FileDescriptor(FileName="orphan.txt"),
            local("ok.txt", make_file("ok.txt", b"ok")),
        ]
        data, report = await build(ArchiveAssembler(http_client), manifest)

        assert read_zip(data).namelist() == ["ok.txt"]
        assert report.skipped[0].archive_path == "orphan.txt"

    @pytest.mark.asyncio
    async def test_unusable_path_skipped_not_fatal(self, http_client, make_file):
        manifest = [
            local("bad.txt", "/tmp/a\x00b"),
            local("ok.txt", make_file("ok.txt", b"ok")),
        ]
        data, report = await build(ArchiveAssembler(http_client), manifest)

        assert read_zip(data).namelist() == ["ok.txt"]
        assert [(s.archive_path, s.stage) for s in report.skipped] == [("bad.txt", "open")]
        assert report.entries_written == ["ok.txt"]
        assert not report.aborted

    @pytest.mark.asyncio
    async def test_transport_error_skipped(self, http_client, remote, make_file):
        remote.fail("http://down.example/x", httpx.ConnectError("refused"))
        manifest = [
            remote_entry("x", "http://down.example/x"),
            local("ok.txt", make_file("ok.txt", b"ok")),
        ]
        data, report = await build(ArchiveAssembler(http_client), manifest)

        assert read_zip(data).namelist() == ["ok.txt"]
        assert len(report.skipped) == 1

    @pytest.mark.asyncio
    async def test_mid_copy_failure_keeps_archive_valid(self, make_file):
        async def broken_body():
            yield b"first half "
            raise httpx.ReadError("connection reset")

        def handler(request):
            return httpx.Response(200, content=broken_body())

        manifest = [
            remote_entry("broken.txt", "http://flaky.example/broken.txt"),
            local("after.txt", make_file("after.txt", b"still here")),
        ]
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            data, report = await build(ArchiveAssembler(client, fetch_ahead=1), manifest)

        zf = read_zip(data)
        assert zf.namelist() == ["broken.txt", "after.txt"]
        assert zf.read("broken.txt") == b"first half "
        assert zf.read("after.txt") == b"still here"
        assert [(s.archive_path, s.stage) for s in report.skipped] == [("broken.txt", "read")]
        assert report.entries_written == ["after.txt"]


class TestOrdering:
    """Tests for manifest order under fetch-ahead"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fetch_ahead", [1, 2, 8])
    async def test_order_kept_when_later_sources_are_faster(self, fetch_ahead):
        count = 6

        async def handler(request):
            index = int(request.url.path.strip("/"))
            # Earlier entries answer later
            await asyncio.sleep((count - index) * 0.02)
            return httpx.Response(200, content=f"body {index}".encode())

        manifest = [remote_entry(f"{i}.txt", f"http://slow.example/{i}") for i in range(count)]
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            data, report = await build(ArchiveAssembler(client, fetch_ahead=fetch_ahead), manifest)

        zf = read_zip(data)
        assert zf.namelist() == [f"{i}.txt" for i in range(count)]
        for i in range(count):
            assert zf.read(f"{i}.txt") == f"body {i}".encode()
        assert report.entries_written == zf.namelist()


class FailingSink:
    """Accepts a few writes, then behaves like a dropped connection"""

    def __init__(self, fail_after: int):
        self.fail_after = fail_after
        self.writes = 0
        self.closed = False

    def write(self, data):
        self.writes += 1
        if self.writes > self.fail_after:
            raise BrokenPipeError("client went away")

    def close(self):
        self.closed = True


class TestSink:
    """Tests for writing to an output sink"""

    @pytest.mark.asyncio
    async def test_assemble_to_async_file(self, http_client, make_file, tmp_path):
        manifest = [
            local("a.txt", make_file("a.txt", b"alpha")),
            local("b.txt", make_file("b.txt", b"beta"), folder="sub"),
        ]
        out_path = tmp_path / "out.zip"

        sink = await aiofiles.open(out_path, "wb")
        report = await ArchiveAssembler(http_client).assemble(manifest, sink)

        zf = read_zip(out_path.read_bytes())
        assert zf.namelist() == ["a.txt", "sub/b.txt"]
        assert report.entries_written == ["a.txt", "sub/b.txt"]
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_sink_failure_is_fatal(self, http_client, make_file):
        manifest = [
            local(f"f{i}.bin", make_file(f"f{i}.bin", os.urandom(256 * 1024)))
            for i in range(4)
        ]
        sink = FailingSink(fail_after=1)

        with pytest.raises(SinkFailure):
            await ArchiveAssembler(http_client, chunk_size=4096).assemble(manifest, sink)

        assert sink.closed
        assert sink.writes == 2

    @pytest.mark.asyncio
    async def test_consumer_stopping_early_marks_aborted(self, http_client, make_file):
        manifest = [
            local(f"f{i}.bin", make_file(f"f{i}.bin", os.urandom(256 * 1024)))
            for i in range(4)
        ]
        report = ArchiveReport()
        chunks = ArchiveAssembler(http_client, chunk_size=4096).stream(manifest, report)

        await chunks.__anext__()
        await chunks.aclose()

        assert report.aborted
        assert report.finished_at is not None
        assert len(report.entries_written) < 4
