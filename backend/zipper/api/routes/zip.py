"""
Archive download route

GET /?ref=<key>&downloadas=<name>

Resolves the manifest first so a bad or expired ref gets a clean 403.
After that the response is committed: status and headers go out with the
first chunk and anything that fails later only shows up in the logs.
"""
import re
import time
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from zipper.api.dependencies import get_archive_assembler, get_manifest_resolver
from zipper.core.config import settings
from zipper.core.exceptions import MissingReference
from zipper.core.logging import log_archive_request
from zipper.services.assembler import ArchiveAssembler, ArchiveReport
from zipper.services.manifest_resolver import ManifestResolver
from zipper.services.sanitizer import download_name


router = APIRouter(tags=["Zip"])

USAGE_MESSAGE = "File Zipper. Pass ?ref= to use."

CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


def content_disposition(filename: str) -> str:
    """
    Attachment header for an already sanitized name.

    Names that don't fit in latin-1 get an RFC 5987 filename* alongside an
    ASCII fallback.
    """
    filename = CONTROL_CHARS.sub("", filename) or settings.DEFAULT_DOWNLOAD_NAME
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "ignore").decode("ascii").strip() or settings.DEFAULT_DOWNLOAD_NAME
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
    return f'attachment; filename="{filename}"'


@router.get("/")
async def download_zip(
    request: Request,
    ref: Optional[str] = Query(None, description="Manifest reference key"),
    downloadas: Optional[str] = Query(None, description="Name for the downloaded archive"),
    resolver: ManifestResolver = Depends(get_manifest_resolver),
    assembler: ArchiveAssembler = Depends(get_archive_assembler),
):
    """Stream the files listed under `ref` as one ZIP archive"""
    if not ref:
        raise MissingReference(USAGE_MESSAGE)

    start = time.perf_counter()
    manifest = await resolver.resolve(ref)

    filename = download_name(downloadas)
    report = ArchiveReport()
    request_path = str(request.url.path)
    if request.url.query:
        request_path += f"?{request.url.query}"

    async def body():
        chunks = assembler.stream(manifest, report)
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()
            log_archive_request(
                method=request.method,
                path=request_path,
                duration_ms=(time.perf_counter() - start) * 1000,
                entries_written=len(report.entries_written),
                entries_skipped=len(report.skipped),
                bytes_read=report.bytes_read,
                aborted=report.aborted,
                ref=ref,
            )

    return StreamingResponse(
        body(),
        media_type="application/zip",
        headers={"Content-Disposition": content_disposition(filename)},
    )
