"""
Error taxonomy for the zipper

Manifest errors happen before any byte is written and become clean
HTTP rejections. Source errors are recovered per entry. Sink errors end
the request.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Standardized error codes"""
    MISSING_REFERENCE = "missing_reference"
    MANIFEST_UNAVAILABLE = "manifest_unavailable"
    MANIFEST_MALFORMED = "manifest_malformed"
    SOURCE_UNAVAILABLE = "source_unavailable"
    SINK_FAILURE = "sink_failure"


class ZipperError(Exception):
    """Base class for all zipper errors"""
    code: ErrorCode

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingReference(ZipperError):
    """Request carried no manifest reference at all"""
    code = ErrorCode.MISSING_REFERENCE


class ManifestUnavailable(ZipperError):
    """Cache miss or cache lookup failure, reported identically to the caller"""
    code = ErrorCode.MANIFEST_UNAVAILABLE

    def __init__(self, ref: str, message: str = "Access Denied (sorry your link has timed out)"):
        super().__init__(message)
        self.ref = ref


class ManifestMalformed(ZipperError):
    """
    Stored manifest could not be decoded.

    `payload` is kept for internal logs only and must never reach the client.
    """
    code = ErrorCode.MANIFEST_MALFORMED

    def __init__(self, ref: str, payload: str, detail: Optional[str] = None):
        super().__init__("Error decoding file list")
        self.ref = ref
        self.payload = payload
        self.detail = detail


class SourceUnavailable(ZipperError):
    """A single entry's source could not be opened or read"""
    code = ErrorCode.SOURCE_UNAVAILABLE

    def __init__(self, source: str, message: str):
        super().__init__(message)
        self.source = source


class SinkFailure(ZipperError):
    """The output stream rejected a write; the rest of the archive is abandoned"""
    code = ErrorCode.SINK_FAILURE
