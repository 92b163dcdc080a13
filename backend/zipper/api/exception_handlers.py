"""
Centralized exception handlers for consistent error responses

Only failures detected before the first archive byte ever reach these;
once streaming has started, errors are logged instead.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from zipper.core.exceptions import ManifestMalformed, ManifestUnavailable, MissingReference

logger = logging.getLogger(__name__)


def setup_exception_handlers(app: FastAPI):
    """
    Register all exception handlers on the FastAPI app.

    Call this after creating the FastAPI app instance:
        app = FastAPI()
        setup_exception_handlers(app)
    """

    @app.exception_handler(MissingReference)
    async def missing_reference_handler(request: Request, exc: MissingReference):
        """No ref given: tell the caller how to use the endpoint"""
        return JSONResponse(
            status_code=400,
            content={
                "error": exc.code.value,
                "message": exc.message
            }
        )

    @app.exception_handler(ManifestUnavailable)
    async def manifest_unavailable_handler(request: Request, exc: ManifestUnavailable):
        """Missing key and cache outage look the same to the client"""
        logger.info(f"{request.method}\t{request.url.path}\t{exc.message}")
        return JSONResponse(
            status_code=403,
            content={
                "error": "access_denied",
                "message": exc.message
            }
        )

    @app.exception_handler(ManifestMalformed)
    async def manifest_malformed_handler(request: Request, exc: ManifestMalformed):
        """Undecodable manifest; the payload was logged by the resolver and stays there"""
        logger.warning(f"{request.method}\t{request.url.path}\t{exc.message} (ref={exc.ref})")
        return JSONResponse(
            status_code=403,
            content={
                "error": "access_denied",
                "message": exc.message
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Catch-all handler for unhandled exceptions"""
        logger.exception(f"Unhandled exception: {exc}")

        # Don't expose internal details in production
        from zipper.core.config import settings

        if settings.DEBUG:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "type": type(exc).__name__
                }
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred"
            }
        )
