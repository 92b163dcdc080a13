"""
FastAPI dependencies for the shared clients

The Redis pool and the httpx client are built once in the app lifespan
and parked on app.state; routes get them (and the services wrapping them)
through these. Tests swap them with app.dependency_overrides.
"""
from typing import Any

import httpx
from fastapi import Depends, Request

from zipper.services.assembler import ArchiveAssembler
from zipper.services.manifest_resolver import ManifestResolver


def get_redis(request: Request) -> Any:
    """Process-wide async Redis client"""
    return request.app.state.redis


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Process-wide httpx client used for remote sources"""
    return request.app.state.http_client


def get_manifest_resolver(redis: Any = Depends(get_redis)) -> ManifestResolver:
    return ManifestResolver(redis)


def get_archive_assembler(
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> ArchiveAssembler:
    return ArchiveAssembler(http_client)
