"""
Manifest resolution: reference key -> ordered list of FileDescriptors.

Whoever creates the download link stores the file list in Redis under
"<namespace>:<ref>" and hands out the ref. We only ever read it.
"""
from typing import Any, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from zipper.core.config import settings
from zipper.core.exceptions import ManifestMalformed, ManifestUnavailable
from zipper.core.logging import get_logger, log_duration
from zipper.models.manifest import Manifest, manifest_adapter

logger = get_logger(__name__)


class ManifestResolver:
    """
    Looks up manifests in the cache.

    The Redis client is injected (usually the process-wide pool created in
    the app lifespan) and is used read-only: one GET per call, no retry.
    """

    def __init__(self, redis: Any, namespace: Optional[str] = None):
        self.redis = redis
        self.namespace = namespace or settings.MANIFEST_NAMESPACE

    def cache_key(self, ref: str) -> str:
        return f"{self.namespace}:{ref}"

    async def resolve(self, ref: str) -> Manifest:
        """
        Fetch and decode the manifest for `ref`.

        Raises:
            ManifestUnavailable: key missing, empty ref, or the lookup failed
            ManifestMalformed: stored value is not a JSON array of descriptors
        """
        if not ref or not ref.strip():
            raise ManifestUnavailable(ref)

        key = self.cache_key(ref)
        try:
            with log_duration("manifest_lookup", logger, key=key):
                raw = await self.redis.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Manifest lookup failed", ref=ref, error=str(e))
            raise ManifestUnavailable(ref) from e

        if raw is None:
            logger.info("Manifest not found", ref=ref)
            raise ManifestUnavailable(ref)

        if isinstance(raw, str):
            payload = raw
        elif isinstance(raw, (bytes, bytearray)):
            payload = bytes(raw).decode("utf-8", errors="replace")
        else:
            logger.error("Manifest value has unexpected type", ref=ref, type=type(raw).__name__)
            raise ManifestUnavailable(ref, "Error converting data stream to bytes")

        try:
            manifest = manifest_adapter.validate_json(payload)
        except ValidationError as e:
            logger.error(
                "Error decoding manifest json",
                ref=ref,
                payload=payload,
                detail=e.errors(include_url=False),
            )
            raise ManifestMalformed(ref, payload, detail=str(e)) from e

        logger.debug("Manifest resolved", ref=ref, entries=len(manifest))
        return manifest
