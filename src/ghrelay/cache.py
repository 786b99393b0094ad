import asyncio
import hashlib
import json
import logging
import typing

from aiobotocore.session import get_session

from ghrelay.config import ConfigManager
from ghrelay.datastructures import CachedResponse
from ghrelay.exceptions import ConfigurationException

from types_aiobotocore_s3 import S3Client

logger = logging.getLogger("ghrelay")


class CacheBackendType:
    NONE = "none"
    S3 = "s3"


# Only a handful of headers fit inside the 2KB S3 user metadata limit.
CACHED_HEADERS = (
    "content-type",
    "content-encoding",
    "etag",
    "last-modified",
    "cache-control",
)


def cache_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class ResponseCache(typing.Protocol):
    async def put(self, snapshot: CachedResponse) -> None:
        ...


class NullResponseCache:
    async def put(self, snapshot: CachedResponse) -> None:
        return None


class S3ResponseCache:
    def __init__(self, config: ConfigManager):
        self.config = config
        self.bucket = config.CACHE_S3_BUCKET
        self.prefix = config.CACHE_S3_PREFIX
        if not self.bucket:
            raise ConfigurationException("CACHE_S3_BUCKET is required for the s3 cache backend.")

    async def put(self, snapshot: CachedResponse) -> None:
        headers = {k: v for k, v in snapshot.headers.items() if k in CACHED_HEADERS}
        session = get_session()
        async with session.create_client("s3") as client:
            client: S3Client

            await client.put_object(
                Bucket=self.bucket,
                Key=self.prefix + snapshot.key,
                Body=snapshot.body,
                ContentType=headers.get("content-type", "application/octet-stream"),
                Metadata={
                    "status-code": str(snapshot.status_code),
                    "request-url": snapshot.url,
                    "headers": json.dumps(headers),
                },
            )


def build_response_cache(config: ConfigManager) -> ResponseCache:
    backend = config.CACHE_BACKEND
    if backend == CacheBackendType.NONE:
        return NullResponseCache()
    elif backend == CacheBackendType.S3:
        return S3ResponseCache(config)
    raise ConfigurationException("Invalid cache backend option: " + backend)


class SnapshotRecorder:
    """Copies a streamed body as it goes out, up to ``max_bytes``."""

    def __init__(self, url: str, status_code: int, headers: typing.Mapping[str, str], max_bytes: int):
        self.url = url
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in headers.items()}
        self.max_bytes = max_bytes
        self.complete = False
        self.overflowed = False
        self._chunks: typing.List[bytes] = []
        self._size = 0

    def feed(self, chunk: bytes):
        if self.overflowed:
            return
        self._size += len(chunk)
        if self._size > self.max_bytes:
            self.overflowed = True
            self._chunks.clear()
            return
        self._chunks.append(chunk)

    def finish(self):
        self.complete = True

    def snapshot(self) -> CachedResponse | None:
        if not self.complete or self.overflowed:
            return None
        return CachedResponse(
            key=cache_key(self.url),
            url=self.url,
            status_code=self.status_code,
            headers=self.headers,
            body=b"".join(self._chunks),
        )


class CacheWriter:
    """Runs cache writes as detached tasks.

    A failed write is logged and dropped; it never reaches the response.
    """

    def __init__(self, cache: ResponseCache):
        self.cache = cache
        self._pending: typing.Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return not isinstance(self.cache, NullResponseCache)

    def schedule(self, snapshot: CachedResponse, correlation_id: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._write(snapshot, correlation_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, snapshot: CachedResponse, correlation_id: str | None):
        try:
            await self.cache.put(snapshot)
        except Exception as e:
            logger.warning(
                "Response cache write failed",
                exc_info=True,
                extra={
                    "correlation_id": correlation_id,
                    "url": snapshot.url,
                    "exception": str(e),
                },
            )
            return
        logger.debug(
            "Response cached",
            extra={"correlation_id": correlation_id, "url": snapshot.url, "cache_key": snapshot.key},
        )

    async def drain(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
