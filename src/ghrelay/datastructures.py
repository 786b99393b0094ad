import typing
from dataclasses import dataclass

import httpx
from starlette.datastructures import MutableHeaders


@dataclass
class ProxyRequest:
    method: str
    headers: MutableHeaders
    content: bytes


@dataclass
class ProxyResponse:
    url: httpx.URL
    status_code: int
    headers: MutableHeaders
    upstream: httpx.Response

    async def aiter_body(self) -> typing.AsyncIterator[bytes]:
        async for chunk in self.upstream.aiter_raw():
            yield chunk

    async def aclose(self):
        await self.upstream.aclose()


@dataclass
class CanonicalRedirect:
    location: str


@dataclass
class ExtractedPath:
    # remainder after the mount point, scheme repaired but not forced
    path: str
    # what the classifier and the engine see
    target: str


@dataclass
class CachedResponse:
    key: str
    url: str
    status_code: int
    headers: typing.Dict[str, str]
    body: bytes
