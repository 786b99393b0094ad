import contextlib
import functools
import json
import logging
import time
import typing
import uuid

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.background import BackgroundTask
from starlette.datastructures import MutableHeaders
from starlette.responses import StreamingResponse

from ghrelay.cache import CacheWriter, ResponseCache, SnapshotRecorder, build_response_cache
from ghrelay.config import ConfigManager
from ghrelay.constants import PROXY_ERROR_HEADER, STRIP_REQUEST_HEADERS
from ghrelay.cors import is_preflight, make_response, preflight_response
from ghrelay.datastructures import CanonicalRedirect, ProxyRequest, ProxyResponse
from ghrelay.engine import ProxyEngine, copy_response_headers
from ghrelay.exceptions import (
    ForbiddenException,
    GhRelayException,
    NotAllowedException,
    UpstreamUnreachableException,
)
from ghrelay.extraction import extract_target, parse_upstream_url, raw_request_url
from ghrelay.logging import setup_logging
from ghrelay.matching import UrlMatcher
from ghrelay.policy import default_policy, load_policy
from ghrelay.version import VERSION


ROUTE_METHODS = ["GET", "POST", "PUT", "DELETE", "HEAD", "OPTIONS", "PATCH"]


setup_logging()

logger = logging.getLogger("ghrelay")


def relay_route():
    def wrapper(func):
        @functools.wraps(func)
        async def wrapped(*args, **kwargs):
            request: Request = kwargs.get('request') or args[-1]
            correlation_id = str(uuid.uuid4())
            request.state.correlation_id = correlation_id
            logger.info(
                "Incoming ghrelay request",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "url": str(request.url),
                    "client_host": request.client.host if request.client else "unknown",
                }
            )
            start_time = time.time()

            try:
                response = await func(*args, **kwargs)
                elapsed_time = time.time() - start_time
                logger.info(
                    "Ghrelay request processed successfully",
                    extra={
                        "correlation_id": correlation_id,
                        "status_code": response.status_code,
                        "content_type": response.headers.get("Content-Type", "unknown"),
                        "elapsed_time": f"{elapsed_time:.3f}s",
                    }
                )
                return response
            except GhRelayException as ge:
                elapsed_time = time.time() - start_time
                log = logger.error if ge.status_code >= 500 else logger.warning
                log(
                    "GhRelayException encountered",
                    exc_info=ge.status_code >= 500,
                    extra={
                        "correlation_id": correlation_id,
                        "exception": str(ge),
                        "status_code": ge.status_code,
                        "elapsed_time": f"{elapsed_time:.3f}s",
                    }
                )
                return make_response(
                    ge.public_message,
                    ge.status_code,
                    headers={PROXY_ERROR_HEADER: "proxy"},
                )
            except Exception as exc:
                elapsed_time = time.time() - start_time
                logger.error(
                    "Unexpected error occurred",
                    exc_info=True,
                    extra={
                        "correlation_id": correlation_id,
                        "exception": str(exc),
                        "elapsed_time": f"{elapsed_time:.3f}s",
                    }
                )
                return make_response(
                    GhRelayException.public_message,
                    500,
                    headers={PROXY_ERROR_HEADER: "proxy"},
                )
        return wrapped
    return wrapper


class GhRelay:
    def __init__(
        self,
        policy_path: str | None = None,
        config: ConfigManager | None = None,
        cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or ConfigManager()
        policy_path = policy_path or self.config.POLICY_PATH
        self.policy = load_policy(policy_path) if policy_path else default_policy()
        self.cache_writer = CacheWriter(cache if cache is not None else build_response_cache(self.config))
        self.transport = transport

        logger.info("Ghrelay policy loaded", extra={"policy": json.dumps(self.policy.model_dump())})

    @property
    def policy(self):
        return self._policy

    @policy.setter
    def policy(self, value):
        self._policy = value
        self._matcher = UrlMatcher(self._policy)

    @property
    def matcher(self):
        return self._matcher

    @property
    def prefix(self) -> str:
        return self.config.PROXY_PREFIX

    def _engine(self) -> ProxyEngine:
        return ProxyEngine(
            self.matcher, prefix=self.prefix, max_redirects=self.config.PROXY_MAX_REDIRECTS,
        )

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.PROXY_CLIENT_TIMEOUT_SECS, transport=self.transport, **kwargs,
        )

    @relay_route()
    async def _meta_route(self, request: Request):
        return JSONResponse(
            content={
                "version": VERSION,
                "policy": self.policy.model_dump(),
            },
            status_code=200,
        )

    @relay_route()
    async def _proxy_route(self, request: Request):
        return await self.handle(request)

    async def handle(self, request: Request):
        if is_preflight(request):
            return preflight_response()

        extracted = extract_target(
            raw_request_url(request.scope, request.url), self.prefix, self.matcher,
        )
        if isinstance(extracted, CanonicalRedirect):
            return RedirectResponse(
                extracted.location,
                status_code=301,
                headers={"access-control-allow-origin": "*"},
            )

        if self.matcher.matches(extracted.target):
            if not self.matcher.allows(extracted.path):
                raise ForbiddenException(f"Path {extracted.path!r} is not whitelisted.")
            target = parse_upstream_url(extracted.target)
            return await self._proxy(request, target)

        if not self.config.ASSET_URL:
            raise NotAllowedException(f"Path {extracted.path!r} matches no url pattern.")
        return await self._fetch_asset(request, self.config.ASSET_URL + extracted.path)

    async def _read_request(self, request: Request) -> ProxyRequest:
        headers = MutableHeaders(
            raw=[
                (k, v)
                for k, v in request.headers.raw
                if k.decode("latin-1").lower() not in STRIP_REQUEST_HEADERS
            ],
        )
        return ProxyRequest(method=request.method, headers=headers, content=await request.body())

    async def _proxy(self, request: Request, target: httpx.URL):
        correlation_id = request.state.correlation_id
        proxy_request = await self._read_request(request)

        client = self._client()
        try:
            proxy_response = await self._engine().forward(
                client, target, proxy_request, correlation_id=correlation_id,
            )
        except BaseException:
            await client.aclose()
            raise

        recorder = None
        if (
            self.cache_writer.enabled
            and request.method in self.config.CACHE_METHODS
            and proxy_response.status_code == 200
        ):
            recorder = SnapshotRecorder(
                url=str(request.url),
                status_code=proxy_response.status_code,
                headers=proxy_response.headers,
                max_bytes=self.config.CACHE_MAX_BYTES,
            )

        return StreamingResponse(
            self._stream(client, proxy_response, recorder),
            status_code=proxy_response.status_code,
            headers=proxy_response.headers,
            background=BackgroundTask(
                self._finish, client, proxy_response, recorder, correlation_id,
            ),
        )

    async def _stream(
        self,
        client: httpx.AsyncClient,
        proxy_response: ProxyResponse,
        recorder: SnapshotRecorder | None,
    ) -> typing.AsyncIterator[bytes]:
        try:
            async for chunk in proxy_response.aiter_body():
                if recorder is not None:
                    recorder.feed(chunk)
                yield chunk
            if recorder is not None:
                recorder.finish()
        finally:
            await proxy_response.aclose()
            await client.aclose()

    async def _finish(
        self,
        client: httpx.AsyncClient,
        proxy_response: ProxyResponse,
        recorder: SnapshotRecorder | None,
        correlation_id: str,
    ):
        # no-op when the body was streamed; covers a stream that never started
        await proxy_response.aclose()
        await client.aclose()
        if recorder is None:
            return
        snapshot = recorder.snapshot()
        if snapshot is not None:
            self.cache_writer.schedule(snapshot, correlation_id=correlation_id)

    async def _fetch_asset(self, request: Request, url: str):
        proxy_request = await self._read_request(request)
        client = self._client(follow_redirects=True)
        try:
            upstream_request = client.build_request(
                proxy_request.method,
                url,
                headers=proxy_request.headers,
                content=proxy_request.content or None,
            )
            response = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            raise UpstreamUnreachableException(f"Error requesting static asset {url}: {e!s}") from e
        except BaseException:
            await client.aclose()
            raise

        async def stream():
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            finally:
                await close()

        async def close():
            await response.aclose()
            await client.aclose()

        return StreamingResponse(
            stream(),
            status_code=response.status_code,
            headers=copy_response_headers(response),
            background=BackgroundTask(close),
        )

    @contextlib.asynccontextmanager
    async def lifespan(self, app: FastAPI):
        yield
        await self.cache_writer.drain()

    def to_fastapi(self, app: FastAPI):
        app.api_route("/_ghrelay/meta", methods=["GET"])(self._meta_route)
        app.api_route(
            self.prefix.rstrip("/") + "/{path:path}",
            methods=ROUTE_METHODS,
        )(self._proxy_route)
