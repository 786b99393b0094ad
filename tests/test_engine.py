import httpx
import pytest
from starlette.datastructures import MutableHeaders

from conftest import upstream_response
from ghrelay.datastructures import ProxyRequest
from ghrelay.engine import ProxyEngine
from ghrelay.exceptions import TooManyRedirectsException, UpstreamUnreachableException


RELEASE_URL = "https://github.com/a/b/releases/download/v1/app.tar.gz"
CDN_URL = "https://objects.cdn.example.net/app.tar.gz?sig=abc"


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_request(method="GET", headers=None, body=b""):
    return ProxyRequest(method=method, headers=MutableHeaders(headers or {}), content=body)


async def read_body(proxy_response):
    return b"".join([chunk async for chunk in proxy_response.aiter_body()])


@pytest.mark.anyio
async def test_response_headers_rewritten(matcher):
    def handler(request):
        return upstream_response(
            200,
            headers={
                "content-type": "application/octet-stream",
                "content-security-policy": "default-src 'none'",
                "content-security-policy-report-only": "default-src 'none'",
                "clear-site-data": '"*"',
                "connection": "keep-alive",
            },
            body=b"payload",
        )

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        response = await engine.forward(client, httpx.URL(RELEASE_URL), make_request())
        body = await read_body(response)

    assert response.status_code == 200
    assert body == b"payload"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-expose-headers"] == "*"
    assert response.headers["content-type"] == "application/octet-stream"
    for name in ("content-security-policy", "content-security-policy-report-only", "clear-site-data", "connection"):
        assert name not in response.headers


@pytest.mark.anyio
async def test_allowed_redirect_rewritten_for_client(matcher):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return upstream_response(302, headers={"location": "https://github.com/a/b/archive/refs/tags/v1.zip"})

    engine = ProxyEngine(matcher, prefix="/")
    async with make_client(handler) as client:
        response = await engine.forward(client, httpx.URL("https://github.com/a/b/archive/v1.zip"), make_request())

    assert requested == ["https://github.com/a/b/archive/v1.zip"]
    assert response.status_code == 302
    assert response.headers["location"] == "/https://github.com/a/b/archive/refs/tags/v1.zip"
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.anyio
async def test_relative_redirect_resolved_before_classifying(matcher):
    def handler(request):
        return upstream_response(301, headers={"location": "/a/b/releases/tag/v2"})

    engine = ProxyEngine(matcher, prefix="/gh/")
    async with make_client(handler) as client:
        response = await engine.forward(client, httpx.URL("https://github.com/a/b/releases/latest"), make_request())

    assert response.headers["location"] == "/gh/https://github.com/a/b/releases/tag/v2"


@pytest.mark.anyio
async def test_foreign_redirect_followed_server_side(matcher):
    def handler(request):
        if request.url.host == "github.com":
            return upstream_response(302, headers={"location": CDN_URL})
        return upstream_response(200, headers={"content-security-policy": "sandbox"}, body=b"archive")

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        response = await engine.forward(client, httpx.URL(RELEASE_URL), make_request())
        body = await read_body(response)

    assert response.status_code == 200
    assert str(response.url) == CDN_URL
    assert body == b"archive"
    assert "location" not in response.headers
    assert "content-security-policy" not in response.headers


@pytest.mark.anyio
async def test_chain_allowed_foreign_allowed(matcher):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        if request.url.host == "github.com":
            return upstream_response(302, headers={"location": CDN_URL})
        return upstream_response(302, headers={"location": "https://raw.githubusercontent.com/a/b/main/app.tar.gz"})

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        response = await engine.forward(client, httpx.URL(RELEASE_URL), make_request())

    assert requested == [RELEASE_URL, CDN_URL]
    assert response.status_code == 302
    assert response.headers["location"] == "/https://raw.githubusercontent.com/a/b/main/app.tar.gz"


@pytest.mark.anyio
async def test_redirect_bound(matcher):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        n = len(requested)
        return upstream_response(302, headers={"location": f"https://loop.example.net/{n}"})

    engine = ProxyEngine(matcher, max_redirects=3)
    async with make_client(handler) as client:
        with pytest.raises(TooManyRedirectsException):
            await engine.forward(client, httpx.URL(RELEASE_URL), make_request())

    assert len(requested) == 4


@pytest.mark.anyio
async def test_too_many_redirects_is_upstream_failure(matcher):
    def handler(request):
        return upstream_response(307, headers={"location": "https://loop.example.net/"})

    engine = ProxyEngine(matcher, max_redirects=0)
    async with make_client(handler) as client:
        with pytest.raises(UpstreamUnreachableException):
            await engine.forward(client, httpx.URL(RELEASE_URL), make_request())


@pytest.mark.anyio
async def test_transport_failure(matcher):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        with pytest.raises(UpstreamUnreachableException) as exc_info:
            await engine.forward(client, httpx.URL(RELEASE_URL), make_request())

    assert "connection refused" in str(exc_info.value)


@pytest.mark.anyio
async def test_request_forwarded_with_method_headers_and_body(matcher):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = request.content
        seen["accept"] = request.headers.get("accept")
        return upstream_response(200, body=b"ok")

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        await engine.forward(
            client,
            httpx.URL("https://github.com/a/b/git-upload-pack"),
            make_request("POST", {"accept": "application/x-git-upload-pack-result"}, b"0032want"),
        )

    assert seen == {
        "method": "POST",
        "body": b"0032want",
        "accept": "application/x-git-upload-pack-result",
    }


@pytest.mark.anyio
async def test_see_other_switches_to_get(matcher):
    seen = []

    def handler(request):
        seen.append((request.method, request.content, request.headers.get("content-type")))
        if request.url.host == "github.com":
            return upstream_response(303, headers={"location": CDN_URL})
        return upstream_response(200, body=b"done")

    engine = ProxyEngine(matcher)
    async with make_client(handler) as client:
        await engine.forward(
            client,
            httpx.URL("https://github.com/a/b/git-upload-pack"),
            make_request("POST", {"content-type": "application/x-git-upload-pack-request"}, b"data"),
        )

    assert seen == [
        ("POST", b"data", "application/x-git-upload-pack-request"),
        ("GET", b"", None),
    ]


@pytest.mark.anyio
async def test_authorization_dropped_when_leaving_origin(matcher):
    seen = []

    def handler(request):
        seen.append((request.url.host, request.headers.get("authorization")))
        if request.url.host == "github.com":
            return upstream_response(302, headers={"location": CDN_URL})
        return upstream_response(200)

    engine = ProxyEngine(matcher)
    request = make_request(headers={"authorization": "token secret"})
    async with make_client(handler) as client:
        await engine.forward(client, httpx.URL(RELEASE_URL), request)

    assert seen == [("github.com", "token secret"), ("objects.cdn.example.net", None)]
    assert request.headers["authorization"] == "token secret"
