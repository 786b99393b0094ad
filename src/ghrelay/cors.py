from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from ghrelay.constants import ALLOW_METHODS, PREFLIGHT_MAX_AGE, SECURITY_RESPONSE_HEADERS


def is_preflight(request: Request) -> bool:
    return request.method == "OPTIONS" and "access-control-request-headers" in request.headers


def preflight_response() -> Response:
    return Response(
        status_code=204,
        headers={
            "access-control-allow-origin": "*",
            "access-control-allow-methods": ALLOW_METHODS,
            "access-control-max-age": PREFLIGHT_MAX_AGE,
        },
    )


def make_response(body: str, status_code: int = 200, headers: dict | None = None) -> Response:
    headers = dict(headers or {})
    headers["access-control-allow-origin"] = "*"
    return PlainTextResponse(body, status_code=status_code, headers=headers)


def apply_proxy_headers(headers: MutableHeaders) -> MutableHeaders:
    headers["access-control-expose-headers"] = "*"
    headers["access-control-allow-origin"] = "*"
    for name in SECURITY_RESPONSE_HEADERS:
        del headers[name]
    return headers
