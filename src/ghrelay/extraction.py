import re
import typing
from urllib.parse import quote

import httpx
from starlette.datastructures import URL, QueryParams

from ghrelay.datastructures import CanonicalRedirect, ExtractedPath
from ghrelay.exceptions import InvalidURLException
from ghrelay.matching import UrlMatcher


CANONICAL_QUERY_PARAM = "q"

# http:/x, https:///x, https//x, HTTP://x
_MALFORMED_SCHEME = re.compile(r"^https?:?/+", re.IGNORECASE)
_SCHEME_WITHOUT_SEPARATOR = re.compile(r"^(https?)(?=[^:/])", re.IGNORECASE)
_EXPLICIT_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def raw_request_url(scope: typing.Mapping[str, typing.Any], url: URL) -> str:
    """The inbound url with its path still percent-encoded.

    ``Request.url`` is built from the decoded ``scope["path"]``, which turns
    ``%23``, ``%3F`` and ``%2F`` into url syntax.
    """
    raw_path = scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(scope.get("root_path", "") + scope["path"], safe="/:@!$&'()*+,;=~")
    query = scope.get("query_string", b"").decode("latin-1")
    return f"{url.scheme}://{url.netloc}{path}" + (f"?{query}" if query else "")


def normalize_scheme(path: str, matcher: UrlMatcher | None = None) -> str:
    if _MALFORMED_SCHEME.match(path):
        return _MALFORMED_SCHEME.sub("https://", path, count=1)

    # "httpsraw.githubusercontent.com/..." is only repaired when the result is
    # something we would proxy, so hosts like httpbin.org stay untouched.
    m = _SCHEME_WITHOUT_SEPARATOR.match(path)
    if m is not None and matcher is not None:
        for scheme_len in (len(m.group(1)), 4):
            candidate = "https://" + path[scheme_len:]
            if matcher.matches(candidate):
                return candidate
    return path


def ensure_scheme(path: str) -> str:
    if _EXPLICIT_SCHEME.match(path):
        return path
    return "https://" + path


def extract_target(
    url: str, prefix: str, matcher: UrlMatcher | None = None,
) -> typing.Union[CanonicalRedirect, ExtractedPath]:
    request_url = URL(url)

    q = QueryParams(request_url.query).get(CANONICAL_QUERY_PARAM)
    if q:
        return CanonicalRedirect(
            location=f"{request_url.scheme}://{request_url.netloc}{prefix}{q}",
        )

    base = f"{request_url.scheme}://{request_url.netloc}{prefix}"
    full = str(request_url)
    if not full.startswith(base):
        raise InvalidURLException(f"Request url {full!r} is outside of mount point {prefix!r}.")

    path = normalize_scheme(full[len(base):], matcher)
    return ExtractedPath(path=path, target=ensure_scheme(path))


def parse_upstream_url(target: str) -> httpx.URL:
    try:
        url = httpx.URL(target)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidURLException(f"Unable to parse target url {target!r}: {e!s}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidURLException(f"Target url is not an absolute http(s) url: {target!r}")
    return url
