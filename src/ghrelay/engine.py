import logging

import httpx
from starlette.datastructures import MutableHeaders

from ghrelay.constants import HOP_BY_HOP_HEADERS
from ghrelay.cors import apply_proxy_headers
from ghrelay.datastructures import ProxyRequest, ProxyResponse
from ghrelay.exceptions import TooManyRedirectsException, UpstreamUnreachableException
from ghrelay.matching import UrlMatcher


logger = logging.getLogger("ghrelay")


def copy_response_headers(response: httpx.Response) -> MutableHeaders:
    return MutableHeaders(
        raw=[
            (k.lower(), v)
            for k, v in response.headers.raw
            if k.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS
        ],
    )


class ProxyEngine:
    """Sends a request upstream and resolves its redirects.

    Redirects into the allow-list are handed back to the client with their
    ``Location`` rewritten under the mount point. Any other redirect is
    followed here, up to ``max_redirects`` hops, and every hop is classified
    again.
    """

    def __init__(self, matcher: UrlMatcher, prefix: str = "/", max_redirects: int = 10):
        self.matcher = matcher
        self.prefix = prefix
        self.max_redirects = max_redirects

    async def forward(
        self,
        client: httpx.AsyncClient,
        target: httpx.URL,
        request: ProxyRequest,
        correlation_id: str | None = None,
    ) -> ProxyResponse:
        url = target
        method = request.method
        headers = request.headers.mutablecopy()
        content = request.content
        hops = 0

        while True:
            upstream_request = client.build_request(
                method, url, headers=headers, content=content or None,
            )
            try:
                response = await client.send(upstream_request, stream=True, follow_redirects=False)
            except httpx.HTTPError as e:
                raise UpstreamUnreachableException(f"Error requesting {url}: {e!s}") from e

            location = response.headers.get("location")
            if location is None:
                return self._finalize(url, response)

            try:
                next_url = url.join(location)
            except httpx.InvalidURL as e:
                await response.aclose()
                raise UpstreamUnreachableException(f"Invalid redirect location {location!r}: {e!s}") from e

            if self.matcher.matches(str(next_url)):
                proxy_response = self._finalize(url, response)
                proxy_response.headers["location"] = self.prefix + str(next_url)
                return proxy_response

            if not response.is_redirect:
                return self._finalize(url, response)

            await response.aclose()
            hops += 1
            if hops > self.max_redirects:
                raise TooManyRedirectsException(
                    f"Exceeded {self.max_redirects} redirects while requesting {target}",
                )

            logger.info(
                "Following foreign redirect",
                extra={
                    "correlation_id": correlation_id,
                    "hop": hops,
                    "status_code": response.status_code,
                    "location": str(next_url),
                },
            )

            if (response.status_code == 303 and method != "HEAD") or (
                response.status_code in (301, 302) and method == "POST"
            ):
                method = "GET"
                content = b""
                del headers["content-type"]

            if next_url.host != target.host:
                del headers["authorization"]
                del headers["cookie"]

            url = next_url

    def _finalize(self, url: httpx.URL, response: httpx.Response) -> ProxyResponse:
        headers = apply_proxy_headers(copy_response_headers(response))
        return ProxyResponse(
            url=url,
            status_code=response.status_code,
            headers=headers,
            upstream=response,
        )
