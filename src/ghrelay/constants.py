PROXY_ERROR_HEADER = "x-ghrelay-error"

ALLOW_METHODS = "GET,POST,PUT,PATCH,TRACE,DELETE,HEAD,OPTIONS"
PREFLIGHT_MAX_AGE = "1728000"

# Stripped from upstream responses so the proxied content stays usable cross-origin.
SECURITY_RESPONSE_HEADERS = (
    "content-security-policy",
    "content-security-policy-report-only",
    "clear-site-data",
)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

STRIP_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}
