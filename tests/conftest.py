import httpx
import pytest

from ghrelay.config import ConfigManager
from ghrelay.matching import UrlMatcher
from ghrelay.policy import default_policy


@pytest.fixture
def config():
    config = ConfigManager()
    config.ASSET_URL = "https://assets.example.com/"
    config.PROXY_PREFIX = "/"
    config.POLICY_PATH = None
    config.PROXY_CLIENT_TIMEOUT_SECS = 5
    config.PROXY_MAX_REDIRECTS = 10
    config.CACHE_BACKEND = "none"
    config.CACHE_MAX_BYTES = 1024
    config.CACHE_METHODS = ("GET",)
    return config


@pytest.fixture
def matcher():
    return UrlMatcher(default_policy())


@pytest.fixture
def anyio_backend():
    return 'asyncio'


def upstream_response(status_code, headers=None, body=b""):
    # content= would read the body up front, and the relay streams it with aiter_raw()
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))
