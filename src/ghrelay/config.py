import os


def _split_env(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


class ConfigManager:
    ASSET_URL: str = os.environ.get("ASSET_URL", "https://page.638866.xyz/")
    PROXY_PREFIX: str = os.environ.get("PROXY_PREFIX", "/")
    POLICY_PATH: str | None = os.environ.get("POLICY_PATH") or None

    PROXY_CLIENT_TIMEOUT_SECS: float = float(os.environ.get("PROXY_CLIENT_TIMEOUT_SECS", 60))
    PROXY_MAX_REDIRECTS: int = int(os.environ.get("PROXY_MAX_REDIRECTS", 10))

    CACHE_BACKEND: str = os.environ.get("CACHE_BACKEND", "none")
    CACHE_S3_BUCKET: str = os.environ.get("CACHE_S3_BUCKET", "")
    CACHE_S3_PREFIX: str = os.environ.get("CACHE_S3_PREFIX", "ghrelay/")
    CACHE_MAX_BYTES: int = int(os.environ.get("CACHE_MAX_BYTES", 10 * 1024 * 1024))
    CACHE_METHODS: tuple[str, ...] = _split_env(os.environ.get("CACHE_METHODS", "GET"))

    def get(self, key, default=None):
        return os.environ.get(key, default=default)
