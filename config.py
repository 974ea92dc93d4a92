import os

from dotenv import load_dotenv

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class Config:
    """Runtime settings, read from the environment (and an optional .env)."""

    def __init__(self, **overrides):
        self.host = os.environ.get("HOST", "0.0.0.0")
        self.port = int(os.environ.get("PORT", 10000))
        self.upstream_timeout = float(os.environ.get("UPSTREAM_TIMEOUT", 15))
        self.user_agent = os.environ.get("USER_AGENT", DEFAULT_USER_AGENT)
        self.public_base_url = os.environ.get("PUBLIC_BASE_URL") or None
        self.channels_file = os.environ.get("CHANNELS_FILE") or None
        self.manifest_cache_ttl = float(os.environ.get("MANIFEST_CACHE_TTL", 0))
        self.manifest_cache_size = int(os.environ.get("MANIFEST_CACHE_SIZE", 100))
        self.diag_preview_chars = int(os.environ.get("DIAG_PREVIEW_CHARS", 500))
        self.log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)


def load_config(**overrides):
    load_dotenv()
    return Config(**overrides)
