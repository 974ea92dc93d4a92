import logging
import threading
import time
import urllib.parse

import requests
from cachetools import TTLCache
from flask import Response, stream_with_context

from errors import UpstreamError

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = "application/vnd.apple.mpegurl,application/x-mpegurl,*/*;q=0.8"
GENERIC_ACCEPT = "*/*"
CHUNK_SIZE = 65536


def spoofed_headers(url, user_agent, accept=GENERIC_ACCEPT):
    parsed = urllib.parse.urlsplit(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return {
        "User-Agent": user_agent,
        "Accept": accept,
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": origin + "/",
        "Origin": origin,
    }


class ManifestCache:
    """Short-lived per-URL cache of fetched manifests; ttl <= 0 disables it."""

    def __init__(self, ttl, maxsize=100, timer=time.monotonic):
        self.ttl = ttl
        self._entries = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer) if ttl > 0 else None
        self._lock = threading.Lock()

    def __len__(self):
        if self._entries is None:
            return 0
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def get(self, url):
        if self._entries is None:
            return None
        with self._lock:
            return self._entries.get(url)

    def put(self, url, value):
        if self._entries is None:
            return
        with self._lock:
            self._entries[url] = value


class Upstream:
    """Outbound HTTP towards the channel sources, with browser-like headers."""

    def __init__(self, config):
        self.timeout = config.upstream_timeout
        self.user_agent = config.user_agent
        self.cache = ManifestCache(config.manifest_cache_ttl, maxsize=config.manifest_cache_size)

    def open(self, url, accept=GENERIC_ACCEPT, stream=True):
        """Issue the GET and return the raw response, whatever its status."""
        try:
            return requests.get(
                url,
                headers=spoofed_headers(url, self.user_agent, accept),
                timeout=self.timeout,
                allow_redirects=True,
                stream=stream,
            )
        except requests.RequestException as e:
            logger.error("Error fetching %s: %s", url, e)
            raise UpstreamError(f"Upstream request failed: {e}") from e

    def fetch_manifest(self, url):
        """Return ``(final_url, text)`` for a playlist, following redirects."""
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        r = self.open(url, accept=MANIFEST_ACCEPT, stream=False)
        if not r.ok:
            logger.warning("Upstream %s answered %s", url, r.status_code)
            raise UpstreamError(
                f"Upstream answered {r.status_code} for {url}", status=r.status_code
            )

        result = (r.url or url, r.text)
        self.cache.put(url, result)
        return result

    def relay_segment(self, url):
        """Stream a segment or key back to the client unchanged."""
        r = self.open(url)

        def generate():
            try:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        yield chunk
            finally:
                # Runs on client disconnect too, dropping the upstream connection
                r.close()

        return Response(
            stream_with_context(generate()),
            status=r.status_code,
            headers={
                "Content-Type": r.headers.get("Content-Type", "application/octet-stream"),
                "Cache-Control": "no-store",
                "Access-Control-Allow-Origin": "*",
            },
        )

    def diagnose(self, url, preview_chars):
        """Report status, final url, content type and a bounded body prefix."""
        r = self.open(url, accept=MANIFEST_ACCEPT)
        try:
            head = b""
            # Live TS sources never end, so stop once the preview is filled
            for chunk in r.iter_content(chunk_size=preview_chars or 1):
                head += chunk
                if len(head) >= preview_chars:
                    break
            preview = head[:preview_chars].decode(r.encoding or "utf-8", errors="replace")
        finally:
            r.close()

        lines = [
            f"status: {r.status_code}",
            f"url: {r.url or url}",
            f"content-type: {r.headers.get('Content-Type', '')}",
            "",
            preview,
        ]
        return "\n".join(lines)
