import json
import logging
import re
import threading
import unicodedata
from collections import namedtuple

from errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_NAME = "canal"

Channel = namedtuple("Channel", ["name", "source"])

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(raw):
    """Normalize arbitrary text into a lowercase ``[a-z0-9-]`` identifier."""
    text = unicodedata.normalize("NFKD", str(raw or ""))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = _NON_ALNUM.sub("-", text).strip("-")
    return text or DEFAULT_NAME


def unique_name(base, taken):
    """Return ``slugify(base)``, suffixed with -2, -3, ... until unused."""
    slug = slugify(base)
    if slug not in taken:
        return slug

    n = 2
    while f"{slug}-{n}" in taken:
        n += 1
    return f"{slug}-{n}"


class ChannelRegistry:
    """In-memory name -> upstream source mapping shared by request threads."""

    def __init__(self):
        self._channels = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._channels)

    def __contains__(self, name):
        with self._lock:
            return name in self._channels

    def add(self, name, source):
        with self._lock:
            assigned = unique_name(name or DEFAULT_NAME, self._channels)
            self._channels[assigned] = Channel(assigned, source)
        logger.info("Added channel %s -> %s", assigned, source)
        return assigned

    def load(self, entries):
        """Bulk add of ``(name, source)`` pairs; returns the assigned names."""
        return [self.add(name, source) for name, source in entries]

    def get(self, name):
        with self._lock:
            channel = self._channels.get(name)
        if channel is None:
            raise NotFoundError(name)
        return channel

    def update(self, name, source):
        with self._lock:
            if name not in self._channels:
                raise NotFoundError(name)
            self._channels[name] = Channel(name, source)
        logger.info("Updated channel %s -> %s", name, source)

    def rename(self, old, new):
        with self._lock:
            channel = self._channels.get(old)
            if channel is None:
                raise NotFoundError(old)
            if slugify(new) == old:
                return old

            others = {key for key in self._channels if key != old}
            assigned = unique_name(new, others)

            # Rebuild to keep registration order with the entry in its old slot
            self._channels = {
                (assigned if key == old else key): (
                    Channel(assigned, value.source) if key == old else value
                )
                for key, value in self._channels.items()
            }
        logger.info("Renamed channel %s -> %s", old, assigned)
        return assigned

    def remove(self, name):
        with self._lock:
            existed = self._channels.pop(name, None) is not None
        if existed:
            logger.info("Removed channel %s", name)
        return existed

    def list(self):
        with self._lock:
            return list(self._channels.values())


def read_seed_file(path):
    """
    Read ``(name, source)`` pairs from a JSON channels file.

    Accepts ``{"name": "url"}``, ``{"name": {"url": "..."}}`` or the
    ``/add_json`` body shape ``{"items": [{"m3u8": "...", "name": "..."}]}``.
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return [(item.get("name"), item["m3u8"]) for item in data["items"]]

    entries = []
    for name, value in data.items():
        if isinstance(value, dict):
            value = value.get("url") or value.get("m3u8")
        entries.append((name, value))
    return entries
