import re
import urllib.parse

KEY_TAG = "#EXT-X-KEY"
PLAYLIST_EXTENSION = ".m3u8"

_KEY_URI = re.compile(r'URI="([^"]*)"')


def resolve_url(base_url, ref):
    ref = ref.strip()
    if ref.startswith("//"):
        ref = "https:" + ref
    return urllib.parse.urljoin(base_url, ref)


def is_playlist_url(url):
    path = urllib.parse.urlsplit(url).path
    return path.lower().endswith(PLAYLIST_EXTENSION)


def playlist_link(origin, channel_key, absolute=None):
    link = f"{origin}/hls/{channel_key}{PLAYLIST_EXTENSION}"
    if absolute is not None:
        link += "?u=" + urllib.parse.quote(absolute, safe="")
    return link


def segment_link(origin, channel_key, absolute):
    return f"{origin}/seg/{channel_key}?u=" + urllib.parse.quote(absolute, safe="")


def _rewrite_line(line, base_url, channel_key, origin):
    if not line.strip():
        return line

    if line.startswith("#"):
        if not line.startswith(KEY_TAG):
            return line

        def replace_uri(match):
            absolute = resolve_url(base_url, match.group(1))
            return f'URI="{segment_link(origin, channel_key, absolute)}"'

        return _KEY_URI.sub(replace_uri, line, count=1)

    absolute = resolve_url(base_url, line)
    if is_playlist_url(absolute):
        return playlist_link(origin, channel_key, absolute)
    return segment_link(origin, channel_key, absolute)


def rewrite_m3u8(content, base_url, channel_key, origin):
    """
    Point every URI in an HLS playlist back at this service.

    Nested playlists go to ``/hls/<channel>.m3u8?u=...`` so variants are
    rewritten by the same endpoint; segments and keys go to
    ``/seg/<channel>?u=...``. Lines and their terminators are kept in order.
    """
    rewritten = []
    for raw in content.split("\n"):
        body = raw.rstrip("\r")
        ending = raw[len(body):]
        rewritten.append(_rewrite_line(body, base_url, channel_key, origin) + ending)
    return "\n".join(rewritten)
