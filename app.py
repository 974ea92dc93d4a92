import logging

from flask import Flask, Response, jsonify, request

from channels import ChannelRegistry, read_seed_file
from config import load_config
from errors import RepeaterError, RewriteError, ValidationError
from playlist import playlist_link, rewrite_m3u8
from proxy import Upstream

logger = logging.getLogger(__name__)

MPEGURL = "application/vnd.apple.mpegurl"

USAGE = """HLS repeater running

GET  /add?m3u8=<url>[&name=<name>]   register channels (repeatable)
POST /add_json {"items": [{"m3u8": "<url>", "name": "<name>"}]}
GET  /list
GET  /update?name=<name>&m3u8=<url>
GET  /rename?old=<name>&next=<name>
GET  /remove?name=<name>
GET  /diag/<name>
GET  /hls/<name>.m3u8
"""


def configure_logging(level):
    logging.basicConfig(level=level,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def _required(name):
    value = (request.args.get(name) or "").strip()
    if not value:
        raise ValidationError(f"Missing parameter: {name}")
    return value


def _text(body, status=200):
    return Response(body, status=status, mimetype="text/plain")


def _preflight():
    return Response(headers={
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "*",
        "Access-Control-Max-Age": "86400",
    })


def create_app(config=None, registry=None):
    config = config or load_config()
    configure_logging(config.log_level)

    if registry is None:
        registry = ChannelRegistry()
        if config.channels_file:
            names = registry.load(read_seed_file(config.channels_file))
            logger.info("Loaded %d channels from %s", len(names), config.channels_file)

    upstream = Upstream(config)

    app = Flask(__name__)
    app.config["REPEATER"] = config
    app.extensions["channels"] = registry
    app.extensions["upstream"] = upstream

    def origin():
        if config.public_base_url:
            return config.public_base_url.rstrip("/")
        return request.host_url.rstrip("/")

    @app.errorhandler(RepeaterError)
    def handle_repeater_error(e):
        logger.warning("%s %s failed: %s", request.method, request.path, e)
        return _text(str(e), e.status_code)

    @app.after_request
    def access_log(response):
        logger.info("%s %s %s", request.method, request.full_path.rstrip("?"),
                    response.status_code)
        return response

    # ---------------- REGISTRY ROUTES ---------------- #

    @app.route("/")
    def home():
        return _text(USAGE)

    @app.route("/add")
    def add():
        sources = [s.strip() for s in request.args.getlist("m3u8") if s.strip()]
        if not sources:
            raise ValidationError("Missing parameter: m3u8")
        names = request.args.getlist("name")

        links = []
        for i, source in enumerate(sources):
            name = names[i].strip() if i < len(names) else None
            assigned = registry.add(name, source)
            links.append(playlist_link(origin(), assigned))
        return _text("\n".join(links) + "\n")

    @app.route("/add_json", methods=["POST"])
    def add_json():
        payload = request.get_json(silent=True)
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list) or not items:
            raise ValidationError("Body must be {\"items\": [{\"m3u8\": ..., \"name\": ...}]}")

        entries = []
        for item in items:
            source = item.get("m3u8") if isinstance(item, dict) else None
            if not isinstance(source, str) or not source.strip():
                raise ValidationError("Every item needs an m3u8 url")
            entries.append((item.get("name"), source.strip()))

        links = [playlist_link(origin(), name) for name in registry.load(entries)]
        return jsonify({"ok": True, "links": links})

    @app.route("/list")
    def list_channels():
        return jsonify([
            {"name": ch.name, "src": ch.source, "url": playlist_link(origin(), ch.name)}
            for ch in registry.list()
        ])

    @app.route("/update")
    def update():
        name = _required("name")
        source = _required("m3u8")
        registry.update(name, source)
        return _text(f"Updated {name} -> {source}\n")

    @app.route("/rename")
    def rename():
        old = _required("old")
        new = _required("next")
        assigned = registry.rename(old, new)
        return _text(f"Renamed {old} -> {assigned}\n{playlist_link(origin(), assigned)}\n")

    @app.route("/remove")
    def remove():
        name = _required("name")
        if registry.remove(name):
            return _text(f"Removed {name}\n")
        return _text(f"Channel {name} did not exist\n")

    @app.route("/diag/<name>")
    def diag(name):
        channel = registry.get(name)
        return _text(upstream.diagnose(channel.source, config.diag_preview_chars))

    # ---------------- STREAM ROUTES ---------------- #

    @app.route("/hls/<name>.m3u8", methods=["GET", "OPTIONS"])
    def playlist(name):
        if request.method == "OPTIONS":
            return _preflight()
        channel = registry.get(name)
        target = request.args.get("u") or channel.source

        final_url, content = upstream.fetch_manifest(target)
        try:
            rewritten = rewrite_m3u8(content, final_url, channel.name, origin())
        except Exception as e:
            logger.exception("Rewriting %s for %s failed", final_url, channel.name)
            raise RewriteError(f"Could not rewrite playlist: {e}") from e

        return Response(rewritten, mimetype=MPEGURL, headers={
            "Cache-Control": "no-store",
            "Access-Control-Allow-Origin": "*",
        })

    @app.route("/seg/<name>", methods=["GET", "OPTIONS"])
    def segment(name):
        if request.method == "OPTIONS":
            return _preflight()
        channel = registry.get(name)
        url = request.args.get("u")
        if not url:
            raise ValidationError("Missing parameter: u")
        logger.debug("Relaying %s for %s", url, channel.name)
        return upstream.relay_segment(url)

    return app


if __name__ == "__main__":
    app = create_app()
    settings = app.config["REPEATER"]
    app.run(host=settings.host, port=settings.port, threaded=True)
