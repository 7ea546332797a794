import logging
import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from flask import Flask, Response, current_app, jsonify, request
from werkzeug.exceptions import MethodNotAllowed, NotFound
from werkzeug.routing import PathConverter
import requests

FPL_BASE = "https://fantasy.premierleague.com/api"
ALLOWED_ORIGIN = "https://littlesheepdesign-max.github.io"


@dataclass(frozen=True)
class RelayConfig:
    port: int = 3000
    upstream_base: str = FPL_BASE
    allowed_origin: str = ALLOWED_ORIGIN
    upstream_timeout: float = 10.0

    @classmethod
    def from_env(cls):
        return cls(
            port=int(os.getenv("PORT", "3000")),
            upstream_base=os.getenv("FPL_BASE_URL", FPL_BASE).rstrip("/"),
            allowed_origin=os.getenv("ALLOWED_ORIGIN", ALLOWED_ORIGIN),
            upstream_timeout=float(os.getenv("UPSTREAM_TIMEOUT", "10")),
        )


class RelayError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, details=None):
        super().__init__(self.message)
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class UpstreamHTTPError(RelayError):
    message = "Failed to fetch data from FPL API"


class UpstreamNetworkError(RelayError):
    message = "Failed to fetch data"


class MissingParameterError(RelayError):
    status_code = 400
    message = "Gameweek (gw) parameter is required"


def fetch_upstream(url):
    """
    Fetch one FPL endpoint and return its JSON body as raw bytes.

    A non-2xx answer raises UpstreamHTTPError; connection failures,
    timeouts and bodies that are not JSON raise UpstreamNetworkError.
    """
    config = current_app.config["RELAY"]
    current_app.logger.debug("Fetching %s", url)
    try:
        upstream_response = requests.get(url, timeout=config.upstream_timeout)
        upstream_response.raise_for_status()
        upstream_response.json()
    except requests.HTTPError as e:
        current_app.logger.error(
            "Error from FPL API: %s %s URL: %s",
            e.response.status_code, e.response.reason, url,
        )
        raise UpstreamHTTPError() from e
    except requests.RequestException as e:
        current_app.logger.error("Error fetching data from FPL API: %s", e)
        raise UpstreamNetworkError(details=str(e)) from e
    return upstream_response.content


def proxy_fpl(path):
    base = current_app.config["RELAY"].upstream_base
    content = fetch_upstream(f"{base}/{path}")
    return Response(content, status=200, mimetype="application/json")


def preflight():
    origin = request.headers.get("Origin")
    if origin is None:
        return Response(status=204)

    resp = Response(status=204)
    resp.headers["Access-Control-Allow-Origin"] = current_app.config["RELAY"].allowed_origin
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = (
        request.headers.get("Access-Control-Request-Headers") or "Content-Type"
    )
    resp.headers["Access-Control-Max-Age"] = "86400"
    return resp


class RestOfPathConverter(PathConverter):
    """Like ``path`` but also matches empty and slash-led remainders."""

    regex = ".*"
    part_isolating = False


def live_gameweek(rest):
    """
    First non-empty segment after /api/live/. Taken from the undecoded
    request URI when the server provides one, so an escaped slash stays
    inside the segment.
    """
    raw = request.environ.get("RAW_URI") or request.environ.get("REQUEST_URI")
    if raw:
        prefix = request.script_root + "/api/live/"
        raw_path = urlsplit(raw).path
        if raw_path.startswith(prefix):
            rest = raw_path[len(prefix):]
    segments = [s for s in rest.split("/") if s]
    return segments[0] if segments else None


def create_app(config=None):
    config = config or RelayConfig.from_env()

    app = Flask(__name__)
    app.config["RELAY"] = config
    # Must be set before any rule is added; rules bind these at registration.
    app.url_map.merge_slashes = False
    app.url_map.converters["rest"] = RestOfPathConverter

    @app.before_request
    def guard():
        if request.method == "OPTIONS":
            return preflight()
        # Werkzeug answers HEAD on every GET rule; only GET reaches upstream.
        if request.method == "HEAD" and request.endpoint != "health":
            raise NotFound()

    @app.after_request
    def add_cors(resp):
        # Non-CORS preflights go out bare.
        if request.method == "OPTIONS" and "Origin" not in request.headers:
            return resp
        resp.headers["Access-Control-Allow-Origin"] = config.allowed_origin
        return resp

    @app.route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def health():
        return "OK"

    @app.route("/api/data")
    def bootstrap():
        return proxy_fpl("bootstrap-static/")

    @app.route("/api/live", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def live_without_slash():
        raise NotFound()

    @app.route("/api/live/<rest:rest>")
    def live(rest):
        """Live points for one gameweek, forwarded as is."""
        gw = live_gameweek(rest)
        if gw is None:
            raise MissingParameterError()
        return proxy_fpl(f"event/{gw}/live/")

    @app.errorhandler(RelayError)
    def handle_relay_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(NotFound)
    @app.errorhandler(MethodNotAllowed)
    def handle_not_found(e):
        return jsonify({"error": "Not found"}), 404

    return app


app = create_app()

if __name__ == "__main__":
    config = app.config["RELAY"]
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.info(
        "Server is running on http://localhost:%s (upstream %s)",
        config.port, config.upstream_base,
    )
    app.run(host="0.0.0.0", port=config.port)
