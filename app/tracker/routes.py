from __future__ import annotations

from flask import Blueprint, Flask, abort, current_app, g, send_file
from werkzeug.exceptions import HTTPException

from app.tracker.api import Api
from app.tracker.db import db_session
from app.tracker.errors import ApiError
from app.tracker.storage import AssetStore

bp = Blueprint("routes", __name__)


def asset_store(app: Flask | None = None) -> AssetStore:
    app = app or current_app
    return app.extensions["asset_store"]


def request_api() -> Api:
    """One Api per request, sharing the request's database session."""
    api = getattr(g, "api", None)
    if api is None:
        api = Api(session=db_session(), assets=asset_store())
        g.api = api
    return api


def success(data=None, status: int = 200):
    return {"type": "success", "data": data}, status


def error(kind: str, message: str, status: int):
    return {"type": "error", "error": kind, "readableError": message}, status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        return error(e.kind.value, e.message, e.http_status)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return error((e.name or "error").lower().replace(" ", "-"), e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        app.logger.exception("Unhandled error: %s", e)
        return error("internal", "Internal server error.", 500)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/assets/<name>")
def serve_asset(name: str):
    asset = asset_store().from_name(name)
    if asset is None:
        abort(404)
    response = send_file(asset.path, mimetype=asset.mimetype, max_age=60 * 60 * 24 * 365)
    # Uploaded SVGs may carry scripts; never render them as a document.
    response.headers["Content-Security-Policy"] = "default-src 'none'; style-src 'unsafe-inline'; sandbox"
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response
