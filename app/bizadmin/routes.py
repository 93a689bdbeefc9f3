from flask import Blueprint, current_app

from app.bizadmin.utils import envelope

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return envelope(200, "ok", {"env": current_app.config.get("ENV")})


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200
