from __future__ import annotations

from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    ext = current_app.extensions["flashcountry"]
    return jsonify({
        "status": "ok",
        "countries": len(ext["catalog"]),
        "rooms": len(ext["rooms"].repo.raw_rooms()),
    })
