from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..game.models import DIFFICULTIES
from ..game.rounds import generate_rounds

bp = Blueprint("rounds", __name__)


@bp.get("/rounds")
def get_rounds():
    """Round lineup for a seed, the same one every peer derives locally."""
    try:
        seed = int(request.args.get("seed", ""))
    except ValueError:
        return jsonify({"error": "invalid_seed"}), 400

    difficulty = request.args.get("difficulty", "easy")
    if difficulty not in DIFFICULTIES:
        return jsonify({"error": "invalid_difficulty"}), 400

    catalog = current_app.extensions["flashcountry"]["catalog"]
    game = generate_rounds(
        seed, difficulty, catalog, images_per_round=current_app.config.get("IMAGES_PER_ROUND", 100)
    )
    return jsonify(game.to_dict())
