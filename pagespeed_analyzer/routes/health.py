from flask import Blueprint, jsonify

bp = Blueprint("health", __name__)


@bp.get("/")
def index():
    """
    Root
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({"message": "PageSpeed Analyzer API. POST /api/analyze, then poll /api/analysis/<id>"}), 200


@bp.get("/healthz")
def healthz():
    """
    Healthcheck
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({"ok": True}), 200
