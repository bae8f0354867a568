from flask import Blueprint, current_app, jsonify

health_bp = Blueprint("health_bp", __name__, url_prefix="/health")

@health_bp.get("/")
def health() -> jsonify:
    """
    Health probe, including the state of split synchronization.

    Returns:
        {"status": "ok", "ready": bool, "running": bool, "since": int,
         "last_synced_at": str|null, "last_error": str|null}
    """
    synchronizer = current_app.extensions["splitflags"]["synchronizer"]
    return jsonify({"status": "ok", **synchronizer.status()})
