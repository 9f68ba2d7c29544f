import logging
from dotenv import load_dotenv

load_dotenv()

import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(name)s %(levelname)s: %(message)s",
)

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from db import init_db
from services.hub import HubError
from services.validation import ValidationError

logger = logging.getLogger(__name__)


def create_app(core=None):
    """Build the Flask app and its Socket.IO channel.

    Args:
        core: A LightSync to serve.  When omitted the database is
            initialized and one is built from the environment.
    """
    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS)

    if core is None:
        from services.core import LightSync
        init_db()
        core = LightSync()
    app.extensions["lightsync"] = core

    # Register blueprints
    from routes.lights import lights_bp
    from routes.scenes import scenes_bp
    from routes.layout import layout_bp

    app.register_blueprint(lights_bp)
    app.register_blueprint(scenes_bp)
    app.register_blueprint(layout_bp)

    @app.get("/api/health")
    def health():
        return jsonify({
            "status": "ok",
            "hub_connected": core.lights.is_connected,
            "audio_analysis": core.analysis is not None and core.analysis.is_running,
        })

    @app.get("/api/websocket/stats")
    def websocket_stats():
        return jsonify(core.broadcaster.stats())

    @app.errorhandler(ValidationError)
    def validation_error(e):
        return jsonify(e.to_dict()), 400

    @app.errorhandler(HubError)
    def hub_error(e):
        logger.warning("Hub request failed: %s", e)
        return jsonify({"error": str(e), "connected": core.lights.is_connected}), 503

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    socketio = SocketIO(app, cors_allowed_origins=config.CORS_ORIGINS, async_mode="threading")

    def emit(message, to=None, skip_sid=None):
        socketio.emit("sync", message, to=to, skip_sid=skip_sid)

    core.broadcaster.set_emitter(emit)

    @socketio.on("connect")
    def on_connect(auth=None):
        core.broadcaster.connect(request.sid)

    @socketio.on("disconnect")
    def on_disconnect(*args):
        core.broadcaster.disconnect(request.sid)

    @socketio.on("sync")
    def on_sync(message):
        core.broadcaster.handle_message(request.sid, message)

    return app


if __name__ == "__main__":
    app = create_app()
    app.extensions["lightsync"].start()
    app.extensions["socketio"].run(
        app, host="0.0.0.0", port=config.PORT, debug=config.IS_DEV,
        use_reloader=False, allow_unsafe_werkzeug=True,
    )
