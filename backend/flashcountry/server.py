from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .game.errors import CatalogError
from .game.repository import RoomRepository
from .game.rounds import ROUNDS_PER_MATCH, CountryCatalog, ImageHost
from .game.service import RoomService
from .routes.health import bp as health_bp
from .routes.rooms import bp as rooms_bp
from .routes.rounds import bp as rounds_bp
from .realtime.handlers import register_socketio_handlers
from .store.document import DocumentStore


log = logging.getLogger(__name__)


def create_app(config_class=Config) -> tuple[Flask, SocketIO]:
    dist_dir = Path(__file__).resolve().parents[2] / "frontend" / "dist"

    static_folder = str(dist_dir) if dist_dir.exists() else None
    static_url_path = "/" if dist_dir.exists() else None

    app = Flask(
        __name__,
        static_folder=static_folder,
        static_url_path=static_url_path,
    )
    app.config.from_object(config_class)

    max_rounds = app.config["MAX_ROUNDS"]
    if not 1 <= max_rounds <= ROUNDS_PER_MATCH:
        # the seeded lineup only has ROUNDS_PER_MATCH countries
        raise CatalogError(f"MAX_ROUNDS={max_rounds} must be between 1 and {ROUNDS_PER_MATCH}")

    if app.config.get("TRUST_PROXY_HEADERS", False):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    env_async_mode = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()
    if env_async_mode:
        async_mode = env_async_mode
    elif app.config.get("TESTING"):
        async_mode = "threading"
    else:
        # Default choice:
        # - Windows: threading (eventlet has known compatibility issues on newer Python)
        # - Python >= 3.13: threading (safer default)
        # - Otherwise: eventlet
        if sys.platform.startswith("win") or sys.version_info >= (3, 13):
            async_mode = "threading"
        else:
            async_mode = "eventlet"

    socketio = SocketIO(
        app,
        cors_allowed_origins=cors_origins,
        async_mode=async_mode,
    )

    store = DocumentStore()
    catalog = CountryCatalog.load(
        app.config.get("CATALOG_PATH") or None,
        ImageHost(app.config["IMAGE_BASE_URL"]),
    )
    app.extensions["flashcountry"] = {
        "store": store,
        "catalog": catalog,
        "rooms": RoomService(RoomRepository(store.connect()), config_class),
    }
    log.info("loaded %d countries, socketio async_mode=%s", len(catalog), async_mode)

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(rooms_bp, url_prefix="/api")
    app.register_blueprint(rounds_bp, url_prefix="/api")

    register_socketio_handlers(socketio, store, catalog, config_class)

    if dist_dir.exists():
        @app.get("/")
        def index():
            return send_from_directory(dist_dir, "index.html")

        @app.get("/<path:path>")
        def static_proxy(path: str):
            file_path = dist_dir / path
            if file_path.exists() and file_path.is_file():
                return send_from_directory(dist_dir, path)
            return send_from_directory(dist_dir, "index.html")

    return app, socketio
