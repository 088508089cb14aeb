"""
Flask app factory: registers config, logging, the shared ping log, managers,
routes, and error handlers.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Type

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from pingwatch.config import Config, DevelopmentConfig, ProductionConfig
from pingwatch.ping_log import PingLog
from pingwatch.utils import init_logging
from pingwatch.managers.capture_manager import CaptureManager
from pingwatch.managers.state_manager import StateManager
from pingwatch.routes import pings as pings_bp


def create_app(
    config_class: Type[Config] | None = None,
    ping_log: Optional[PingLog] = None,
) -> Flask:
    """Create and configure the Flask application.

    The ping log is created here (or injected) and shared through
    `app.extensions` by the capture manager, the state manager and the
    routes. Nothing is loaded, captured or saved until the caller starts the
    managers.
    """
    app = Flask(__name__)

    # Config selection
    cfg: Type[Config]
    env = os.getenv("PINGWATCH_ENV", "production").lower()
    if config_class is not None:
        cfg = config_class
    elif env.startswith("dev"):
        cfg = DevelopmentConfig
    else:
        cfg = ProductionConfig
    app.config.from_object(cfg)

    # Logging
    logger = init_logging(app)
    app.logger = logger  # align Flask's logger with ours

    if ping_log is None:
        ping_log = PingLog(max_entries=int(app.config["MAX_ENTRIES"]))
    app.extensions["ping_log"] = ping_log

    app.extensions["state_mgr"] = StateManager(
        ping_log=ping_log,
        state_file=Path(app.config["STATE_FILE"]),
        interval=float(app.config["SAVE_INTERVAL_SECONDS"]),
        logger=logger,
    )
    app.extensions["capture_mgr"] = CaptureManager(
        ping_log=ping_log,
        group=int(app.config["NFLOG_GROUP"]),
        logger=logger,
    )

    # Error handlers
    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_exception(e: Exception):
        app.logger.exception("Unhandled error")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    app.register_blueprint(pings_bp.bp)

    return app
