#!/usr/bin/env python3
import logging
import os
import threading
from typing import Optional
from flask import Flask
from flask_cors import CORS
from waitress import create_server

from config.app_config import APIConfig
from core.logging_config import get_logger
from .routes.auth_routes import auth_bp
from .routes.user_routes import user_bp
from .routes.route_routes import route_bp
from .routes.admin_routes import admin_bp
from .middleware.error_handler import ErrorHandler

logger = get_logger(__name__)

def create_app(secret_key: Optional[str] = None) -> Flask:
    """
    Creates and configures the Flask application serving the REST API.
    """
    app = Flask(__name__)
    secret_key = secret_key or os.environ.get('API_SECRET_KEY')
    if not secret_key:
        raise RuntimeError('API_SECRET_KEY environment variable is required')
    app.config['SECRET_KEY'] = secret_key
    
    CORS(app)
    ErrorHandler.init_app(app)
    
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(user_bp, url_prefix='/api/user')
    app.register_blueprint(route_bp, url_prefix='/api/routes')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    @app.route("/api/health")
    def health_check():
        return {"success": True, "status": "healthy", "message": "OpenConnect panel API is running"}
    
    return app

def calculate_optimal_threads() -> int:
    """Determine a sensible Waitress thread count based on CPU cores."""
    cores = os.cpu_count() or 1
    return max(4, min(32, cores * 2))

class APIServer:
    """Waitress server running in a background thread with a bounded shutdown."""

    def __init__(self, app: Flask, config: APIConfig) -> None:
        self.config = config
        # Suppress Waitress queue warnings
        logging.getLogger('waitress.queue').setLevel(logging.ERROR)
        self._server = create_server(
            app,
            host=config.host,
            port=config.port,
            threads=config.threads or calculate_optimal_threads(),
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._server.run, name="api-server", daemon=True)
        self._thread.start()
        logger.info("API server listening", host=self.config.host, port=self.config.port)

    def stop(self) -> None:
        self._server.close()
        if self._thread:
            self._thread.join(timeout=self.config.shutdown_timeout)
            if self._thread.is_alive():
                logger.warning("API server did not stop within grace period",
                               timeout=self.config.shutdown_timeout)
            self._thread = None
        logger.info("API server stopped")
