"""
Playback Recorder API Backend
A Flask API recording playbacks and reconciling them against MusicBrainz
"""

from flask import Flask, request
from flask_cors import CORS
import atexit
import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Set pooling mode BEFORE importing db_utils
os.environ.setdefault('DB_USE_POOLING', 'true')

# Configuration
from config import configure_logging, init_app_config

import db_utils as db_tools
from routes import register_blueprints

logger = configure_logging()


def create_app(overrides=None):
    """
    Create the Flask app

    Args:
        overrides: Optional config values, e.g. {'PLAYBACK_SERVICE': service}

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app)
    init_app_config(app, overrides)

    register_blueprints(app)

    # Request/response logging
    @app.before_request
    def log_request():
        """Log incoming requests"""
        logger.info(f"{request.method} {request.path}")

    @app.after_request
    def log_response(response):
        """Log response status"""
        logger.info(f"{request.method} {request.path} - {response.status_code}")
        return response

    logger.info(f"Flask app initialized in PID {os.getpid()}")
    return app


app = create_app()


def cleanup_connections():
    """Close the connection pool on shutdown"""
    logger.info("Shutting down connection pool...")
    db_tools.close_connection_pool()
    logger.info("Connection pool closed")


atexit.register(cleanup_connections)


if __name__ == '__main__':
    # Running directly with 'python app.py' (not gunicorn)
    logger.info("Starting Flask application directly (not gunicorn)...")
    logger.info("Database connection pool will initialize on first request")

    db_tools.start_keepalive_thread()

    try:
        app.run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', '5001')))
    finally:
        logger.info("Shutting down...")
        db_tools.stop_keepalive_thread()
        db_tools.close_connection_pool()
        logger.info("Shutdown complete")
