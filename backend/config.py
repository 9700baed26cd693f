"""
Configuration Module for the Playback Recorder API
Handles logging setup, Flask app initialization and environment settings
"""

import os
import logging


# ============================================================================
# CATALOG LOOKUP (MusicBrainz search service)
# ============================================================================

MBS_BASE_URL = os.environ.get('MBS_BASE_URL', 'https://musicbrainz.org/ws/2')
MBS_TIMEOUT = float(os.environ.get('MBS_TIMEOUT', '10'))
# MusicBrainz allows one request per second per client
MBS_MIN_REQUEST_INTERVAL = float(os.environ.get('MBS_MIN_REQUEST_INTERVAL', '1.0'))
MBS_SEARCH_LIMIT = int(os.environ.get('MBS_SEARCH_LIMIT', '10'))
MBS_USER_AGENT = os.environ.get(
    'MBS_USER_AGENT',
    'PlaybackRecorder/1.0 (https://github.com/playback-recorder/playback-recorder)'
)

# ============================================================================
# MATCHING / PLAYBACK DEFAULTS
# ============================================================================

DEFAULT_MATCH_THRESHOLD = int(os.environ.get('DEFAULT_MATCH_THRESHOLD', '90'))
NOW_PLAYING_DEFAULT_LENGTH = int(os.environ.get('NOW_PLAYING_DEFAULT_LENGTH', '600'))

DEFAULT_PAGE_SIZE = int(os.environ.get('DEFAULT_PAGE_SIZE', '20'))
MAX_PAGE_SIZE = int(os.environ.get('MAX_PAGE_SIZE', '100'))


def configure_logging():
    """
    Configure application logging with standard format

    Returns:
        Logger instance for the config module
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


def init_app_config(app, overrides=None):
    """
    Initialize Flask app configuration

    This sets up:
    - Custom JSON provider for date/datetime formatting
    - Default match threshold used when a request omits ?threshold=
    - Any explicit overrides (tests inject PLAYBACK_SERVICE here)

    Args:
        app: Flask application instance
        overrides: Optional dict merged into app.config
    """
    from utils.json_provider import CustomJSONProvider
    app.json = CustomJSONProvider(app)

    app.config.setdefault('DEFAULT_MATCH_THRESHOLD', DEFAULT_MATCH_THRESHOLD)
    if overrides:
        app.config.update(overrides)
