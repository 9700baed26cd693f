"""
Playback Routes

This module exposes the playback service over HTTP:
- POST   /api/playbacks                     - Record a playback (requires auth)
- POST   /api/playbacks/batch               - Record many playbacks (requires auth)
- GET    /api/playbacks                     - Current user's playbacks, ?broken=true for broken only
- GET    /api/playbacks/all                 - Every user's playbacks (admin only)
- GET    /api/playbacks/accumulated-broken  - Current user's broken playbacks, grouped
- GET    /api/playbacks/<id>                - Single playback
- PATCH  /api/playbacks/<id>                - Partial update of raw details (owner only)
- DELETE /api/playbacks/<id>                - Delete (owner only)
- POST   /api/playbacks/<id>/detect         - Re-run catalog matching (owner only)
- PUT    /api/now-playing                   - Set the current user's now-playing entry
- GET    /api/now-playing                   - Get it (404 once expired)

Matching endpoints accept ?threshold=0..100 (default DEFAULT_MATCH_THRESHOLD).
List endpoints accept ?page=&size=&sort=&direction=.
"""

from flask import Blueprint, current_app, jsonify, request, g
import logging
import threading

from errors import PlaybackError, ValidationError
from mbs_client import MbsClient
from middleware.auth_middleware import require_admin, require_auth
from models import Pageable, PlaybackPatch, PlaybackSubmission
from playback_repo import PostgresPlaybackRepository
from playback_service import PlaybackService
from utils.helpers import parse_bool

logger = logging.getLogger(__name__)
playbacks_bp = Blueprint('playbacks', __name__, url_prefix='/api')

# Shared service instance, built on first use
_playback_service = None
_playback_service_lock = threading.Lock()


def get_playback_service():
    """Get the configured PlaybackService (app.config['PLAYBACK_SERVICE'] wins)"""
    service = current_app.config.get('PLAYBACK_SERVICE')
    if service is not None:
        return service

    global _playback_service
    if _playback_service is None:
        with _playback_service_lock:
            if _playback_service is None:
                _playback_service = PlaybackService(PostgresPlaybackRepository(), MbsClient())
    return _playback_service


def _error_response(e: PlaybackError):
    return jsonify({'error': e.message}), e.status_code


def _threshold_arg():
    raw = request.args.get('threshold')
    if raw is None:
        return current_app.config['DEFAULT_MATCH_THRESHOLD']
    try:
        return int(raw)
    except ValueError:
        raise ValidationError('threshold must be an integer')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    return data


# =============================================================================
# RECORD PLAYBACKS
# =============================================================================

@playbacks_bp.route('/playbacks', methods=['POST'])
@require_auth
def create_playback():
    """
    Record a playback for the authenticated user

    Request Body (JSON):
        {
            "artists": ["Artist"],
            "recording_title": "Track",
            "release_title": "Album",
            "track_length": 215,        // optional, seconds
            "play_time": 200,           // optional, defaults to track_length
            "disc_number": 1,           // optional
            "track_number": 3,          // optional
            "timestamp": 1700000000,    // optional, epoch seconds, defaults to now
            "source": "web"             // optional
        }

    Returns:
        201: Stored playback (broken=true when no match reached the threshold)
        400: Invalid body or threshold
        409: A playback with the supplied id already exists
    """
    try:
        submission = PlaybackSubmission.from_json(_json_body())
        playback = get_playback_service().create_playback(
            submission, _threshold_arg(), g.current_user
        )
        return jsonify(playback.to_dict()), 201

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error creating playback: {e}", exc_info=True)
        return jsonify({'error': 'Failed to create playback'}), 500


@playbacks_bp.route('/playbacks/batch', methods=['POST'])
@require_auth
def batch_create_playbacks():
    """
    Record a list of playbacks; invalid items are reported, not fatal

    Returns:
        200: [{"success": true, "id": "uuid", "error": null}, ...]
        400: Body is not a JSON list
    """
    try:
        items = _json_body()
        if not isinstance(items, list):
            raise ValidationError('Batch body must be a JSON list')

        results = get_playback_service().batch_create_playbacks(
            items, _threshold_arg(), g.current_user
        )
        return jsonify([r.to_dict() for r in results]), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error importing playback batch: {e}", exc_info=True)
        return jsonify({'error': 'Failed to import playbacks'}), 500


# =============================================================================
# LIST PLAYBACKS
# =============================================================================

@playbacks_bp.route('/playbacks', methods=['GET'])
@require_auth
def get_user_playbacks():
    """
    Get the authenticated user's playbacks

    Query Parameters:
        broken: "true" to only return playbacks without catalog IDs
        page, size, sort, direction: Paging

    Returns:
        200: {"content": [...], "page", "size", "total_elements", "total_pages", "has_more"}
    """
    try:
        try:
            only_broken = parse_bool(request.args.get('broken'))
        except ValueError:
            raise ValidationError("'broken' must be true or false")

        page = get_playback_service().find_all_for_user(
            g.current_user, only_broken, Pageable.from_args(request.args)
        )
        return jsonify(page.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error fetching playbacks: {e}", exc_info=True)
        return jsonify({'error': 'Failed to fetch playbacks'}), 500


@playbacks_bp.route('/playbacks/all', methods=['GET'])
@require_auth
@require_admin
def get_all_playbacks():
    """Get playbacks of all users (administrators only)"""
    try:
        page = get_playback_service().find_all(Pageable.from_args(request.args))
        return jsonify(page.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error fetching all playbacks: {e}", exc_info=True)
        return jsonify({'error': 'Failed to fetch playbacks'}), 500


@playbacks_bp.route('/playbacks/accumulated-broken', methods=['GET'])
@require_auth
def get_accumulated_broken_playbacks():
    """Broken playbacks grouped by identical artists/titles, most frequent first"""
    try:
        page = get_playback_service().get_accumulated_broken_playbacks(
            g.current_user, Pageable.from_args(request.args)
        )
        return jsonify(page.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error fetching accumulated playbacks: {e}", exc_info=True)
        return jsonify({'error': 'Failed to fetch playbacks'}), 500


# =============================================================================
# SINGLE PLAYBACK
# =============================================================================

@playbacks_bp.route('/playbacks/<uuid:playback_id>', methods=['GET'])
@require_auth
def get_playback(playback_id):
    try:
        playback = get_playback_service().get_playback(playback_id)
        return jsonify(playback.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error fetching playback {playback_id}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to fetch playback'}), 500


@playbacks_bp.route('/playbacks/<uuid:playback_id>', methods=['PATCH'])
@require_auth
def update_playback(playback_id):
    """
    Change raw details of a playback; omitted fields stay as they are,
    null clears an optional field

    Returns:
        200: Updated playback
        400: Unknown field or invalid value
        403: Not the owner
        404: Unknown playback
    """
    try:
        patch = PlaybackPatch.from_json(_json_body())
        playback = get_playback_service().update_playback(playback_id, patch, g.current_user)
        return jsonify(playback.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error updating playback {playback_id}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to update playback'}), 500


@playbacks_bp.route('/playbacks/<uuid:playback_id>', methods=['DELETE'])
@require_auth
def delete_playback(playback_id):
    try:
        get_playback_service().delete_playback(playback_id, g.current_user)
        return '', 204

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error deleting playback {playback_id}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to delete playback'}), 500


@playbacks_bp.route('/playbacks/<uuid:playback_id>/detect', methods=['POST'])
@require_auth
def detect_playback_details(playback_id):
    """
    Re-run catalog matching for a playback

    Returns:
        200: Playback, with IDs attached if a match reached the threshold
        503: Catalog lookup unavailable, try again later
    """
    try:
        playback = get_playback_service().detect_and_update_mb_details(
            playback_id, _threshold_arg(), g.current_user
        )
        return jsonify(playback.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error detecting details for playback {playback_id}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to detect playback details'}), 500


# =============================================================================
# NOW PLAYING
# =============================================================================

@playbacks_bp.route('/now-playing', methods=['PUT'])
@require_auth
def set_now_playing():
    try:
        submission = PlaybackSubmission.from_json(_json_body())
        now_playing = get_playback_service().set_now_playing(
            submission, _threshold_arg(), g.current_user
        )
        return jsonify(now_playing.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error setting now playing: {e}", exc_info=True)
        return jsonify({'error': 'Failed to set now playing'}), 500


@playbacks_bp.route('/now-playing', methods=['GET'])
@require_auth
def get_now_playing():
    try:
        now_playing = get_playback_service().get_now_playing(g.current_user)
        return jsonify(now_playing.to_dict()), 200

    except PlaybackError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error fetching now playing: {e}", exc_info=True)
        return jsonify({'error': 'Failed to fetch now playing'}), 500
