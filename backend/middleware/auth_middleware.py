"""
Authentication middleware for protecting Flask routes

This module provides decorators for:
- require_auth: Require valid JWT access token
- require_admin: Require an authenticated administrator (use after require_auth)
"""

import logging
from functools import wraps
from uuid import UUID

from flask import request, jsonify, g

import db_utils as db_tools
from auth_utils import decode_token
from models import User

logger = logging.getLogger(__name__)


def require_auth(f):
    """
    Decorator to require valid JWT access token

    Usage:
        @bp.route('/protected')
        @require_auth
        def protected_route():
            user = g.current_user
            return jsonify({'user_id': str(user.id)})

    The decorated function will have access to g.current_user, a models.User
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return jsonify({'error': 'No authorization header'}), 401

        # Expected format: "Bearer <token>"
        parts = auth_header.split(' ')
        if len(parts) != 2 or parts[0] != 'Bearer':
            return jsonify({'error': 'Invalid authorization header format'}), 401

        try:
            payload = decode_token(parts[1])
        except ValueError as e:
            return jsonify({'error': f'Invalid token: {str(e)}'}), 401

        if payload.get('type') != 'access' or 'user_id' not in payload:
            return jsonify({'error': 'Invalid token type'}), 401

        try:
            user_id = UUID(str(payload['user_id']))
        except ValueError:
            return jsonify({'error': 'Invalid token: malformed user id'}), 401

        try:
            row = db_tools.find_user_by_id(user_id)
        except Exception as e:
            logger.error(f"Error loading user for token: {e}", exc_info=True)
            return jsonify({'error': 'Authentication failed'}), 500

        if not row:
            return jsonify({'error': 'User not found'}), 401

        user = User.from_row(row)

        if not user.is_active:
            return jsonify({'error': 'Account is inactive'}), 401

        if user.account_locked:
            return jsonify({'error': 'Account is locked'}), 401

        # Store user in Flask's g object for use in route
        g.current_user = user

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Decorator restricting a route to administrators; apply below require_auth"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, 'current_user', None)
        if user is None:
            return jsonify({'error': 'Authentication required'}), 401
        if not user.is_admin:
            logger.warning(f"Non-admin user {user.id} tried {request.method} {request.path}")
            return jsonify({'error': 'Administrator access required'}), 403
        return f(*args, **kwargs)

    return decorated_function
