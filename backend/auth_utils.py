"""
Authentication utilities for JWT token handling

Tokens are issued by the account service sharing JWT_SECRET with this API.
This module decodes and validates them; generate_access_token exists for
local development and tests.
"""

import os
import jwt
from datetime import datetime, timedelta, timezone

# JWT Configuration
JWT_SECRET = os.getenv('JWT_SECRET')
if not JWT_SECRET:
    raise ValueError("JWT_SECRET environment variable must be set")

JWT_ALGORITHM = 'HS256'
ACCESS_TOKEN_EXPIRY = timedelta(minutes=15)


def generate_access_token(user_id: str, expires_in: timedelta = ACCESS_TOKEN_EXPIRY) -> str:
    """
    Generate JWT access token

    Args:
        user_id: UUID of the user
        expires_in: Token lifetime (default 15 minutes)

    Returns:
        JWT token as string
    """
    now = datetime.now(timezone.utc)
    payload = {
        'user_id': str(user_id),
        'exp': now + expires_in,
        'iat': now,
        'type': 'access'
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate JWT token

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        ValueError: If token is expired or invalid
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValueError('Token has expired')
    except jwt.InvalidTokenError:
        raise ValueError('Invalid token')
