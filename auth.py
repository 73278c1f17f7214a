"""
Bearer-token authentication against the external identity provider.

Tokens are HS256 JWTs signed with JWT_SECRET. The user id is taken from
the ``sub`` claim (Supabase style) or ``user_id`` (legacy tokens).
"""
import logging
from collections import namedtuple
from functools import wraps

import jwt
from flask import current_app, g, request

from errors import Unauthorized

logger = logging.getLogger(__name__)

Actor = namedtuple('Actor', ['id', 'email'])


def verify_token(token):
    """Verify JWT token and return the Actor, or None"""
    if not token:
        return None
    audience = current_app.config.get('JWT_AUDIENCE')
    try:
        payload = jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=['HS256'],
            audience=audience,
            options={'verify_aud': bool(audience)},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired bearer token")
        return None
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected invalid bearer token: %s", exc)
        return None

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id or not isinstance(user_id, str):
        return None
    return Actor(id=user_id, email=payload.get('email'))


def bearer_token():
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def require_auth(f):
    """Decorator to require authentication; passes ``actor`` to the view"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = verify_token(bearer_token())
        if actor is None:
            raise Unauthorized('Missing or invalid authorization token')
        g.actor = actor
        return f(actor=actor, *args, **kwargs)
    return decorated_function
