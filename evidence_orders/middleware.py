from flask import request, jsonify
from flask_login import UserMixin, current_user
from functools import wraps
import logging

from evidence_orders.models import ActorRole

logger = logging.getLogger(__name__)

ACTOR_ID_HEADER = 'X-Actor-Id'
ACTOR_ROLE_HEADER = 'X-Actor-Role'

# Exact paths that never require an actor
AUTH_WHITELIST = [
    '/api/health',
]


class Actor(UserMixin):
    """An identity already authenticated by the upstream session system."""

    def __init__(self, actor_id, role):
        self.id = actor_id
        self.role = role

    def __repr__(self):
        return f'<Actor {self.id} role={self.role.value}>'


def load_actor_from_request(req):
    actor_id = (req.headers.get(ACTOR_ID_HEADER) or '').strip()
    role_name = (req.headers.get(ACTOR_ROLE_HEADER) or '').strip().upper()
    if not actor_id or not role_name:
        return None
    try:
        role = ActorRole[role_name]
    except KeyError:
        logger.warning(
            "Rejected actor %s with unknown role %s", actor_id, role_name)
        return None
    if role == ActorRole.SYSTEM:
        # SYSTEM is reserved for sweeps.
        return None
    return Actor(actor_id, role)


def setup_auth_middleware(app):

    @app.before_request
    def require_actor():
        path = request.path

        if not path.startswith('/api/'):
            return None
        if path in AUTH_WHITELIST:
            return None

        if not current_user.is_authenticated:
            return jsonify({'error': 'Not logged in',
                            'login_required': True}), 401
        return None


def role_required(*allowed_roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401

            # allowed_roles is a list of role names.
            if current_user.role.value not in allowed_roles:
                logger.warning(
                    "Actor %s attempted to access roles %s, current role: %s",
                    current_user.id,
                    allowed_roles,
                    current_user.role.value,
                )
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
