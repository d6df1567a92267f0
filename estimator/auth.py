# estimator/auth.py
"""Resolve the acting user from request headers.

Authentication itself lives in front of this service; by the time a request
reaches us the identity provider has set ``X-User-Id`` and ``X-User-Role``.
"""

from flask import current_app, request

from estimator.errors import AuthorizationError
from estimator.workflow import Actor


def has_override(role: str | None) -> bool:
    return bool(role) and role in current_app.config.get('OVERRIDE_ROLES', ())


def current_actor(required: bool = True) -> Actor | None:
    user_id = (request.headers.get('X-User-Id') or '').strip()
    role = (request.headers.get('X-User-Role') or '').strip() or None
    if not user_id:
        if required:
            raise AuthorizationError('Sign in to perform this action')
        return None
    return Actor(user_id=user_id, role=role, can_override=has_override(role))
