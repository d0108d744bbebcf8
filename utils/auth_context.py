from functools import wraps
from flask import g, jsonify
from security.session import bearer_token, get_session

def admin_required(fn):
    """
    401 when no bearer token is sent, 403 when it is unknown, revoked
    or expired. Sets g.admin_session for the handler.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify(success=False, error="Unauthorized"), 401

        sess = get_session(token)
        if sess is None:
            return jsonify(success=False, error="Forbidden"), 403

        g.admin_session = sess
        g.admin_token = token
        return fn(*args, **kwargs)
    return wrapper
