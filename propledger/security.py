# propledger/security.py
from functools import wraps

from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request


def roles_required(*allowed):
    """Usage: @roles_required("admin")"""
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = get_jwt().get("role")
            if role not in allowed:
                return jsonify(success=False, error="forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return deco


def current_user_id():
    # identity is the user id as a string ("sub" must be a string)
    return int(get_jwt_identity())
