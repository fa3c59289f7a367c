from flask import current_app, jsonify, request


def ledger(name):
    """Service objects are built once by the app factory."""
    return current_app.extensions["propledger"][name]


def json_body():
    return request.get_json(silent=True) or {}


def page_args(default_limit=50, max_limit=200):
    limit = min(max(request.args.get("limit", default_limit, type=int), 1), max_limit)
    offset = max(request.args.get("offset", 0, type=int), 0)
    return limit, offset


def ok(data, status=200):
    return jsonify(success=True, data=data), status
