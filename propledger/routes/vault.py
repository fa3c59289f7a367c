from flask import Blueprint, current_app
from flask_jwt_extended import jwt_required

from propledger.errors import UserNotFound
from propledger.extensions import db
from propledger.models import Transaction, User
from propledger.routes.common import json_body, ledger, ok, page_args
from propledger.schemas import DepositRequest, ResetVaultRequest, WithdrawRequest
from propledger.security import current_user_id, roles_required
from propledger.services import vault

vault_bp = Blueprint("vault", __name__, url_prefix="/api/vault")


def _current_user():
    user = db.session.get(User, current_user_id())
    if user is None:
        raise UserNotFound()
    return user


@vault_bp.get("")
@jwt_required()
def get_vault():
    """Balances plus the latest transactions"""
    user_id = current_user_id()
    account = vault.get_vault(user_id)
    limit, offset = page_args(default_limit=20)
    txs = (
        Transaction.query.filter_by(user_id=user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset).limit(limit).all()
    )
    return ok({
        "vault": account.serialize() if account else None,
        "transactions": [t.serialize() for t in txs],
    })


@vault_bp.post("/deposit")
@jwt_required()
def deposit():
    body = DepositRequest.model_validate(json_body())
    account, tx = ledger("vault").deposit(_current_user(), body.amount, body.payment_method_id)
    return ok({"vault": account.serialize(), "transaction": tx.serialize()}, 201)


@vault_bp.post("/withdraw")
@jwt_required()
def withdraw():
    body = WithdrawRequest.model_validate(json_body())
    account, tx = ledger("vault").withdraw(_current_user(), body.amount, destination=body.destination)
    return ok({"vault": account.serialize(), "transaction": tx.serialize()})


@vault_bp.post("/reset")
@roles_required("admin")
def reset():
    """Zero a vault (demo mode only)"""
    if not current_app.config.get("DEMO_MODE"):
        return {"success": False, "error": "forbidden", "message": "Vault reset is only available in demo mode"}, 403
    body = ResetVaultRequest.model_validate(json_body())
    account = vault.reset_vault(body.user_id)
    return ok({"vault": account.serialize()})
