from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from propledger.routes.common import json_body, ledger, ok
from propledger.schemas import BorrowRequest, EstimateQuery, RepayRequest
from propledger.security import current_user_id
from propledger.services.borrow import CollateralItem
from propledger.utils.money import money_str

borrow_bp = Blueprint("borrow", __name__, url_prefix="/api/borrow")


def _disbursement(d):
    return {
        "gross_amount": money_str(d["gross_amount"]),
        "origination_fee": money_str(d["origination_fee"]),
        "net_amount": money_str(d["net_amount"]),
        "method": d["method"],
        "status": d["status"],
        "payout_id": d["payout_id"],
    }


@borrow_bp.post("")
@jwt_required()
def open_position():
    """Borrow against property tokens"""
    body = BorrowRequest.model_validate(json_body())
    result = ledger("borrow").open_position(
        current_user_id(),
        [CollateralItem(c.property_id, c.amount, c.token_id) for c in body.collateral],
        body.borrow_amount,
    )
    return ok({
        "position": result["position"].serialize(),
        "disbursement": _disbursement(result["disbursement"]),
        "collateral": [c.serialize() for c in result["collateral"]],
        "vault": result["vault"].serialize(),
    }, 201)


@borrow_bp.post("/repay")
@jwt_required()
def repay():
    """Repay part or all of the active position"""
    body = RepayRequest.model_validate(json_body())
    result = ledger("borrow").repay_position(
        current_user_id(), body.borrow_position_id, body.amount, funds_source=body.payment_method_id,
    )
    return ok({
        "repayment": result["repayment"].serialize(),
        "position": result["position"].serialize(),
        "is_full_repayment": result["is_full_repayment"],
        "unlocked_collateral": [c.serialize() for c in result["unlocked_collateral"]],
        "vault": result["vault"].serialize(),
    })


@borrow_bp.get("/position")
@jwt_required()
def active_position():
    return ok({"position": ledger("borrow").get_active_position(current_user_id())})


@borrow_bp.get("/estimate")
@jwt_required()
def estimate():
    query = EstimateQuery.model_validate(request.args.to_dict())
    est = ledger("borrow").estimate(query.collateral_value, query.borrow_amount)
    est["estimated_interest"] = {k: money_str(v) for k, v in est["estimated_interest"].items()}
    for key in ("collateral_value", "max_borrowable", "requested_amount", "origination_fee", "net_disbursement"):
        est[key] = money_str(est[key])
    return ok(est)


@borrow_bp.get("/history")
@jwt_required()
def history():
    return ok({"positions": ledger("borrow").get_history(current_user_id())})
