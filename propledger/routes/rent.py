from flask import Blueprint, request
from flask_jwt_extended import get_jwt, jwt_required

from propledger.routes.common import json_body, ledger, ok, page_args
from propledger.schemas import DistributeRequest, RentPaymentRequest
from propledger.security import current_user_id, roles_required

rent_bp = Blueprint("rent", __name__, url_prefix="/api/rent")


@rent_bp.post("/distribute")
@roles_required("admin")
def distribute():
    """Run rent distribution for all pending payments (admin)"""
    body = DistributeRequest.model_validate(json_body())
    triggered_by = get_jwt().get("email") or f"user:{current_user_id()}"
    summary = ledger("coordinator").run_distribution(
        property_ids=body.property_ids, dry_run=body.dry_run, triggered_by=triggered_by,
    )
    return ok(summary.serialize())


@rent_bp.post("/payments")
@roles_required("admin")
def create_payment():
    """Record rent collected for a property (admin)"""
    body = RentPaymentRequest.model_validate(json_body())
    payment = ledger("rent").create_rent_payment(
        body.property_id, body.period_start, body.period_end, body.gross_amount,
        management_fee_percent=body.management_fee_percent,
    )
    return ok({"rent_payment": payment.serialize()}, 201)


@rent_bp.get("/payments")
@jwt_required()
def list_payments():
    limit, offset = page_args()
    items, total = ledger("rent").list_rent_payments(
        property_id=request.args.get("property_id", type=int),
        status=request.args.get("status"),
        limit=limit,
        offset=offset,
    )
    return ok({"rent_payments": [p.serialize() for p in items], "total": total,
               "limit": limit, "offset": offset})


@rent_bp.get("/distributions")
@jwt_required()
def my_distributions():
    """Rent received by the current user"""
    limit, offset = page_args()
    items, total = ledger("rent").get_user_distributions(
        current_user_id(),
        property_id=request.args.get("property_id", type=int),
        limit=limit,
        offset=offset,
    )
    return ok({"distributions": [d.serialize() for d in items], "total": total,
               "limit": limit, "offset": offset})


@rent_bp.get("/history")
@jwt_required()
def run_history():
    limit, offset = page_args(default_limit=20)
    coordinator = ledger("coordinator")
    runs, total = coordinator.get_distribution_history(limit=limit, offset=offset)
    return ok({"runs": [r.serialize() for r in runs], "total": total,
               "is_running": coordinator.is_running})


@rent_bp.get("/summary")
@jwt_required()
def my_summary():
    return ok(ledger("rent").get_user_summary(current_user_id()))
