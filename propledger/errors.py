# propledger/errors.py
import logging

from flask import jsonify
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base for every error the ledger core raises on purpose."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message=None, **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    def to_dict(self):
        payload = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# --- validation errors: raised before any mutation, safe to retry ----------

class InvalidRequest(LedgerError):
    """Invalid request."""
    code = "INVALID_REQUEST"


class KycRequired(LedgerError):
    """KYC verification required before borrowing."""
    code = "KYC_REQUIRED"
    status_code = 403


class InsufficientCollateral(LedgerError):
    """Insufficient tokens pledged as collateral."""
    code = "INSUFFICIENT_COLLATERAL"


class ActivePositionExists(LedgerError):
    """An active borrow position already exists. Repay it before borrowing again."""
    code = "ACTIVE_POSITION_EXISTS"


class ExceedsLtv(LedgerError):
    """Requested amount exceeds the maximum loan-to-value."""
    code = "EXCEEDS_LTV"


class ExceedsDebt(LedgerError):
    """Repayment amount exceeds total debt."""
    code = "EXCEEDS_DEBT"


class InsufficientFunds(LedgerError):
    """Insufficient vault balance."""
    code = "INSUFFICIENT_FUNDS"


class PaymentRequired(LedgerError):
    """Payment method required."""
    code = "PAYMENT_REQUIRED"
    status_code = 402


class PaymentFailed(LedgerError):
    """Payment could not be collected."""
    code = "PAYMENT_FAILED"
    status_code = 402


class NoFundsDestination(LedgerError):
    """A payout destination is required before borrowing."""
    code = "NO_FUNDS_DESTINATION"


class PositionNotFound(LedgerError):
    """Active borrow position not found."""
    code = "POSITION_NOT_FOUND"
    status_code = 404


class PropertyNotFound(LedgerError):
    """Property not found."""
    code = "PROPERTY_NOT_FOUND"
    status_code = 404


class UserNotFound(LedgerError):
    """User not found."""
    code = "USER_NOT_FOUND"
    status_code = 404


class DistributionInProgress(LedgerError):
    """Distribution is already running."""
    code = "DISTRIBUTION_IN_PROGRESS"
    status_code = 409


# --- invariant errors: a defect, never clamped -----------------------------

class InvariantViolation(LedgerError):
    """Ledger invariant violated."""
    code = "INVARIANT_VIOLATION"
    status_code = 500


# --- external collaborator errors: caught at the boundary ------------------

class FundsProviderError(Exception):
    """The funds provider refused or failed a payout/charge."""


class MirrorError(Exception):
    """The on-chain mirror call failed."""


def register_error_handlers(app):
    @app.errorhandler(LedgerError)
    def ledger_error(e):
        if isinstance(e, InvariantViolation):
            app.logger.error("Invariant violation: %s %s", e.message, e.details, exc_info=e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValidationError)
    def validation_error(e):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        return jsonify(success=False, error="validation_error", message="Invalid request body", errors=errors), 400

    @app.errorhandler(400)
    def bad_request(e):
        msg = getattr(e, "description", "Bad Request")
        return jsonify(success=False, error="bad_request", message=msg), 400

    @app.errorhandler(401)
    def unauthorized(e): return jsonify(success=False, error="unauthorized"), 401

    @app.errorhandler(403)
    def forbidden(e): return jsonify(success=False, error="forbidden"), 403

    @app.errorhandler(404)
    def not_found(e): return jsonify(success=False, error="not_found"), 404

    @app.errorhandler(500)
    def server_error(e):
        app.logger.exception("Unhandled exception: %s", e)
        return jsonify(success=False, error="server_error"), 500
