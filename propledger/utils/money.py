"""Fixed-point helpers. Money never touches binary floating point."""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation

MONEY_PLACES = Decimal("0.000001")
RATE_PLACES = Decimal("0.0000000001")
PER_TOKEN_PLACES = Decimal("0.000000000001")

ZERO = Decimal("0")
BPS_DENOMINATOR = Decimal("10000")

# tolerance used for "fully repaid" comparisons
REPAYMENT_EPSILON = Decimal("0.01")


def to_decimal(value):
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    try:
        # str() first so floats arrive as their shortest repr, not binary noise
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {value!r}")


def money(value):
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)


def rate(value):
    return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_EVEN)


def bps_to_fraction(bps):
    return to_decimal(bps) / BPS_DENOMINATOR


def money_str(value):
    """Serialize for JSON; None stays None."""
    if value is None:
        return None
    return str(money(value))


def utcnow():
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None
