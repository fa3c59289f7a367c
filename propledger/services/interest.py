"""
Pure lending math: interest accrual, LTV limits, loan estimates.

Nothing here reads the database or the clock; callers pass ``now``.
Interest is simple and linear between realizations: each time a position is
touched the accrued amount is realized and the accrual clock restarts.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from propledger.utils.money import ZERO, BPS_DENOMINATOR, bps_to_fraction, money, to_decimal

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)
DAYS_PER_YEAR = Decimal(365)
DAYS_PER_MONTH = Decimal(30)


@dataclass(frozen=True)
class Accrual:
    """Interest owed on a position as of ``as_of``."""
    principal: Decimal
    previously_accrued: Decimal
    new_interest: Decimal
    as_of: datetime

    @property
    def total_interest(self):
        return self.previously_accrued + self.new_interest

    @property
    def total_debt(self):
        return self.principal + self.total_interest


def elapsed_seconds(since, now):
    if since is None or now <= since:
        return ZERO
    delta = now - since
    # exact to the microsecond; timedelta.total_seconds() would go through float
    return Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(1_000_000)


def accrue_interest(principal, annual_rate, accrued_interest, since, now):
    """newInterest = principal * rate * elapsed / one year (365 days)."""
    principal = money(principal)
    accrued = money(accrued_interest or ZERO)
    seconds = elapsed_seconds(since, now)
    new_interest = money(principal * to_decimal(annual_rate) * seconds / SECONDS_PER_YEAR)
    return Accrual(principal=principal, previously_accrued=accrued, new_interest=new_interest, as_of=now)


def accrue_position(position, now):
    return accrue_interest(
        position.principal,
        position.interest_rate,
        position.accrued_interest,
        position.accrual_start,
        now,
    )


@dataclass(frozen=True)
class RepaymentSplit:
    repay_amount: Decimal
    interest_paid: Decimal
    principal_paid: Decimal


def split_repayment(amount, total_interest):
    """Waterfall: interest first, remainder to principal."""
    amount = money(amount)
    interest_paid = min(amount, money(total_interest))
    return RepaymentSplit(
        repay_amount=amount,
        interest_paid=interest_paid,
        principal_paid=amount - interest_paid,
    )


def max_borrowable(collateral_value, max_ltv_bps):
    return money(to_decimal(collateral_value) * to_decimal(max_ltv_bps) / BPS_DENOMINATOR)


def origination_fee(borrow_amount, fee_bps):
    return money(to_decimal(borrow_amount) * to_decimal(fee_bps) / BPS_DENOMINATOR)


def ltv_bps(debt, collateral_value):
    collateral_value = to_decimal(collateral_value)
    if collateral_value <= ZERO:
        return 0
    return int((to_decimal(debt) / collateral_value * BPS_DENOMINATOR).to_integral_value())


def estimate_borrow(collateral_value, borrow_amount=None, *, max_ltv_bps=5000, fee_bps=100,
                    interest_rate_bps=800, liquidation_threshold_bps=7500):
    collateral_value = money(collateral_value)
    borrow = money(borrow_amount or ZERO)
    fee = origination_fee(borrow, fee_bps) if borrow > ZERO else ZERO
    annual = money(borrow * bps_to_fraction(interest_rate_bps))
    daily = money(borrow * bps_to_fraction(interest_rate_bps) / DAYS_PER_YEAR)
    return {
        "collateral_value": collateral_value,
        "max_borrowable": max_borrowable(collateral_value, max_ltv_bps),
        "max_ltv_bps": max_ltv_bps,
        "requested_amount": borrow,
        "origination_fee_bps": fee_bps,
        "origination_fee": fee,
        "net_disbursement": borrow - fee,
        "current_ltv_bps": ltv_bps(borrow, collateral_value) if borrow > ZERO else 0,
        "interest_rate_bps": interest_rate_bps,
        "estimated_interest": {
            "daily": daily,
            "monthly": money(daily * DAYS_PER_MONTH),
            "annual": annual,
        },
        "liquidation_threshold_bps": liquidation_threshold_bps,
    }
