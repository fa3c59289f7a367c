"""
Borrow engine: collateralized positions against property tokens.

Each public operation is one unit of work. Validation happens before the first
mutation, so a rejected request leaves nothing behind. Payouts and on-chain
mirroring run after commit and can only degrade, never undo, the ledger
result.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from propledger.adapters import call_best_effort
from propledger.errors import (
    ActivePositionExists, ExceedsDebt, ExceedsLtv, FundsProviderError, InsufficientCollateral,
    InsufficientFunds, InvalidRequest, KycRequired, NoFundsDestination, PaymentFailed,
    PaymentRequired, PositionNotFound, PropertyNotFound, UserNotFound,
)
from propledger.extensions import db, unit_of_work
from propledger.models import (
    BorrowCollateral, BorrowPosition, BorrowRepayment, Transaction, User,
)
from propledger.models.borrow import (
    POSITION_ACTIVE, POSITION_REPAID, SOURCE_EXTERNAL, SOURCE_MIXED, SOURCE_VAULT,
)
from propledger.models.transaction import TX_BORROW, TX_PROCESSING, TX_REPAY
from propledger.services import interest, vault
from propledger.services.holdings import get_holding, get_or_create_holding
from propledger.utils.money import (
    REPAYMENT_EPSILON, ZERO, bps_to_fraction, money, rate, utcnow,
)

logger = logging.getLogger(__name__)

# repayments up to 1% above the computed debt are accepted (rounding slack)
DEBT_SLACK = money("1.01")

DISBURSE_VAULT = "vault_credit"
DISBURSE_TRANSFER = "bank_transfer"


@dataclass(frozen=True)
class LendingSettings:
    max_ltv_bps: int = 5000
    origination_fee_bps: int = 100
    interest_rate_bps: int = 800
    liquidation_threshold_bps: int = 7500
    require_payout_destination: bool = False

    @classmethod
    def from_config(cls, config):
        return cls(
            max_ltv_bps=int(config.get("MAX_LTV_BPS", 5000)),
            origination_fee_bps=int(config.get("ORIGINATION_FEE_BPS", 100)),
            interest_rate_bps=int(config.get("DEFAULT_INTEREST_RATE_BPS", 800)),
            liquidation_threshold_bps=int(config.get("LIQUIDATION_THRESHOLD_BPS", 7500)),
            require_payout_destination=bool(config.get("REQUIRE_PAYOUT_DESTINATION", False)),
        )


@dataclass(frozen=True)
class CollateralItem:
    property_id: int
    amount: int
    token_id: int = None


class BorrowEngine:
    def __init__(self, mirror, funds, settings=None, clock=utcnow):
        self.mirror = mirror
        self.funds = funds
        self.settings = settings or LendingSettings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Origination
    # ------------------------------------------------------------------

    def open_position(self, user_id, collateral, borrow_amount):
        borrow_amount = money(borrow_amount)
        if borrow_amount <= ZERO:
            raise InvalidRequest("Borrow amount must be positive")
        if not collateral:
            raise InvalidRequest("Collateral is required")

        with unit_of_work():
            user = _load_user(user_id)
            if not user.is_kyc_approved:
                raise KycRequired()

            priced = self._price_collateral(user.id, collateral)
            collateral_value = money(sum(value for _, _, _, value in priced))

            existing = active_position_for(user.id)
            if existing is not None:
                raise ActivePositionExists(existing_position_id=existing.id)

            limit = interest.max_borrowable(collateral_value, self.settings.max_ltv_bps)
            if borrow_amount > limit:
                raise ExceedsLtv(
                    f"Requested amount exceeds max borrowable. Max: ${limit}",
                    max_borrowable=str(limit),
                    collateral_value=str(collateral_value),
                    ltv_bps=self.settings.max_ltv_bps,
                )

            if self.settings.require_payout_destination and not user.payout_destination:
                raise NoFundsDestination()

            now = self.clock()
            fee = interest.origination_fee(borrow_amount, self.settings.origination_fee_bps)
            net_disbursement = borrow_amount - fee
            account = vault.get_or_create_vault(user.id, for_update=True)

            position = BorrowPosition(
                user_id=user.id,
                vault_account_id=account.id,
                principal=borrow_amount,
                interest_rate=rate(bps_to_fraction(self.settings.interest_rate_bps)),
                accrued_interest=ZERO,
                collateral_value=collateral_value,
                collateral_ratio=rate(borrow_amount / collateral_value),
                liquidation_threshold=rate(bps_to_fraction(self.settings.liquidation_threshold_bps)),
                status=POSITION_ACTIVE,
                borrowed_at=now,
                last_interest_update=now,
            )
            db.session.add(position)
            db.session.flush()

            collaterals = []
            for item, holding, prop, value in priced:
                holding.quantity -= item.amount
                col = BorrowCollateral(
                    borrow_position_id=position.id,
                    property_id=prop.id,
                    token_id=item.token_id if item.token_id is not None else prop.token_id,
                    amount=item.amount,
                    value_at_lock=value,
                    current_value=value,
                    locked_at=now,
                )
                db.session.add(col)
                collaterals.append(col)

            vault.escrow_collateral(account, collateral_value)

            tx = Transaction(
                user_id=user.id,
                type=TX_BORROW,
                status=TX_PROCESSING,
                amount=borrow_amount,
                fee=fee,
                description=f"Borrowed ${borrow_amount} against {len(collaterals)} property token(s)",
                details={
                    "borrow_position_id": position.id,
                    "collateral_value": str(collateral_value),
                    "ltv_ratio": str(position.collateral_ratio),
                    "origination_fee": str(fee),
                    "net_disbursement": str(net_disbursement),
                },
            )
            db.session.add(tx)

        logger.info(
            "Opened borrow position %s for user %s: principal %s against collateral %s",
            position.id, user.id, borrow_amount, collateral_value,
        )

        disbursement = self._disburse(user, position, tx, borrow_amount, fee, net_disbursement)
        self._mirror_origination(account.wallet_address, position, collaterals)

        return {
            "position": position,
            "disbursement": disbursement,
            "collateral": collaterals,
            "vault": account,
        }

    def _price_collateral(self, user_id, collateral):
        """Check free quantity per holding and value each pledged item at the current token price."""
        requested = OrderedDict()
        for item in collateral:
            if item.amount <= 0:
                raise InvalidRequest("Collateral amounts must be positive", property_id=item.property_id)
            requested[item.property_id] = requested.get(item.property_id, 0) + item.amount

        holdings = {}
        for property_id, total in requested.items():
            holding = get_holding(user_id, property_id, for_update=True)
            if holding is None or holding.quantity < total:
                raise InsufficientCollateral(
                    f"Insufficient tokens for property {property_id}",
                    property_id=property_id,
                    requested=total,
                    available=holding.quantity if holding else 0,
                )
            holdings[property_id] = holding

        priced = []
        for item in collateral:
            holding = holdings[item.property_id]
            prop = holding.property
            if prop is None:
                raise PropertyNotFound(property_id=item.property_id)
            priced.append((item, holding, prop, money(money(prop.token_price) * item.amount)))
        return priced

    def _disburse(self, user, position, tx, gross, fee, net):
        """Pay loan proceeds out; fall back to crediting the vault. Never raises."""
        payout_id = None
        if user.payout_destination:
            try:
                payout_id = self.funds.payout(user.payout_destination, net, metadata={
                    "user_id": str(user.id),
                    "borrow_position_id": str(position.id),
                    "type": "loan_disbursement",
                })
            except FundsProviderError as e:
                logger.warning("Payout for position %s failed, crediting vault: %s", position.id, e)
            except Exception:
                logger.exception("Payout for position %s raised, crediting vault", position.id)

        if payout_id:
            with unit_of_work():
                tx.reference = payout_id
            method, status = DISBURSE_TRANSFER, "pending"
        else:
            with unit_of_work():
                account = vault.get_or_create_vault(user.id, for_update=True)
                vault.credit(account, net, counter="deposited")
                tx.mark_completed(when=self.clock())
            method, status = DISBURSE_VAULT, "credited_to_vault"

        return {
            "gross_amount": gross,
            "origination_fee": fee,
            "net_amount": net,
            "method": method,
            "status": status,
            "payout_id": payout_id,
        }

    def _mirror_origination(self, wallet, position, collaterals):
        if not (self.mirror.enabled and wallet):
            return
        all_locked = True
        for col in collaterals:
            if col.token_id is None:
                all_locked = False
                continue
            call_best_effort("set_asset_price", self.mirror.set_asset_price,
                             col.token_id, money(col.value_at_lock / col.amount),
                             ledger_ref=f"collateral:{col.id}")
            ref = call_best_effort("lock_collateral", self.mirror.lock_collateral,
                                   wallet, col.token_id, col.amount, ledger_ref=f"collateral:{col.id}")
            if ref:
                col.lock_tx_ref = ref
            else:
                all_locked = False

        # a loan is only mirrored once its collateral is
        if all_locked:
            ref = call_best_effort("issue_loan", self.mirror.issue_loan, wallet, position.principal,
                                   self.settings.interest_rate_bps, ledger_ref=f"position:{position.id}")
            if ref:
                position.loan_tx_ref = ref
        _save_mirror_refs(f"position:{position.id}")

    # ------------------------------------------------------------------
    # Repayment
    # ------------------------------------------------------------------

    def repay_position(self, user_id, position_id, amount, funds_source=None):
        amount = money(amount)
        if amount <= ZERO:
            raise InvalidRequest("Repayment amount must be positive")

        with unit_of_work():
            user = _load_user(user_id)
            position = (
                BorrowPosition.query
                .filter_by(id=position_id, user_id=user.id, status=POSITION_ACTIVE)
                .with_for_update()
                .first()
            )
            if position is None:
                raise PositionNotFound(borrow_position_id=position_id)

            now = self.clock()
            accrual = interest.accrue_position(position, now)
            total_debt = accrual.total_debt
            if amount > money(total_debt * DEBT_SLACK):
                raise ExceedsDebt(
                    f"Repayment amount exceeds total debt of ${total_debt}",
                    total_debt=str(total_debt),
                    principal=str(accrual.principal),
                    accrued_interest=str(accrual.total_interest),
                )

            repay_amount = min(amount, total_debt)
            is_full = repay_amount >= total_debt - REPAYMENT_EPSILON
            split = interest.split_repayment(repay_amount, accrual.total_interest)

            account = vault.get_or_create_vault(user.id, for_update=True)
            from_vault, from_payment = self._fund_repayment(account, repay_amount, funds_source)

            payment_reference = None
            if from_payment > ZERO:
                try:
                    payment_reference = self.funds.charge(
                        funds_source, from_payment, customer_id=user.funds_customer_id,
                        metadata={
                            "user_id": str(user.id),
                            "borrow_position_id": str(position.id),
                            "type": "loan_repayment",
                        },
                    )
                except FundsProviderError as e:
                    raise PaymentFailed("Payment failed", reason=str(e)) from e

            # --- validation done; mutations start here ---
            if from_vault > ZERO:
                vault.debit(account, from_vault)

            position.last_interest_update = now
            if is_full:
                # residue under the epsilon is forgiven
                position.principal = ZERO
                position.accrued_interest = ZERO
                position.status = POSITION_REPAID
                position.repaid_at = now
            else:
                position.principal = max(ZERO, accrual.principal - split.principal_paid)
                position.accrued_interest = max(ZERO, accrual.total_interest - split.interest_paid)

            unlocked = []
            if is_full:
                unlocked = self._release_collateral(user.id, position, now)

            if from_payment > ZERO and from_vault > ZERO:
                source = SOURCE_MIXED
            elif from_payment > ZERO:
                source = SOURCE_EXTERNAL
            else:
                source = SOURCE_VAULT

            repayment = BorrowRepayment(
                borrow_position_id=position.id,
                principal_paid=split.principal_paid,
                interest_paid=split.interest_paid,
                total_paid=repay_amount,
                amount_from_vault=from_vault,
                amount_from_payment=from_payment,
                source=source,
                payment_reference=payment_reference,
                paid_at=now,
            )
            db.session.add(repayment)

            tx = Transaction(
                user_id=user.id,
                type=TX_REPAY,
                amount=repay_amount,
                description=(
                    f"Loan repayment: ${split.principal_paid} principal + ${split.interest_paid} interest"
                ),
                details={
                    "borrow_position_id": position.id,
                    "principal_paid": str(split.principal_paid),
                    "interest_paid": str(split.interest_paid),
                    "is_full_repayment": is_full,
                },
            )
            tx.mark_completed(reference=payment_reference, when=now)
            db.session.add(tx)

        logger.info(
            "Repayment on position %s: %s (interest %s, principal %s)%s",
            position.id, repay_amount, split.interest_paid, split.principal_paid,
            " - fully repaid" if is_full else "",
        )

        self._mirror_repayment(account.wallet_address, repayment, split, unlocked)

        return {
            "repayment": repayment,
            "position": position,
            "unlocked_collateral": unlocked,
            "is_full_repayment": is_full,
            "vault": account,
        }

    def _fund_repayment(self, account, repay_amount, funds_source):
        """Vault first, external source for the shortfall."""
        available = max(ZERO, money(account.available_balance))
        if available >= repay_amount:
            return repay_amount, ZERO
        if funds_source:
            return available, repay_amount - available
        if available > ZERO:
            raise InsufficientFunds(
                "Insufficient vault balance. Please provide a payment method.",
                vault_balance=str(available),
                required=str(repay_amount),
            )
        raise PaymentRequired()

    def _release_collateral(self, user_id, position, now):
        unlocked = []
        for col in position.collaterals:
            if not col.is_locked:
                continue
            col.unlocked_at = now
            holding = get_or_create_holding(user_id, col.property_id, for_update=True)
            holding.quantity += col.amount
            unlocked.append(col)
        vault.release_collateral(position.vault_account, position.collateral_value)
        return unlocked

    def _mirror_repayment(self, wallet, repayment, split, unlocked):
        if not (self.mirror.enabled and wallet):
            return
        ref = call_best_effort("record_repayment", self.mirror.record_repayment, wallet,
                               split.principal_paid, split.interest_paid,
                               ledger_ref=f"repayment:{repayment.id}")
        if ref:
            repayment.mirror_tx_ref = ref
        for col in unlocked:
            if col.token_id is None:
                continue
            ref = call_best_effort("unlock_collateral", self.mirror.unlock_collateral,
                                   wallet, col.token_id, col.amount, ledger_ref=f"collateral:{col.id}")
            if ref:
                col.unlock_tx_ref = ref
        _save_mirror_refs(f"repayment:{repayment.id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def estimate(self, collateral_value, borrow_amount=None):
        return interest.estimate_borrow(
            collateral_value,
            borrow_amount,
            max_ltv_bps=self.settings.max_ltv_bps,
            fee_bps=self.settings.origination_fee_bps,
            interest_rate_bps=self.settings.interest_rate_bps,
            liquidation_threshold_bps=self.settings.liquidation_threshold_bps,
        )

    def get_active_position(self, user_id):
        """Active position with interest accrued up to now (not realized), or None."""
        position = active_position_for(user_id)
        if position is None:
            return None
        accrual = interest.accrue_position(position, self.clock())
        repayments = (
            BorrowRepayment.query
            .filter_by(borrow_position_id=position.id)
            .order_by(BorrowRepayment.paid_at.desc(), BorrowRepayment.id.desc())
            .limit(10)
            .all()
        )
        return {
            **position.serialize(),
            "accrued_interest": str(accrual.total_interest),
            "total_debt": str(accrual.total_debt),
            "interest_rate_bps": int((position.interest_rate * 10000).to_integral_value()),
            "current_ltv_bps": interest.ltv_bps(accrual.total_debt, position.collateral_value),
            "liquidation_threshold_bps": int((position.liquidation_threshold * 10000).to_integral_value()),
            "collaterals": [col.serialize() for col in position.collaterals],
            "recent_repayments": [rep.serialize() for rep in repayments],
        }

    def get_history(self, user_id):
        positions = (
            BorrowPosition.query
            .filter_by(user_id=user_id)
            .order_by(BorrowPosition.borrowed_at.desc(), BorrowPosition.id.desc())
            .all()
        )
        history = []
        for pos in positions:
            total_repaid = sum((money(r.total_paid) for r in pos.repayments), ZERO)
            history.append({
                **pos.serialize(),
                "total_repaid": str(total_repaid),
                "collaterals_count": len(pos.collaterals),
            })
        return history


def active_position_for(user_id, for_update=False):
    query = BorrowPosition.query.filter_by(user_id=user_id, status=POSITION_ACTIVE)
    if for_update:
        query = query.with_for_update()
    return query.first()


def _load_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFound(user_id=user_id)
    return user


def _save_mirror_refs(ledger_ref):
    """Persist mirror tx references; the ledger result stands even if this fails."""
    try:
        with unit_of_work():
            pass
    except SQLAlchemyError as e:
        logger.warning("Could not store mirror references for %s: %s", ledger_ref, e)
