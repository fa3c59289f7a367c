"""
Rent distribution engine.

A rent payment is spread across every holder with free tokens in the
property, pro rata by quantity. A holder with an active borrow position has
their accrued interest collected from their share first; what is left lands
in their vault. Each payment is processed in a single unit of work, so it is
either fully distributed or untouched.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func

from propledger.errors import InvalidRequest, PropertyNotFound
from propledger.extensions import db, unit_of_work
from propledger.models import Holding, Property, RentDistribution, RentPayment, Transaction
from propledger.models.rent import RENT_COMPLETED, RENT_PENDING
from propledger.models.transaction import TX_RENT_DISTRIBUTION
from propledger.services import interest, vault
from propledger.services.borrow import active_position_for
from propledger.utils.money import (
    PER_TOKEN_PLACES, ZERO, money, money_str, rate, to_decimal, utcnow,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


@dataclass
class HolderShare:
    holding: Holding
    tokens_held: int
    ownership: Decimal
    gross: Decimal
    interest_deducted: Decimal
    net: Decimal
    position: object = None
    accrual: interest.Accrual = None

    def serialize(self):
        return {
            "user_id": self.holding.user_id,
            "holding_id": self.holding.id,
            "tokens_held": self.tokens_held,
            "ownership_percent": str(self.ownership),
            "gross_amount": money_str(self.gross),
            "interest_deducted": money_str(self.interest_deducted),
            "net_amount": money_str(self.net),
            "borrow_position_id": self.position.id if self.position is not None else None,
        }


@dataclass
class PaymentResult:
    rent_payment_id: int
    property_id: int
    dry_run: bool = False
    skipped: bool = False
    shares: list = field(default_factory=list)

    @property
    def holders(self):
        return len(self.shares)

    @property
    def total_gross(self):
        return sum((s.gross for s in self.shares), ZERO)

    @property
    def total_interest_deducted(self):
        return sum((s.interest_deducted for s in self.shares), ZERO)

    @property
    def total_net(self):
        return sum((s.net for s in self.shares), ZERO)

    def serialize(self):
        return {
            "rent_payment_id": self.rent_payment_id,
            "property_id": self.property_id,
            "dry_run": self.dry_run,
            "skipped": self.skipped,
            "holders": self.holders,
            "total_gross": money_str(self.total_gross),
            "total_interest_deducted": money_str(self.total_interest_deducted),
            "total_net": money_str(self.total_net),
            "distributions": [s.serialize() for s in self.shares],
        }


class RentDistributionEngine:
    def __init__(self, clock=utcnow, default_management_fee_percent=10):
        self.clock = clock
        self.default_management_fee_percent = to_decimal(default_management_fee_percent)

    @classmethod
    def from_config(cls, config, clock=utcnow):
        return cls(clock=clock,
                   default_management_fee_percent=config.get("DEFAULT_MANAGEMENT_FEE_PERCENT", 10))

    def create_rent_payment(self, property_id, period_start, period_end, gross_amount,
                            management_fee_percent=None):
        gross = money(gross_amount)
        if gross <= ZERO:
            raise InvalidRequest("Gross amount must be positive")
        if period_end < period_start:
            raise InvalidRequest("Period end must not be before period start",
                                 period_start=period_start.isoformat(), period_end=period_end.isoformat())
        pct = self.default_management_fee_percent if management_fee_percent is None \
            else to_decimal(management_fee_percent)
        if pct < ZERO or pct > HUNDRED:
            raise InvalidRequest("Management fee percent must be between 0 and 100")

        with unit_of_work():
            prop = db.session.get(Property, property_id)
            if prop is None:
                raise PropertyNotFound(property_id=property_id)
            if not prop.total_tokens or prop.total_tokens <= 0:
                raise InvalidRequest("Property has no tokens", property_id=property_id)

            fee = money(gross * pct / HUNDRED)
            net = gross - fee
            payment = RentPayment(
                property_id=prop.id,
                period_start=period_start,
                period_end=period_end,
                gross_amount=gross,
                management_fee=fee,
                net_amount=net,
                per_token_amount=(net / prop.total_tokens).quantize(PER_TOKEN_PLACES),
                status=RENT_PENDING,
            )
            db.session.add(payment)

        logger.info("Recorded rent payment %s for property %s: net %s", payment.id, prop.id, net)
        return payment

    def pending_payments(self, property_ids=None):
        query = RentPayment.query.filter_by(status=RENT_PENDING)
        if property_ids is not None:
            query = query.filter(RentPayment.property_id.in_(property_ids))
        return query.order_by(RentPayment.period_start, RentPayment.id).all()

    def process_rent_payment(self, payment_id, dry_run=False, interest_owed=None):
        """
        Distribute one PENDING payment.

        A dry run writes nothing. Pass the same `interest_owed` dict to every
        dry-run call of a batch: it carries each position's remaining interest
        from one payment to the next, the way committed payments do.
        """
        if dry_run:
            payment = db.session.get(RentPayment, payment_id)
            if payment is None:
                raise InvalidRequest("Rent payment not found", rent_payment_id=payment_id)
            result = PaymentResult(payment.id, payment.property_id, dry_run=True)
            if payment.status != RENT_PENDING:
                result.skipped = True
                return result
            result.shares = self._compute_shares(payment, self.clock(), lock_rows=False,
                                                 interest_owed=interest_owed)
            return result

        with unit_of_work():
            payment = RentPayment.query.filter_by(id=payment_id).with_for_update().first()
            if payment is None:
                raise InvalidRequest("Rent payment not found", rent_payment_id=payment_id)
            result = PaymentResult(payment.id, payment.property_id)
            # another run got here first
            if payment.status != RENT_PENDING:
                logger.info("Rent payment %s already %s, skipping", payment.id, payment.status)
                result.skipped = True
                return result

            now = self.clock()
            result.shares = self._compute_shares(payment, now, lock_rows=True)
            for share in result.shares:
                self._apply_share(payment, share, now)

            payment.status = RENT_COMPLETED
            payment.distributed_at = now

        logger.info(
            "Distributed rent payment %s to %s holders: gross %s, interest %s, net %s",
            result.rent_payment_id, result.holders, result.total_gross,
            result.total_interest_deducted, result.total_net,
        )
        return result

    def _compute_shares(self, payment, now, lock_rows, interest_owed=None):
        total_tokens = payment.property.total_tokens
        per_token = to_decimal(payment.per_token_amount)

        query = Holding.query.filter(Holding.property_id == payment.property_id, Holding.quantity > 0)
        if lock_rows:
            query = query.with_for_update()
        shares = []
        for holding in query.order_by(Holding.id).all():
            gross = money(holding.quantity * per_token)
            deducted = ZERO
            accrual = None
            position = active_position_for(holding.user_id, for_update=lock_rows)
            if position is not None and money(position.principal) > ZERO:
                accrual = interest.accrue_position(position, now)
                owed = accrual.total_interest
                if interest_owed is not None:
                    owed = interest_owed.get(position.id, owed)
                deducted = min(gross, owed)
                if interest_owed is not None:
                    interest_owed[position.id] = owed - deducted
            else:
                position = None
            shares.append(HolderShare(
                holding=holding,
                tokens_held=holding.quantity,
                ownership=rate(Decimal(holding.quantity) / Decimal(total_tokens)),
                gross=gross,
                interest_deducted=deducted,
                net=gross - deducted,
                position=position,
                accrual=accrual,
            ))
        return shares

    def _apply_share(self, payment, share, now):
        holding = share.holding
        if share.position is not None:
            # accrual is realized even when nothing was deducted
            share.position.accrued_interest = max(ZERO, share.accrual.total_interest - share.interest_deducted)
            share.position.last_interest_update = now

        db.session.add(RentDistribution(
            rent_payment_id=payment.id,
            user_id=holding.user_id,
            holding_id=holding.id,
            property_id=payment.property_id,
            borrow_position_id=share.position.id if share.position is not None else None,
            tokens_held=share.tokens_held,
            total_tokens=payment.property.total_tokens,
            ownership_percent=share.ownership,
            gross_amount=share.gross,
            interest_deducted=share.interest_deducted,
            net_amount=share.net,
            distributed_at=now,
        ))

        account = vault.get_or_create_vault(holding.user_id, for_update=True)
        vault.credit(account, share.net, counter="earned")

        tx = Transaction(
            user_id=holding.user_id,
            property_id=payment.property_id,
            type=TX_RENT_DISTRIBUTION,
            amount=share.net,
            fee=share.interest_deducted,
            description=(
                f"Rent for {payment.period_start.isoformat()} - {payment.period_end.isoformat()}"
                + (f" (interest deducted ${share.interest_deducted})" if share.interest_deducted > ZERO else "")
            ),
            details={
                "rent_payment_id": payment.id,
                "tokens_held": share.tokens_held,
                "gross_amount": str(share.gross),
                "interest_deducted": str(share.interest_deducted),
                "borrow_position_id": share.position.id if share.position is not None else None,
            },
        )
        tx.mark_completed(when=now)
        db.session.add(tx)

        holding.rent_earned = money(holding.rent_earned or ZERO) + share.net
        holding.last_rent_date = now

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_rent_payments(self, property_id=None, status=None, limit=50, offset=0):
        query = RentPayment.query
        if property_id is not None:
            query = query.filter_by(property_id=property_id)
        if status:
            query = query.filter_by(status=status)
        total = query.count()
        items = (
            query.order_by(RentPayment.period_start.desc(), RentPayment.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    def get_user_distributions(self, user_id, property_id=None, limit=50, offset=0):
        query = RentDistribution.query.filter_by(user_id=user_id)
        if property_id is not None:
            query = query.filter_by(property_id=property_id)
        total = query.count()
        items = (
            query.order_by(RentDistribution.distributed_at.desc(), RentDistribution.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    def get_user_summary(self, user_id):
        rows = (
            db.session.query(
                RentDistribution.property_id,
                func.count(RentDistribution.id),
                func.sum(RentDistribution.gross_amount),
                func.sum(RentDistribution.interest_deducted),
                func.sum(RentDistribution.net_amount),
                func.max(RentDistribution.distributed_at),
            )
            .filter(RentDistribution.user_id == user_id)
            .group_by(RentDistribution.property_id)
            .order_by(RentDistribution.property_id)
            .all()
        )
        names = dict(
            db.session.query(Property.id, Property.name)
            .filter(Property.id.in_([r[0] for r in rows]))
            .all()
        ) if rows else {}

        by_property = []
        total_gross = total_interest = total_net = ZERO
        count = 0
        for property_id, n, gross, deducted, net, last in rows:
            gross, deducted, net = money(gross), money(deducted), money(net)
            total_gross += gross
            total_interest += deducted
            total_net += net
            count += n
            by_property.append({
                "property_id": property_id,
                "property_name": names.get(property_id),
                "distributions": n,
                "total_gross": str(gross),
                "total_interest_deducted": str(deducted),
                "total_earned": str(net),
                "last_distribution": last.isoformat() if last else None,
            })

        account = vault.get_vault(user_id)
        return {
            "total_earned": str(total_net),
            "total_gross": str(total_gross),
            "total_interest_paid": str(total_interest),
            "distributions_count": count,
            "properties_count": len(by_property),
            "by_property": by_property,
            "vault": account.serialize() if account else None,
        }
