from propledger.extensions import db
from propledger.utils.money import ZERO, money_str, utcnow

RENT_PENDING = 'PENDING'
RENT_COMPLETED = 'COMPLETED'

RUN_RUNNING = 'RUNNING'
RUN_COMPLETED = 'COMPLETED'
RUN_PARTIAL = 'PARTIAL'
RUN_FAILED = 'FAILED'

RUN_TYPE_MANUAL = 'MANUAL'
RUN_TYPE_SCHEDULED = 'SCHEDULED'


class RentPayment(db.Model):
    __tablename__ = 'rent_payments'

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)

    # Income period
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    # Financial details
    gross_amount = db.Column(db.Numeric(20, 6), nullable=False)
    management_fee = db.Column(db.Numeric(20, 6), nullable=False)
    net_amount = db.Column(db.Numeric(20, 6), nullable=False)
    per_token_amount = db.Column(db.Numeric(28, 12), nullable=False)

    status = db.Column(db.String(20), default=RENT_PENDING, nullable=False, index=True)
    distributed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    property = db.relationship('Property')
    distributions = db.relationship('RentDistribution', backref='rent_payment', lazy=True)

    def __repr__(self):
        return f'<RentPayment {self.id}: property {self.property_id}, ${self.net_amount} {self.status}>'

    def serialize(self):
        return {
            "id": self.id,
            "property_id": self.property_id,
            "property_name": self.property.name if self.property else None,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "gross_amount": money_str(self.gross_amount),
            "management_fee": money_str(self.management_fee),
            "net_amount": money_str(self.net_amount),
            "per_token_amount": str(self.per_token_amount),
            "status": self.status,
            "distributed_at": self.distributed_at.isoformat() if self.distributed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class RentDistribution(db.Model):
    """Audit row of one holder's share of one rent payment. Immutable."""
    __tablename__ = 'rent_distributions'
    __table_args__ = (
        db.UniqueConstraint('rent_payment_id', 'user_id', name='uq_distribution_payment_user'),
    )

    id = db.Column(db.Integer, primary_key=True)
    rent_payment_id = db.Column(db.Integer, db.ForeignKey('rent_payments.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    holding_id = db.Column(db.Integer, db.ForeignKey('holdings.id'), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)
    borrow_position_id = db.Column(db.Integer, db.ForeignKey('borrow_positions.id'), nullable=True)

    tokens_held = db.Column(db.Integer, nullable=False)
    total_tokens = db.Column(db.Integer, nullable=False)
    ownership_percent = db.Column(db.Numeric(12, 10), nullable=False)

    gross_amount = db.Column(db.Numeric(20, 6), nullable=False)
    interest_deducted = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    net_amount = db.Column(db.Numeric(20, 6), nullable=False)

    distributed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<RentDistribution {self.id}: user {self.user_id}, net ${self.net_amount}>'

    def serialize(self):
        payment = self.rent_payment
        return {
            "id": self.id,
            "rent_payment_id": self.rent_payment_id,
            "property_id": self.property_id,
            "borrow_position_id": self.borrow_position_id,
            "tokens_held": self.tokens_held,
            "total_tokens": self.total_tokens,
            "ownership_percent": str(self.ownership_percent),
            "gross_amount": money_str(self.gross_amount),
            "interest_deducted": money_str(self.interest_deducted),
            "net_amount": money_str(self.net_amount),
            "distributed_at": self.distributed_at.isoformat() if self.distributed_at else None,
            "period": {
                "start": payment.period_start.isoformat(),
                "end": payment.period_end.isoformat(),
            } if payment else None,
        }


class DistributionRun(db.Model):
    __tablename__ = 'distribution_runs'

    id = db.Column(db.Integer, primary_key=True)
    run_type = db.Column(db.String(20), nullable=False)  # 'MANUAL', 'SCHEDULED'
    triggered_by = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(20), default=RUN_RUNNING, nullable=False, index=True)

    # Aggregates
    properties_processed = db.Column(db.Integer, default=0, nullable=False)
    rent_payments_processed = db.Column(db.Integer, default=0, nullable=False)
    holders_distributed = db.Column(db.Integer, default=0, nullable=False)
    total_gross_distributed = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    total_interest_deducted = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    total_net_distributed = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    errors = db.Column(db.JSON, default=list)

    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<DistributionRun {self.id}: {self.status}>'

    def serialize(self):
        return {
            "id": self.id,
            "run_type": self.run_type,
            "triggered_by": self.triggered_by,
            "status": self.status,
            "properties_processed": self.properties_processed,
            "rent_payments_processed": self.rent_payments_processed,
            "holders_distributed": self.holders_distributed,
            "total_gross_distributed": money_str(self.total_gross_distributed),
            "total_interest_deducted": money_str(self.total_interest_deducted),
            "total_net_distributed": money_str(self.total_net_distributed),
            "errors": list(self.errors or []),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
