from propledger.extensions import db
from propledger.utils.money import ZERO, money_str, utcnow

POSITION_ACTIVE = 'ACTIVE'
POSITION_REPAID = 'REPAID'

SOURCE_VAULT = 'VAULT'
SOURCE_EXTERNAL = 'EXTERNAL'
SOURCE_MIXED = 'MIXED'


class BorrowPosition(db.Model):
    __tablename__ = 'borrow_positions'
    __table_args__ = (
        # at most one ACTIVE position per user, enforced by the database as well
        db.Index(
            'uq_borrow_positions_one_active', 'user_id', unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    vault_account_id = db.Column(db.Integer, db.ForeignKey('vault_accounts.id'), nullable=False)

    # Debt
    principal = db.Column(db.Numeric(20, 6), nullable=False)
    interest_rate = db.Column(db.Numeric(12, 10), nullable=False)  # annual, fractional (0.08)
    accrued_interest = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    # Collateral snapshot at origination
    collateral_value = db.Column(db.Numeric(20, 6), nullable=False)
    collateral_ratio = db.Column(db.Numeric(12, 10), nullable=False)  # LTV at origination
    liquidation_threshold = db.Column(db.Numeric(12, 10), nullable=False)

    status = db.Column(db.String(20), default=POSITION_ACTIVE, nullable=False, index=True)

    borrowed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_interest_update = db.Column(db.DateTime, nullable=True)
    repaid_at = db.Column(db.DateTime, nullable=True)

    loan_tx_ref = db.Column(db.String(120), nullable=True)  # mirror reference

    vault_account = db.relationship('VaultAccount')
    collaterals = db.relationship('BorrowCollateral', backref='position', lazy=True,
                                  order_by='BorrowCollateral.id')
    repayments = db.relationship('BorrowRepayment', backref='position', lazy=True,
                                 order_by='BorrowRepayment.id')

    def __repr__(self):
        return f'<BorrowPosition {self.id}: user {self.user_id}, ${self.principal} {self.status}>'

    @property
    def is_active(self):
        return self.status == POSITION_ACTIVE

    @property
    def accrual_start(self):
        return self.last_interest_update or self.borrowed_at

    def serialize(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "principal": money_str(self.principal),
            "interest_rate": str(self.interest_rate),
            "accrued_interest": money_str(self.accrued_interest),
            "collateral_value": money_str(self.collateral_value),
            "ltv_ratio": str(self.collateral_ratio),
            "liquidation_threshold": str(self.liquidation_threshold),
            "status": self.status,
            "borrowed_at": self.borrowed_at.isoformat() if self.borrowed_at else None,
            "last_interest_update": self.last_interest_update.isoformat() if self.last_interest_update else None,
            "repaid_at": self.repaid_at.isoformat() if self.repaid_at else None,
            "loan_tx_ref": self.loan_tx_ref,
        }


class BorrowCollateral(db.Model):
    __tablename__ = 'borrow_collaterals'

    id = db.Column(db.Integer, primary_key=True)
    borrow_position_id = db.Column(db.Integer, db.ForeignKey('borrow_positions.id'), nullable=False, index=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False)
    token_id = db.Column(db.Integer, nullable=True)

    amount = db.Column(db.Integer, nullable=False)  # tokens pledged
    value_at_lock = db.Column(db.Numeric(20, 6), nullable=False)
    current_value = db.Column(db.Numeric(20, 6), nullable=False)

    locked_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    unlocked_at = db.Column(db.DateTime, nullable=True)

    lock_tx_ref = db.Column(db.String(120), nullable=True)
    unlock_tx_ref = db.Column(db.String(120), nullable=True)

    def __repr__(self):
        return f'<BorrowCollateral {self.id}: property {self.property_id} x{self.amount}>'

    @property
    def is_locked(self):
        return self.unlocked_at is None

    def serialize(self):
        return {
            "id": self.id,
            "property_id": self.property_id,
            "token_id": self.token_id,
            "amount": self.amount,
            "value_at_lock": money_str(self.value_at_lock),
            "current_value": money_str(self.current_value),
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
            "lock_tx_ref": self.lock_tx_ref,
            "unlock_tx_ref": self.unlock_tx_ref,
        }


class BorrowRepayment(db.Model):
    """Append-only; rows are never updated after insert except for the mirror reference."""
    __tablename__ = 'borrow_repayments'

    id = db.Column(db.Integer, primary_key=True)
    borrow_position_id = db.Column(db.Integer, db.ForeignKey('borrow_positions.id'), nullable=False, index=True)

    principal_paid = db.Column(db.Numeric(20, 6), nullable=False)
    interest_paid = db.Column(db.Numeric(20, 6), nullable=False)
    total_paid = db.Column(db.Numeric(20, 6), nullable=False)
    amount_from_vault = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    amount_from_payment = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    source = db.Column(db.String(20), nullable=False)  # 'VAULT', 'EXTERNAL', 'MIXED'
    payment_reference = db.Column(db.String(120), nullable=True)
    mirror_tx_ref = db.Column(db.String(120), nullable=True)

    paid_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<BorrowRepayment {self.id}: ${self.total_paid} on position {self.borrow_position_id}>'

    def serialize(self):
        return {
            "id": self.id,
            "borrow_position_id": self.borrow_position_id,
            "principal_paid": money_str(self.principal_paid),
            "interest_paid": money_str(self.interest_paid),
            "total_paid": money_str(self.total_paid),
            "amount_from_vault": money_str(self.amount_from_vault),
            "amount_from_payment": money_str(self.amount_from_payment),
            "source": self.source,
            "payment_reference": self.payment_reference,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
