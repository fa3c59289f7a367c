from propledger.extensions import db
from propledger.utils.money import ZERO, money_str, utcnow

TX_DEPOSIT = 'DEPOSIT'
TX_WITHDRAWAL = 'WITHDRAWAL'
TX_BORROW = 'BORROW'
TX_REPAY = 'REPAY'
TX_RENT_DISTRIBUTION = 'RENT_DISTRIBUTION'

TX_PENDING = 'PENDING'
TX_PROCESSING = 'PROCESSING'
TX_COMPLETED = 'COMPLETED'
TX_FAILED = 'FAILED'


class Transaction(db.Model):
    """User-facing journal of every money movement the ledger performs."""
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=True)

    type = db.Column(db.String(30), nullable=False, index=True)
    status = db.Column(db.String(20), default=TX_PENDING, nullable=False)

    amount = db.Column(db.Numeric(20, 6), nullable=False)
    fee = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    currency = db.Column(db.String(10), default='USDC', nullable=False)

    reference = db.Column(db.String(120), nullable=True)  # payout / charge / tx hash
    description = db.Column(db.String(255), nullable=True)
    details = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<Transaction {self.id}: {self.type} ${self.amount} - {self.status}>'

    def mark_completed(self, reference=None, when=None):
        self.status = TX_COMPLETED
        self.completed_at = when or utcnow()
        if reference:
            self.reference = reference

    def serialize(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "property_id": self.property_id,
            "type": self.type,
            "status": self.status,
            "amount": money_str(self.amount),
            "fee": money_str(self.fee),
            "currency": self.currency,
            "reference": self.reference,
            "description": self.description,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
