from propledger.extensions import db
from propledger.utils.money import ZERO, money_str, utcnow


class VaultAccount(db.Model):
    __tablename__ = 'vault_accounts'
    __table_args__ = (
        db.CheckConstraint('locked_balance >= 0 AND locked_balance <= total_balance',
                           name='ck_vault_locked_within_total'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)

    # Balances; available = total - locked is derived, never stored
    total_balance = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    locked_balance = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    # Lifetime counters
    total_deposited = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    total_withdrawn = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    total_earned = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    wallet_address = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='vault_account')

    def __repr__(self):
        return f'<VaultAccount {self.id}: user {self.user_id}, total {self.total_balance}, locked {self.locked_balance}>'

    @property
    def available_balance(self):
        return (self.total_balance or ZERO) - (self.locked_balance or ZERO)

    def serialize(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": money_str(self.total_balance),
            "locked_balance": money_str(self.locked_balance),
            "available_balance": money_str(self.available_balance),
            "total_deposited": money_str(self.total_deposited),
            "total_withdrawn": money_str(self.total_withdrawn),
            "total_earned": money_str(self.total_earned),
            "wallet_address": self.wallet_address,
        }
