from propledger.extensions import db
from propledger.utils.money import utcnow

KYC_PENDING = 'PENDING'
KYC_APPROVED = 'APPROVED'
KYC_REJECTED = 'REJECTED'


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(db.String(50), default='investor')  # 'investor', 'admin'

    # KYC result is written by the verification service; the ledger only reads it
    kyc_status = db.Column(db.String(20), default=KYC_PENDING, nullable=False)

    # External funds-provider identifiers
    payout_destination = db.Column(db.String(120), nullable=True)  # connected account / bank ref
    funds_customer_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    vault_account = db.relationship('VaultAccount', back_populates='user', uselist=False)
    holdings = db.relationship('Holding', back_populates='user', lazy=True)

    def __repr__(self):
        return f'<User {self.id}: {self.email}>'

    @property
    def is_kyc_approved(self):
        return self.kyc_status == KYC_APPROVED

    def serialize(self):
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "kyc_status": self.kyc_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
