from propledger.extensions import db
from propledger.utils.money import money_str, utcnow


class Property(db.Model):
    __tablename__ = 'properties'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)

    # Tokenization
    token_id = db.Column(db.Integer, unique=True, nullable=True)  # on-chain token id
    token_price = db.Column(db.Numeric(20, 6), nullable=False)
    total_tokens = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default='active')  # active, inactive, sold
    created_at = db.Column(db.DateTime, default=utcnow)

    holdings = db.relationship('Holding', back_populates='property', lazy=True)

    def __repr__(self):
        return f'<Property {self.id}: {self.name}>'

    def serialize(self):
        return {
            'id': self.id,
            'name': self.name,
            'location': self.location,
            'token_id': self.token_id,
            'token_price': money_str(self.token_price),
            'total_tokens': self.total_tokens,
            'status': self.status,
        }
