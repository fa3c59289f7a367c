from propledger.extensions import db
from propledger.utils.money import ZERO, money_str, utcnow


class Holding(db.Model):
    __tablename__ = 'holdings'
    __table_args__ = (db.UniqueConstraint('user_id', 'property_id', name='uq_holding_user_property'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False, index=True)

    quantity = db.Column(db.Integer, default=0, nullable=False)  # free tokens; pledged ones are removed
    average_cost = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    total_invested = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)

    rent_earned = db.Column(db.Numeric(20, 6), default=ZERO, nullable=False)
    last_rent_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='holdings')
    property = db.relationship('Property', back_populates='holdings')

    def __repr__(self):
        return f'<Holding {self.id}: user {self.user_id}, property {self.property_id}, qty {self.quantity}>'

    def serialize(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "property_id": self.property_id,
            "quantity": self.quantity,
            "average_cost": money_str(self.average_cost),
            "total_invested": money_str(self.total_invested),
            "rent_earned": money_str(self.rent_earned),
            "last_rent_date": self.last_rent_date.isoformat() if self.last_rent_date else None,
        }
