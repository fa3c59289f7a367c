# scripts/seed_demo.py
# Seed a demo property, an admin, an approved investor with holdings, and print JWTs for both.
from decimal import Decimal

from flask_jwt_extended import create_access_token

from propledger import create_app, db
from propledger.models import Property, User
from propledger.models.user import KYC_APPROVED
from propledger.services.holdings import record_purchase
from propledger.services.vault import get_or_create_vault

ADMIN_EMAIL = "admin@example.com"
INVESTOR_EMAIL = "investor@example.com"

app = create_app("development")
with app.app_context():
    db.create_all()

    prop = Property.query.filter_by(token_id=1).first()
    if not prop:
        prop = Property(name="Maple Court Duplex", location="Austin, TX",
                        token_id=1, token_price=Decimal("50.00"), total_tokens=1000)
        db.session.add(prop)

    admin = User.query.filter_by(email=ADMIN_EMAIL).first()
    if not admin:
        admin = User(email=ADMIN_EMAIL, role="admin", kyc_status=KYC_APPROVED)
        db.session.add(admin)

    investor = User.query.filter_by(email=INVESTOR_EMAIL).first()
    if not investor:
        investor = User(email=INVESTOR_EMAIL, role="investor", kyc_status=KYC_APPROVED)
        db.session.add(investor)
    db.session.commit()

    get_or_create_vault(investor.id)
    db.session.commit()
    if not investor.holdings:
        record_purchase(investor.id, prop.id, 200)

    for user in (admin, investor):
        token = create_access_token(identity=str(user.id), additional_claims={"role": user.role, "email": user.email})
        print(f"{user.email} ({user.role}): {token}")
