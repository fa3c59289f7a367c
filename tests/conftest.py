"""
conftest.py - Shared pytest fixtures for ledger tests

- an app bound to an in-memory SQLite database, rebuilt per test
- a controllable clock shared by the app and the engines
- recording fakes for the chain mirror and the funds provider
- factories for users, properties and holdings
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from propledger import create_app
from propledger.config import TestingConfig
from propledger.errors import FundsProviderError, MirrorError
from propledger.extensions import db
from propledger.models import Property, User
from propledger.models.user import KYC_APPROVED, KYC_PENDING
from propledger.services import BorrowEngine, LendingSettings, RentDistributionEngine
from propledger.services.holdings import record_purchase
from propledger.services.vault import get_or_create_vault

START = datetime(2026, 1, 1, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingMirror:
    """Chain mirror that records calls and can be told to fail some of them."""

    def __init__(self, enabled=True, fail_on=()):
        self.enabled = enabled
        self.fail_on = set(fail_on)
        self.calls = []

    def _record(self, op, *args):
        self.calls.append((op,) + args)
        if op in self.fail_on:
            raise MirrorError(f"{op} reverted")
        return f"0x{op}{len(self.calls)}"

    def lock_collateral(self, wallet, token_id, amount):
        return self._record("lock_collateral", wallet, token_id, amount)

    def unlock_collateral(self, wallet, token_id, amount):
        return self._record("unlock_collateral", wallet, token_id, amount)

    def issue_loan(self, wallet, amount, rate_bps):
        return self._record("issue_loan", wallet, amount, rate_bps)

    def record_repayment(self, wallet, principal_paid, interest_paid):
        return self._record("record_repayment", wallet, principal_paid, interest_paid)

    def set_asset_price(self, token_id, price):
        return self._record("set_asset_price", token_id, price)

    def ops(self):
        return [c[0] for c in self.calls]


class RecordingFunds:
    def __init__(self, fail_payout=False, fail_charge=False):
        self.fail_payout = fail_payout
        self.fail_charge = fail_charge
        self.payouts = []
        self.charges = []

    def payout(self, destination, amount, metadata=None):
        self.payouts.append((destination, amount, metadata))
        if self.fail_payout:
            raise FundsProviderError("payouts disabled")
        return f"tr_{len(self.payouts)}"

    def charge(self, source, amount, customer_id=None, metadata=None):
        self.charges.append((source, amount, customer_id, metadata))
        if self.fail_charge:
            raise FundsProviderError("card declined")
        return f"pi_{len(self.charges)}"


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def app(clock):
    app = create_app(TestingConfig, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mirror():
    return RecordingMirror()


@pytest.fixture
def funds():
    return RecordingFunds()


@pytest.fixture
def settings():
    return LendingSettings()


@pytest.fixture
def borrow_engine(app, mirror, funds, settings, clock):
    return BorrowEngine(mirror, funds, settings=settings, clock=clock)


@pytest.fixture
def rent_engine(app, clock):
    return RentDistributionEngine(clock=clock)


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(kyc=KYC_APPROVED, role="investor", payout_destination=None, wallet=None):
        counter["n"] += 1
        user = User(email=f"user{counter['n']}@example.com", role=role, kyc_status=kyc,
                    payout_destination=payout_destination)
        db.session.add(user)
        db.session.commit()
        if wallet:
            account = get_or_create_vault(user.id)
            account.wallet_address = wallet
            db.session.commit()
        return user

    return _make


@pytest.fixture
def make_property(app):
    counter = {"n": 0}

    def _make(token_price="50", total_tokens=1000, token_id=None):
        counter["n"] += 1
        prop = Property(
            name=f"Property {counter['n']}",
            location="Austin, TX",
            token_id=token_id if token_id is not None else 100 + counter["n"],
            token_price=Decimal(token_price),
            total_tokens=total_tokens,
        )
        db.session.add(prop)
        db.session.commit()
        return prop

    return _make


@pytest.fixture
def give_tokens(app):
    def _give(user, prop, quantity):
        return record_purchase(user.id, prop.id, quantity)
    return _give


@pytest.fixture
def investor(make_user):
    return make_user()


@pytest.fixture
def unverified(make_user):
    return make_user(kyc=KYC_PENDING)


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        token = create_access_token(identity=str(user.id),
                                    additional_claims={"role": user.role, "email": user.email})
        return {"Authorization": f"Bearer {token}"}
    return _headers
