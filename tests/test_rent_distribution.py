"""
Rent distribution: payment creation, pro-rata split, interest deduction,
conservation, idempotence and dry runs.
"""
from datetime import date
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings as hsettings
from hypothesis import strategies as st

from propledger.errors import InvalidRequest, PropertyNotFound
from propledger.extensions import db
from propledger.models import BorrowPosition, RentDistribution, RentPayment, Transaction
from propledger.models.rent import RENT_COMPLETED, RENT_PENDING
from propledger.models.transaction import TX_RENT_DISTRIBUTION
from propledger.services import CollateralItem
from propledger.services.holdings import get_holding
from propledger.services.vault import get_vault

THIRTY_DOLLARS = 5_913_000
JAN = (date(2026, 1, 1), date(2026, 1, 31))


@pytest.fixture
def prop(make_property):
    return make_property(token_price="50", total_tokens=1000, token_id=7)


def pay(engine, prop, gross="5000", fee="0"):
    return engine.create_rent_payment(prop.id, JAN[0], JAN[1], Decimal(gross), management_fee_percent=fee)


class TestCreateRentPayment:

    def test_default_management_fee(self, rent_engine, prop):
        payment = rent_engine.create_rent_payment(prop.id, *JAN, Decimal("10000"))
        assert payment.status == RENT_PENDING
        assert payment.management_fee == Decimal("1000")
        assert payment.net_amount == Decimal("9000")
        assert payment.per_token_amount == Decimal("9")

    def test_per_token_keeps_twelve_places(self, rent_engine, make_property):
        prop = make_property(total_tokens=7)
        payment = pay(rent_engine, prop, gross="100")
        assert payment.per_token_amount == Decimal("14.285714285714")

    def test_unknown_property(self, rent_engine):
        with pytest.raises(PropertyNotFound):
            rent_engine.create_rent_payment(999, *JAN, Decimal("100"))

    def test_inverted_period(self, rent_engine, prop):
        with pytest.raises(InvalidRequest):
            rent_engine.create_rent_payment(prop.id, JAN[1], JAN[0], Decimal("100"))
        assert RentPayment.query.count() == 0

    def test_fee_out_of_range(self, rent_engine, prop):
        with pytest.raises(InvalidRequest):
            pay(rent_engine, prop, fee="101")


class TestProcessRentPayment:

    def test_pro_rata_split(self, rent_engine, prop, make_user, give_tokens, clock):
        alice, bob = make_user(), make_user()
        give_tokens(alice, prop, 100)
        give_tokens(bob, prop, 300)
        payment = pay(rent_engine, prop)

        result = rent_engine.process_rent_payment(payment.id)

        assert result.holders == 2
        assert result.total_gross == Decimal("2000")
        rows = {d.user_id: d for d in RentDistribution.query.all()}
        assert rows[alice.id].gross_amount == Decimal("500")
        assert rows[alice.id].ownership_percent == Decimal("0.1")
        assert rows[bob.id].net_amount == Decimal("1500")
        assert rows[bob.id].interest_deducted == 0

        assert get_vault(bob.id).total_balance == Decimal("1500")
        assert get_vault(bob.id).total_earned == Decimal("1500")
        holding = get_holding(bob.id, prop.id)
        assert holding.rent_earned == Decimal("1500")
        assert holding.last_rent_date == clock.now

        payment = db.session.get(RentPayment, payment.id)
        assert payment.status == RENT_COMPLETED
        assert payment.distributed_at == clock.now

    def test_interest_collected_from_borrower(self, rent_engine, borrow_engine, prop, investor, give_tokens, clock):
        give_tokens(investor, prop, 200)
        position = borrow_engine.open_position(investor.id, [CollateralItem(prop.id, 100)], Decimal("2000"))["position"]
        clock.advance(seconds=THIRTY_DOLLARS)
        payment = pay(rent_engine, prop)

        rent_engine.process_rent_payment(payment.id)

        row = RentDistribution.query.one()
        # only the 100 free tokens earn rent
        assert row.tokens_held == 100
        assert row.gross_amount == Decimal("500")
        assert row.interest_deducted == Decimal("30")
        assert row.net_amount == Decimal("470")
        assert row.borrow_position_id == position.id

        position = db.session.get(BorrowPosition, position.id)
        assert position.accrued_interest == 0
        assert position.last_interest_update == clock.now
        assert position.principal == Decimal("2000")

        account = get_vault(investor.id)
        # 1980 proceeds + 5000 escrow + 470 rent
        assert account.total_balance == Decimal("7450")
        assert account.total_earned == Decimal("470")

        tx = Transaction.query.filter_by(type=TX_RENT_DISTRIBUTION).one()
        assert tx.amount == Decimal("470")
        assert tx.fee == Decimal("30")

    def test_interest_larger_than_rent(self, rent_engine, borrow_engine, prop, investor, give_tokens, clock):
        give_tokens(investor, prop, 110)
        borrow_engine.open_position(investor.id, [CollateralItem(prop.id, 100)], Decimal("2000"))
        clock.advance(seconds=THIRTY_DOLLARS)
        payment = pay(rent_engine, prop, gross="2000")  # $2 per token, $20 for 10 tokens

        rent_engine.process_rent_payment(payment.id)

        row = RentDistribution.query.one()
        assert row.gross_amount == Decimal("20")
        assert row.interest_deducted == Decimal("20")
        assert row.net_amount == 0
        assert BorrowPosition.query.one().accrued_interest == Decimal("10")
        # zero still produces a journal entry
        tx = Transaction.query.filter_by(type=TX_RENT_DISTRIBUTION).one()
        assert tx.amount == 0
        assert get_vault(investor.id).total_earned == 0

    def test_one_day_of_interest_deducted(self, rent_engine, borrow_engine, prop, investor,
                                          give_tokens, clock):
        give_tokens(investor, prop, 200)
        borrow_engine.open_position(investor.id, [CollateralItem(prop.id, 100)], Decimal("2000"))
        payment = pay(rent_engine, prop)
        clock.advance(days=1)

        rent_engine.process_rent_payment(payment.id)

        position = BorrowPosition.query.one()
        assert position.last_interest_update == clock.now
        row = RentDistribution.query.one()
        assert row.interest_deducted == Decimal("0.438356")

    def test_zero_quantity_holders_skipped(self, rent_engine, prop, make_user, give_tokens):
        alice, bob = make_user(), make_user()
        give_tokens(alice, prop, 10)
        give_tokens(bob, prop, 10)
        get_holding(bob.id, prop.id).quantity = 0
        db.session.commit()

        result = rent_engine.process_rent_payment(pay(rent_engine, prop).id)

        assert result.holders == 1
        assert RentDistribution.query.filter_by(user_id=bob.id).count() == 0

    def test_no_holders_still_completes(self, rent_engine, prop):
        payment = pay(rent_engine, prop)
        result = rent_engine.process_rent_payment(payment.id)
        assert result.holders == 0
        assert db.session.get(RentPayment, payment.id).status == RENT_COMPLETED

    @given(
        quantities=st.lists(st.integers(min_value=1, max_value=500), min_size=1, max_size=6),
        gross=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=2),
        fee=st.decimals(min_value=0, max_value=100, places=1),
    )
    @hsettings(max_examples=30, deadline=None,
               suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_conservation(self, rent_engine, make_property, make_user, give_tokens, quantities, gross, fee):
        """
        PROPERTY: when every token is held, the holders' gross shares add up
        to the payment's net amount and their ownership to one, within
        rounding; each share splits exactly into deducted interest and net.
        """
        prop = make_property(total_tokens=sum(quantities))
        for qty in quantities:
            give_tokens(make_user(), prop, qty)
        payment = pay(rent_engine, prop, gross=str(gross), fee=str(fee))

        rent_engine.process_rent_payment(payment.id)

        rows = RentDistribution.query.filter_by(rent_payment_id=payment.id).all()
        assert len(rows) == len(quantities)
        total = sum((r.gross_amount for r in rows), Decimal("0"))
        assert abs(total - payment.net_amount) <= Decimal("0.00001")
        ownership = sum((r.ownership_percent for r in rows), Decimal("0"))
        assert abs(ownership - 1) <= Decimal("1e-9")
        for r in rows:
            assert r.interest_deducted + r.net_amount == r.gross_amount

    def test_second_pass_is_a_no_op(self, rent_engine, prop, investor, give_tokens):
        give_tokens(investor, prop, 100)
        payment = pay(rent_engine, prop)

        first = rent_engine.process_rent_payment(payment.id)
        second = rent_engine.process_rent_payment(payment.id)

        assert not first.skipped
        assert second.skipped
        assert RentDistribution.query.count() == 1
        assert get_vault(investor.id).total_balance == Decimal("500")

    def test_dry_run_writes_nothing(self, rent_engine, borrow_engine, prop, investor, give_tokens, clock):
        give_tokens(investor, prop, 200)
        borrow_engine.open_position(investor.id, [CollateralItem(prop.id, 100)], Decimal("2000"))
        clock.advance(seconds=THIRTY_DOLLARS)
        payment = pay(rent_engine, prop)
        balance = get_vault(investor.id).total_balance

        result = rent_engine.process_rent_payment(payment.id, dry_run=True)

        assert result.dry_run
        assert result.total_net == Decimal("470")
        assert result.total_interest_deducted == Decimal("30")
        db.session.expire_all()
        assert RentDistribution.query.count() == 0
        assert db.session.get(RentPayment, payment.id).status == RENT_PENDING
        assert get_vault(investor.id).total_balance == balance
        assert BorrowPosition.query.one().accrued_interest == 0

    def test_unknown_payment(self, rent_engine):
        with pytest.raises(InvalidRequest):
            rent_engine.process_rent_payment(12345)


class TestQueries:

    def test_pending_payments_filtered_by_property(self, rent_engine, prop, make_property):
        other = make_property()
        p1 = pay(rent_engine, prop)
        pay(rent_engine, other)
        assert [p.id for p in rent_engine.pending_payments([prop.id])] == [p1.id]
        assert len(rent_engine.pending_payments()) == 2
        # an explicit empty filter matches nothing
        assert rent_engine.pending_payments([]) == []

    def test_user_distributions_and_summary(self, rent_engine, prop, make_property, investor, give_tokens):
        second = make_property(total_tokens=100)
        give_tokens(investor, prop, 100)
        give_tokens(investor, second, 10)
        rent_engine.process_rent_payment(pay(rent_engine, prop).id)
        rent_engine.process_rent_payment(pay(rent_engine, second, gross="1000").id)

        items, total = rent_engine.get_user_distributions(investor.id)
        assert total == 2
        assert {d.property_id for d in items} == {prop.id, second.id}

        items, total = rent_engine.get_user_distributions(investor.id, property_id=second.id)
        assert total == 1
        assert items[0].net_amount == Decimal("100")

        summary = rent_engine.get_user_summary(investor.id)
        assert summary["total_earned"] == "600.000000"
        assert summary["total_interest_paid"] == "0.000000"
        assert summary["distributions_count"] == 2
        assert summary["properties_count"] == 2
        assert summary["vault"]["balance"] == "600.000000"

    def test_list_rent_payments(self, rent_engine, prop):
        pay(rent_engine, prop)
        done = pay(rent_engine, prop)
        rent_engine.process_rent_payment(done.id)

        items, total = rent_engine.list_rent_payments(property_id=prop.id, status=RENT_COMPLETED)
        assert total == 1
        assert items[0].id == done.id
