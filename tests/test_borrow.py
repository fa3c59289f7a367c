"""
Borrow engine: origination validation order, disbursement, mirroring,
repayment waterfall, funding sources and full repayment release.
"""
from decimal import Decimal

import pytest

from propledger.errors import (
    ActivePositionExists, ExceedsDebt, ExceedsLtv, InsufficientCollateral, InsufficientFunds,
    InvalidRequest, KycRequired, NoFundsDestination, PaymentFailed, PaymentRequired,
    PositionNotFound, UserNotFound,
)
from propledger.extensions import db
from propledger.models import BorrowCollateral, BorrowPosition, BorrowRepayment, Transaction
from propledger.models.borrow import POSITION_ACTIVE, POSITION_REPAID, SOURCE_EXTERNAL, SOURCE_MIXED, SOURCE_VAULT
from propledger.models.transaction import TX_BORROW, TX_COMPLETED, TX_PROCESSING, TX_REPAY
from propledger.services import BorrowEngine, CollateralItem, LendingSettings
from propledger.services.holdings import get_holding
from propledger.services.vault import credit, get_vault

# 2000 at 8% accrues exactly $30 over this many seconds
THIRTY_DOLLARS = 5_913_000


@pytest.fixture
def prop(make_property):
    return make_property(token_price="50", total_tokens=1000, token_id=7)


@pytest.fixture
def holder(investor, prop, give_tokens):
    give_tokens(investor, prop, 200)
    return investor


def open_default(engine, user, prop, tokens=100, amount="2000"):
    return engine.open_position(user.id, [CollateralItem(prop.id, tokens)], Decimal(amount))


def row_counts():
    return (
        BorrowPosition.query.count(),
        BorrowCollateral.query.count(),
        Transaction.query.count(),
    )


def top_up(user, amount="100"):
    credit(get_vault(user.id), Decimal(amount))
    db.session.commit()


class TestOpenPositionValidation:

    def test_unknown_user(self, borrow_engine, prop):
        with pytest.raises(UserNotFound):
            borrow_engine.open_position(999, [CollateralItem(prop.id, 1)], Decimal("10"))

    def test_kyc_checked_before_collateral(self, borrow_engine, unverified, prop):
        # no tokens either, but KYC wins
        with pytest.raises(KycRequired):
            open_default(borrow_engine, unverified, prop)

    def test_collateral_summed_per_property(self, borrow_engine, investor, prop, give_tokens):
        give_tokens(investor, prop, 100)
        with pytest.raises(InsufficientCollateral) as exc:
            borrow_engine.open_position(
                investor.id,
                [CollateralItem(prop.id, 60), CollateralItem(prop.id, 60)],
                Decimal("100"),
            )
        assert exc.value.details["requested"] == 120
        assert exc.value.details["available"] == 100
        assert get_holding(investor.id, prop.id).quantity == 100

    def test_collateral_checked_before_active_position(self, borrow_engine, holder, prop):
        open_default(borrow_engine, holder, prop)
        with pytest.raises(InsufficientCollateral):
            open_default(borrow_engine, holder, prop, tokens=150, amount="10")

    def test_one_active_position_per_user(self, borrow_engine, holder, prop):
        first = open_default(borrow_engine, holder, prop)
        with pytest.raises(ActivePositionExists) as exc:
            open_default(borrow_engine, holder, prop, tokens=50, amount="10")
        assert exc.value.details["existing_position_id"] == first["position"].id
        assert BorrowPosition.query.filter_by(user_id=holder.id, status=POSITION_ACTIVE).count() == 1

    def test_ltv_limit(self, borrow_engine, holder, prop):
        before = row_counts()
        with pytest.raises(ExceedsLtv) as exc:
            open_default(borrow_engine, holder, prop, amount="2500.01")
        assert exc.value.details["max_borrowable"] == "2500.000000"
        assert row_counts() == before
        assert get_holding(holder.id, prop.id).quantity == 200

        # exactly at the limit is fine
        result = open_default(borrow_engine, holder, prop, amount="2500")
        assert result["position"].principal == Decimal("2500")

    def test_payout_destination_required_when_configured(self, app, mirror, funds, clock, holder, prop):
        engine = BorrowEngine(mirror, funds, settings=LendingSettings(require_payout_destination=True), clock=clock)
        with pytest.raises(NoFundsDestination):
            open_default(engine, holder, prop)
        assert BorrowPosition.query.count() == 0

    def test_non_positive_amounts(self, borrow_engine, holder, prop):
        with pytest.raises(InvalidRequest):
            open_default(borrow_engine, holder, prop, amount="0")
        with pytest.raises(InvalidRequest):
            open_default(borrow_engine, holder, prop, tokens=0)
        with pytest.raises(InvalidRequest):
            borrow_engine.open_position(holder.id, [], Decimal("10"))


class TestOpenPosition:

    def test_worked_example(self, borrow_engine, holder, prop, clock):
        result = open_default(borrow_engine, holder, prop)
        position = result["position"]

        assert position.principal == Decimal("2000")
        assert position.collateral_value == Decimal("5000")
        assert position.collateral_ratio == Decimal("0.4")
        assert position.interest_rate == Decimal("0.08")
        assert position.liquidation_threshold == Decimal("0.75")
        assert position.borrowed_at == clock.now
        assert position.last_interest_update == clock.now

        d = result["disbursement"]
        assert d["origination_fee"] == Decimal("20")
        assert d["net_amount"] == Decimal("1980")
        assert d["method"] == "vault_credit"

        # pledged tokens leave the free quantity
        assert get_holding(holder.id, prop.id).quantity == 100

        collateral = BorrowCollateral.query.one()
        assert collateral.amount == 100
        assert collateral.token_id == 7
        assert collateral.value_at_lock == Decimal("5000")

    def test_collateral_escrowed_and_proceeds_credited(self, borrow_engine, holder, prop):
        open_default(borrow_engine, holder, prop)
        account = get_vault(holder.id)
        assert account.locked_balance == Decimal("5000")
        assert account.total_balance == Decimal("6980")
        assert account.available_balance == Decimal("1980")
        assert account.total_deposited == Decimal("1980")

        tx = Transaction.query.filter_by(type=TX_BORROW).one()
        assert tx.amount == Decimal("2000")
        assert tx.fee == Decimal("20")
        assert tx.status == TX_COMPLETED

    def test_payout_to_destination(self, borrow_engine, make_user, prop, give_tokens, funds):
        user = make_user(payout_destination="acct_42")
        give_tokens(user, prop, 100)

        result = open_default(borrow_engine, user, prop)

        assert result["disbursement"]["method"] == "bank_transfer"
        assert result["disbursement"]["payout_id"] == "tr_1"
        assert funds.payouts[0][:2] == ("acct_42", Decimal("1980"))
        account = get_vault(user.id)
        assert account.available_balance == 0
        tx = Transaction.query.filter_by(type=TX_BORROW).one()
        assert tx.status == TX_PROCESSING
        assert tx.reference == "tr_1"

    def test_failed_payout_falls_back_to_vault(self, borrow_engine, make_user, prop, give_tokens, funds):
        funds.fail_payout = True
        user = make_user(payout_destination="acct_42")
        give_tokens(user, prop, 100)

        result = open_default(borrow_engine, user, prop)

        assert result["disbursement"]["method"] == "vault_credit"
        assert get_vault(user.id).available_balance == Decimal("1980")

    def test_mirror_receives_lock_then_loan(self, borrow_engine, make_user, prop, give_tokens, mirror):
        user = make_user(wallet="0xabc")
        give_tokens(user, prop, 100)

        result = open_default(borrow_engine, user, prop)

        assert mirror.ops() == ["set_asset_price", "lock_collateral", "issue_loan"]
        assert mirror.calls[1] == ("lock_collateral", "0xabc", 7, 100)
        assert mirror.calls[0] == ("set_asset_price", 7, Decimal("50"))
        db.session.expire_all()
        assert db.session.get(BorrowPosition, result["position"].id).loan_tx_ref == "0xissue_loan3"
        assert BorrowCollateral.query.one().lock_tx_ref == "0xlock_collateral2"

    def test_loan_not_mirrored_when_lock_fails(self, borrow_engine, make_user, prop, give_tokens, mirror):
        mirror.fail_on.add("lock_collateral")
        user = make_user(wallet="0xabc")
        give_tokens(user, prop, 100)

        result = open_default(borrow_engine, user, prop)

        assert "issue_loan" not in mirror.ops()
        assert result["position"].status == POSITION_ACTIVE
        assert result["position"].loan_tx_ref is None
        assert BorrowCollateral.query.one().lock_tx_ref is None

    def test_mirror_skipped_without_wallet(self, borrow_engine, holder, prop, mirror):
        open_default(borrow_engine, holder, prop)
        assert mirror.calls == []


class TestRepay:

    def test_interest_only_payment(self, borrow_engine, holder, prop, clock):
        position = open_default(borrow_engine, holder, prop)["position"]
        clock.advance(seconds=THIRTY_DOLLARS)

        result = borrow_engine.repay_position(holder.id, position.id, Decimal("25"))

        repayment = result["repayment"]
        assert repayment.interest_paid == Decimal("25")
        assert repayment.principal_paid == Decimal("0")
        assert repayment.source == SOURCE_VAULT
        assert result["position"].principal == Decimal("2000")
        assert result["position"].accrued_interest == Decimal("5")
        assert result["position"].last_interest_update == clock.now
        assert not result["is_full_repayment"]

    def test_more_than_debt_refused(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop)["position"]
        with pytest.raises(ExceedsDebt):
            borrow_engine.repay_position(holder.id, position.id, Decimal("2020.01"))
        assert BorrowRepayment.query.count() == 0

    def test_slight_overpayment_capped_at_debt(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop)["position"]
        top_up(holder)

        result = borrow_engine.repay_position(holder.id, position.id, Decimal("2010"))

        assert result["repayment"].total_paid == Decimal("2000")
        assert result["is_full_repayment"]

    def test_full_repayment_releases_collateral(self, borrow_engine, make_user, prop, give_tokens, mirror, clock):
        user = make_user(wallet="0xabc")
        give_tokens(user, prop, 200)
        position = open_default(borrow_engine, user, prop)["position"]
        top_up(user)
        clock.advance(seconds=THIRTY_DOLLARS)
        mirror.calls.clear()

        result = borrow_engine.repay_position(user.id, position.id, Decimal("2030"))

        position = result["position"]
        assert result["is_full_repayment"]
        assert position.status == POSITION_REPAID
        assert position.repaid_at == clock.now
        assert position.principal == 0
        assert position.accrued_interest == 0
        assert result["repayment"].interest_paid == Decimal("30")
        assert result["repayment"].principal_paid == Decimal("2000")

        assert get_holding(user.id, prop.id).quantity == 200
        assert all(c.unlocked_at == clock.now for c in BorrowCollateral.query.all())

        account = get_vault(user.id)
        assert account.locked_balance == 0
        # 1980 proceeds + 100 top-up - 2030 repaid
        assert account.total_balance == Decimal("50")

        assert mirror.ops() == ["record_repayment", "unlock_collateral"]
        assert mirror.calls[0] == ("record_repayment", "0xabc", Decimal("2000"), Decimal("30"))

        tx = Transaction.query.filter_by(type=TX_REPAY).one()
        assert tx.status == TX_COMPLETED
        assert tx.details["is_full_repayment"] is True

    def test_residue_below_a_cent_counts_as_full(self, borrow_engine, holder, prop, clock):
        position = open_default(borrow_engine, holder, prop)["position"]
        top_up(holder)

        result = borrow_engine.repay_position(holder.id, position.id, Decimal("1999.995"))

        assert result["is_full_repayment"]
        assert result["position"].status == POSITION_REPAID

    def test_restores_holding_row_if_missing(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop, tokens=200, amount="1000")["position"]
        top_up(holder)
        db.session.delete(get_holding(holder.id, prop.id))
        db.session.commit()

        borrow_engine.repay_position(holder.id, position.id, Decimal("1000"))

        assert get_holding(holder.id, prop.id).quantity == 200

    def test_other_users_position_not_found(self, borrow_engine, holder, prop, make_user):
        position = open_default(borrow_engine, holder, prop)["position"]
        stranger = make_user()
        with pytest.raises(PositionNotFound):
            borrow_engine.repay_position(stranger.id, position.id, Decimal("10"))

    def test_repaid_position_not_found(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop, amount="1000")["position"]
        top_up(holder)
        borrow_engine.repay_position(holder.id, position.id, Decimal("1000"))
        with pytest.raises(PositionNotFound):
            borrow_engine.repay_position(holder.id, position.id, Decimal("1"))


class TestRepayFunding:

    def test_vault_short_without_source(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop)["position"]
        with pytest.raises(InsufficientFunds):
            borrow_engine.repay_position(holder.id, position.id, Decimal("1990"))

    def test_empty_vault_without_source(self, borrow_engine, make_user, prop, give_tokens):
        user = make_user(payout_destination="acct_1")
        give_tokens(user, prop, 100)
        position = open_default(borrow_engine, user, prop)["position"]
        with pytest.raises(PaymentRequired):
            borrow_engine.repay_position(user.id, position.id, Decimal("100"))

    def test_external_source_covers_everything(self, borrow_engine, make_user, prop, give_tokens, funds):
        user = make_user(payout_destination="acct_1")
        give_tokens(user, prop, 100)
        position = open_default(borrow_engine, user, prop)["position"]

        result = borrow_engine.repay_position(user.id, position.id, Decimal("100"), funds_source="pm_card")

        assert result["repayment"].source == SOURCE_EXTERNAL
        assert result["repayment"].amount_from_payment == Decimal("100")
        assert result["repayment"].payment_reference == "pi_1"
        assert funds.charges[0][:2] == ("pm_card", Decimal("100"))

    def test_mixed_funding(self, borrow_engine, holder, prop, funds):
        position = open_default(borrow_engine, holder, prop)["position"]

        result = borrow_engine.repay_position(holder.id, position.id, Decimal("2000"), funds_source="pm_card")

        repayment = result["repayment"]
        assert repayment.source == SOURCE_MIXED
        assert repayment.amount_from_vault == Decimal("1980")
        assert repayment.amount_from_payment == Decimal("20")
        assert funds.charges[0][1] == Decimal("20")
        assert get_vault(holder.id).total_balance == 0

    def test_declined_charge_changes_nothing(self, borrow_engine, holder, prop, funds):
        position = open_default(borrow_engine, holder, prop)["position"]
        funds.fail_charge = True

        with pytest.raises(PaymentFailed):
            borrow_engine.repay_position(holder.id, position.id, Decimal("2000"), funds_source="pm_card")

        account = get_vault(holder.id)
        assert account.total_balance == Decimal("6980")
        assert db.session.get(BorrowPosition, position.id).status == POSITION_ACTIVE
        assert BorrowRepayment.query.count() == 0


class TestQueries:

    def test_active_position_shows_live_interest(self, borrow_engine, holder, prop, clock):
        open_default(borrow_engine, holder, prop)
        clock.advance(seconds=THIRTY_DOLLARS)

        view = borrow_engine.get_active_position(holder.id)

        assert view["accrued_interest"] == "30.000000"
        assert view["total_debt"] == "2030.000000"
        assert view["interest_rate_bps"] == 800
        assert view["current_ltv_bps"] == 4060
        assert len(view["collaterals"]) == 1
        # reading does not realize
        assert BorrowPosition.query.one().accrued_interest == 0

    def test_no_active_position(self, borrow_engine, investor):
        assert borrow_engine.get_active_position(investor.id) is None

    def test_history_includes_repaid(self, borrow_engine, holder, prop):
        position = open_default(borrow_engine, holder, prop, amount="1000")["position"]
        top_up(holder)
        borrow_engine.repay_position(holder.id, position.id, Decimal("400"))
        borrow_engine.repay_position(holder.id, position.id, Decimal("600"))

        history = borrow_engine.get_history(holder.id)

        assert len(history) == 1
        assert history[0]["status"] == POSITION_REPAID
        assert history[0]["total_repaid"] == "1000.000000"
        assert history[0]["collaterals_count"] == 1
