"""Tests for promotion purchase and cancellation."""

import logging
import random
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from promo_credits.core.database import Base
from promo_credits.models.credit_transaction import CreditTransaction
from promo_credits.models.organization import Organization
from promo_credits.models.promotion import Promotion
from promo_credits.models.promotion_package import PromotionPackage
from promo_credits.models.user import User
from promo_credits.services import store
from promo_credits.services.access import Caller
from promo_credits.services.credits import (
    adjust_credits,
    append_entry,
    get_account,
    get_balance,
    update_alert_settings,
    verify_balance,
)
from promo_credits.services.exceptions import (
    DataIntegrityError,
    Forbidden,
    IdempotencyConflict,
    InsufficientCreditsError,
    InvalidState,
    PackageNotFound,
    PromotionAlreadyCancelled,
    PromotionNotFound,
)
from promo_credits.services.promotions import (
    cancel_promotion,
    get_promotion,
    list_active_packages,
    list_promotions,
    purchase_idempotency_key,
    purchase_promotion,
    refund_idempotency_key,
    set_auto_renew,
)
from promo_credits.services.proration import ensure_utc

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entries(db, org_id, kind=None):
    query = db.query(CreditTransaction).filter(CreditTransaction.org_id == org_id)
    if kind is not None:
        query = query.filter(CreditTransaction.kind == kind)
    return query.all()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_lists_active_packages_in_sort_order(self, db, package):
        db.add_all(
            [
                PromotionPackage(
                    name="Retired", slug="retired", duration_days=5, cost_in_credits=10, is_active=False
                ),
                PromotionPackage(
                    name="First", slug="first", duration_days=5, cost_in_credits=10, sort_order=0
                ),
            ]
        )
        db.commit()

        slugs = [p.slug for p in list_active_packages(db)]
        assert slugs == ["first", "ten-day-boost"]


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


class TestPurchase:
    def test_purchase_debits_and_creates_active_promotion(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)

        promotion = purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0).promotion

        assert promotion.status == "active"
        assert promotion.cost_in_credits == 40
        assert ensure_utc(promotion.start_at) == T0
        assert ensure_utc(promotion.end_at) == T0 + timedelta(days=10)
        assert promotion.purchased_by_id == sponsor_caller.id
        assert get_balance(db, org.id) == 60

        [debit] = _entries(db, org.id, "purchase")
        assert debit.amount == -40
        assert debit.related_promotion_id == promotion.id
        assert debit.balance_after == 60

    def test_purchase_by_slug(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        promotion = purchase_promotion(db, org.id, "ten-day-boost", sponsor_caller, now=T0).promotion
        assert promotion.package_id == package.id

    def test_purchase_by_id_string(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        promotion = purchase_promotion(db, org.id, str(package.id), sponsor_caller, now=T0).promotion
        assert promotion.package_id == package.id

    def test_future_start_is_pending(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        start = T0 + timedelta(days=3)

        promotion = purchase_promotion(
            db, org.id, package.id, sponsor_caller, start_at=start, now=T0
        ).promotion

        assert promotion.status == "pending"
        assert ensure_utc(promotion.end_at) == start + timedelta(days=10)
        assert get_balance(db, org.id) == 60

    def test_past_start_is_clamped_to_now(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        promotion = purchase_promotion(
            db, org.id, package.id, sponsor_caller, start_at=T0 - timedelta(days=2), now=T0
        ).promotion
        assert promotion.status == "active"
        assert ensure_utc(promotion.start_at) == T0

    def test_auto_renew_defaults_from_package(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        package.auto_renewal_default = True
        db.commit()

        promotion = purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0).promotion
        assert promotion.auto_renew is True

        other = purchase_promotion(
            db, org.id, package.id, sponsor_caller, auto_renew=False, request_token="second", now=T0
        ).promotion
        assert other.auto_renew is False

    def test_insufficient_credits_leaves_no_trace(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 10)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0)

        assert exc_info.value.required == 40
        assert exc_info.value.available == 10
        assert get_balance(db, org.id) == 10
        assert db.query(Promotion).count() == 0
        assert len(_entries(db, org.id)) == 1

    def test_unknown_package(self, db, org, sponsor_caller, fund):
        fund(org.id, 100)
        with pytest.raises(PackageNotFound):
            purchase_promotion(db, org.id, uuid.uuid4(), sponsor_caller, now=T0)
        with pytest.raises(PackageNotFound):
            purchase_promotion(db, org.id, "no-such-slug", sponsor_caller, now=T0)
        assert get_balance(db, org.id) == 100

    def test_inactive_package(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        package.is_active = False
        db.commit()

        with pytest.raises(PackageNotFound):
            purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0)
        assert get_balance(db, org.id) == 100

    def test_sponsor_of_other_org_is_forbidden(self, db, org, other_org, package, make_user, fund):
        fund(org.id, 100)
        outsider = Caller.from_user(make_user(other_org.id))

        with pytest.raises(Forbidden):
            purchase_promotion(db, org.id, package.id, outsider, now=T0)
        assert get_balance(db, org.id) == 100

    def test_non_sponsor_role_is_forbidden(self, db, org, package, make_user, fund):
        fund(org.id, 100)
        contributor = Caller.from_user(make_user(org.id, role="contributor"))

        with pytest.raises(Forbidden):
            purchase_promotion(db, org.id, package.id, contributor, now=T0)

    def test_admin_may_purchase_for_any_org(self, db, org, package, admin_caller, fund):
        fund(org.id, 100)
        promotion = purchase_promotion(db, org.id, package.id, admin_caller, now=T0).promotion
        assert promotion.org_id == org.id
        assert get_balance(db, org.id) == 60

    def test_retry_with_same_token_debits_once(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)

        first = purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="req-1", now=T0)
        second = purchase_promotion(
            db, org.id, package.id, sponsor_caller, request_token="req-1", now=T0 + timedelta(minutes=5)
        )

        assert not first.replayed
        assert second.replayed
        assert first.promotion.id == second.promotion.id
        assert second.credits_spent == 40
        assert get_balance(db, org.id) == 60
        assert db.query(Promotion).count() == 1

    def test_retry_reports_first_balance(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="req-1", now=T0)
        fund(org.id, 500)

        retry = purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="req-1", now=T0)

        assert retry.new_balance == 60
        assert get_balance(db, org.id) == 560

    def test_retry_after_package_withdrawn_returns_first_purchase(
        self, db, org, package, sponsor_caller, fund
    ):
        fund(org.id, 100)
        first = purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="tok-1", now=T0)
        package.is_active = False
        db.commit()

        retry = purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="tok-1", now=T0)

        assert retry.promotion.id == first.promotion.id
        assert retry.new_balance == 60
        assert get_balance(db, org.id) == 60

    def test_token_reused_for_other_package_conflicts(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        other = PromotionPackage(name="Short Boost", slug="short-boost", duration_days=2, cost_in_credits=5)
        db.add(other)
        db.commit()
        purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="tok-1", now=T0)

        with pytest.raises(IdempotencyConflict):
            purchase_promotion(db, org.id, other.id, sponsor_caller, request_token="tok-1", now=T0)

        assert get_balance(db, org.id) == 60
        assert db.query(Promotion).count() == 1

    def test_repeat_without_token_in_same_window_debits_once(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)

        first = purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0)
        second = purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0 + timedelta(seconds=1))

        assert first.promotion.id == second.promotion.id
        assert get_balance(db, org.id) == 60

    def test_distinct_tokens_are_distinct_purchases(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)

        purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="a", now=T0)
        purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="b", now=T0)

        assert get_balance(db, org.id) == 20
        assert db.query(Promotion).count() == 2

    def test_retry_key_without_promotion_is_integrity_error(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        key = purchase_idempotency_key(org.id, package.id, "orphan", T0)
        append_entry(db, org.id, -5, "purchase", None, key)

        with pytest.raises(DataIntegrityError):
            purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="orphan", now=T0)


class TestLowBalanceAlerts:
    LOGGER = "promo_credits.services.credits"

    def test_purchase_below_threshold_alerts_once_per_day(
        self, db, org, package, sponsor_caller, fund, caplog
    ):
        fund(org.id, 200)

        with caplog.at_level(logging.WARNING, logger=self.LOGGER):
            purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="a", now=T0)
        assert "Low credit balance" in caplog.text
        assert ensure_utc(get_account(db, org.id).last_low_balance_alert_at) == T0

        caplog.clear()
        with caplog.at_level(logging.WARNING, logger=self.LOGGER):
            purchase_promotion(
                db, org.id, package.id, sponsor_caller, request_token="b", now=T0 + timedelta(hours=23)
            )
        assert "Low credit balance" not in caplog.text

        with caplog.at_level(logging.WARNING, logger=self.LOGGER):
            purchase_promotion(
                db, org.id, package.id, sponsor_caller, request_token="c", now=T0 + timedelta(hours=25)
            )
        assert "Low credit balance" in caplog.text
        assert ensure_utc(get_account(db, org.id).last_low_balance_alert_at) == T0 + timedelta(hours=25)

    def test_disabled_alerts_stay_quiet(self, db, org, package, sponsor_caller, fund, caplog):
        fund(org.id, 100)
        update_alert_settings(db, org.id, enabled=False)

        with caplog.at_level(logging.WARNING, logger=self.LOGGER):
            purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0)

        assert "Low credit balance" not in caplog.text
        assert get_account(db, org.id).last_low_balance_alert_at is None

    def test_org_threshold_overrides_default(self, db, org, package, sponsor_caller, fund, caplog):
        fund(org.id, 100)
        update_alert_settings(db, org.id, threshold=50)

        with caplog.at_level(logging.WARNING, logger=self.LOGGER):
            purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0)

        # 60 left, threshold 50
        assert "Low credit balance" not in caplog.text


def test_purchase_key_prefers_request_token():
    org_id, package_id = uuid.uuid4(), uuid.uuid4()
    assert purchase_idempotency_key(org_id, package_id, "tok", T0) == "purchase:tok"

    in_window = purchase_idempotency_key(org_id, package_id, None, T0)
    assert in_window == purchase_idempotency_key(org_id, package_id, None, T0 + timedelta(seconds=1))
    assert in_window != purchase_idempotency_key(org_id, package_id, None, T0 + timedelta(minutes=5))


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.fixture
def bought(db, org, package, sponsor_caller, fund):
    """100 credits funded, then the 40-credit 10-day package bought at T0."""
    fund(org.id, 100)
    return purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0).promotion


class TestCancel:
    def test_midway_cancel_refunds_unused_half(self, db, org, bought, sponsor_caller):
        result = cancel_promotion(db, bought.id, sponsor_caller, "Changed plans", now=T0 + timedelta(days=5))

        assert result.credits_refunded == 20
        assert result.new_balance == 80
        assert get_balance(db, org.id) == 80

        db.refresh(bought)
        assert bought.status == "cancelled"
        assert bought.credits_refunded == 20
        assert bought.cancel_reason == "Changed plans"
        assert bought.cancelled_by_id == sponsor_caller.id
        assert ensure_utc(bought.cancelled_at) == T0 + timedelta(days=5)

        [refund] = _entries(db, org.id, "refund")
        assert refund.amount == 20
        assert refund.related_promotion_id == bought.id
        assert refund.idempotency_key == refund_idempotency_key(bought.id)
        assert "5 days remaining" in refund.description

    def test_cancel_at_start_refunds_everything(self, db, org, bought, sponsor_caller):
        result = cancel_promotion(db, bought.id, sponsor_caller, now=T0)
        assert result.credits_refunded == 40
        assert result.new_balance == 100

    def test_cancel_pending_refunds_everything(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        promotion = purchase_promotion(
            db, org.id, package.id, sponsor_caller, start_at=T0 + timedelta(days=2), now=T0
        ).promotion

        result = cancel_promotion(db, promotion.id, sponsor_caller, now=T0 + timedelta(days=1))

        assert result.credits_refunded == 40
        assert get_balance(db, org.id) == 100

    def test_late_cancel_can_refund_zero(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 100)
        package.cost_in_credits = 1
        db.commit()
        promotion = purchase_promotion(db, org.id, package.id, sponsor_caller, now=T0).promotion

        result = cancel_promotion(db, promotion.id, sponsor_caller, now=T0 + timedelta(days=9))

        assert result.credits_refunded == 0
        assert len(_entries(db, org.id, "refund")) == 1
        db.refresh(promotion)
        assert promotion.status == "cancelled"

    def test_second_cancel_reports_first_result(self, db, org, bought, sponsor_caller):
        first = cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=5))

        with pytest.raises(PromotionAlreadyCancelled) as exc_info:
            cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=6))

        assert exc_info.value.credits_refunded == first.credits_refunded
        assert exc_info.value.new_balance == first.new_balance
        assert isinstance(exc_info.value, InvalidState)
        assert len(_entries(db, org.id, "refund")) == 1
        assert get_balance(db, org.id) == 80

    def test_cancel_after_end_is_invalid(self, db, org, bought, sponsor_caller):
        with pytest.raises(InvalidState):
            cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=10))
        assert get_balance(db, org.id) == 60
        assert _entries(db, org.id, "refund") == []

    def test_cancel_expired_is_invalid(self, db, org, bought, sponsor_caller):
        store.update_promotion(db, bought, status="expired")
        db.commit()

        with pytest.raises(InvalidState) as exc_info:
            cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=1))

        assert exc_info.value.status == "expired"
        assert get_balance(db, org.id) == 60

    def test_cancel_unknown_promotion(self, db, sponsor_caller):
        with pytest.raises(PromotionNotFound):
            cancel_promotion(db, uuid.uuid4(), sponsor_caller, now=T0)

    def test_cancel_by_other_org_is_forbidden(self, db, org, other_org, bought, make_user):
        outsider = Caller.from_user(make_user(other_org.id))

        with pytest.raises(Forbidden):
            cancel_promotion(db, bought.id, outsider, now=T0 + timedelta(days=1))

        db.refresh(bought)
        assert bought.status == "active"
        assert get_balance(db, org.id) == 60

    def test_admin_may_cancel(self, db, org, bought, admin_caller):
        result = cancel_promotion(db, bought.id, admin_caller, now=T0 + timedelta(days=5))
        assert result.new_balance == 80
        db.refresh(bought)
        assert bought.cancelled_by_id == admin_caller.id

    def test_refund_without_status_change_is_completed(self, db, org, bought, sponsor_caller):
        append_entry(
            db,
            org.id,
            17,
            "refund",
            bought.id,
            refund_idempotency_key(bought.id),
            performed_by_id=sponsor_caller.id,
        )

        result = cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=1))

        assert result.credits_refunded == 17
        assert result.new_balance == 77
        assert len(_entries(db, org.id, "refund")) == 1
        db.refresh(bought)
        assert bought.status == "cancelled"
        assert bought.credits_refunded == 17
        assert bought.cancelled_at is not None

    def test_price_change_does_not_touch_existing_promotion(self, db, org, package, bought, sponsor_caller):
        package.cost_in_credits = 400
        package.duration_days = 30
        db.commit()

        result = cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=5))

        assert result.credits_refunded == 20
        db.refresh(bought)
        assert bought.cost_in_credits == 40
        assert ensure_utc(bought.end_at) == T0 + timedelta(days=10)


class TestLedgerInvariants:
    def test_random_purchases_and_cancels_keep_ledger_consistent(self, db, org, package, sponsor_caller, fund):
        rng = random.Random(1234)
        fund(org.id, 150)
        live: list[uuid.UUID] = []

        for step in range(60):
            now = T0 + timedelta(hours=step)
            if live and rng.random() < 0.4:
                promotion_id = live.pop(rng.randrange(len(live)))
                cancel_promotion(db, promotion_id, sponsor_caller, now=now)
            else:
                try:
                    promotion = purchase_promotion(
                        db, org.id, package.id, sponsor_caller, request_token=f"step-{step}", now=now
                    ).promotion
                except InsufficientCreditsError:
                    continue
                live.append(promotion.id)

            assert get_balance(db, org.id) >= 0
            assert verify_balance(db, org.id).is_valid

        refunds = _entries(db, org.id, "refund")
        assert len(refunds) == len({r.related_promotion_id for r in refunds})
        for refund in refunds:
            promotion = db.get(Promotion, refund.related_promotion_id)
            assert promotion.status == "cancelled"
            assert 0 <= refund.amount <= promotion.cost_in_credits


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file-backed SQLite database, one connection per session."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


def _run_in_threads(count, work):
    """Start ``count`` threads on ``work(n)`` together; return (results, errors)."""
    barrier = threading.Barrier(count, timeout=10)
    results, errors = [], []
    guard = threading.Lock()

    def runner(n):
        barrier.wait()
        try:
            outcome = work(n)
        except Exception as exc:
            with guard:
                errors.append(exc)
        else:
            with guard:
                results.append(outcome)

    threads = [threading.Thread(target=runner, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestConcurrency:
    WORKERS = 6

    @pytest.fixture
    def shop(self, file_sessions):
        """An org funded for all but one purchase of a 40-credit package."""
        db = file_sessions()
        organization = Organization(name="Busy Org")
        db.add(organization)
        db.flush()
        buyer = User(
            email="buyer@example.com",
            name="Buyer",
            role="sponsor_admin",
            org_id=organization.id,
            is_verified=True,
        )
        pkg = PromotionPackage(name="Ten Day Boost", slug="ten-day-boost", duration_days=10, cost_in_credits=40)
        db.add_all([buyer, pkg])
        db.commit()
        adjust_credits(db, organization.id, 40 * (self.WORKERS - 1), idempotency_key="seed")
        shop = (organization.id, pkg.id, Caller.from_user(buyer))
        db.close()
        return shop

    def test_concurrent_purchases_cannot_overdraw(self, file_sessions, shop):
        org_id, package_id, caller = shop

        def buy(n):
            db = file_sessions()
            try:
                return purchase_promotion(
                    db, org_id, package_id, caller, request_token=f"buyer-{n}", now=T0
                ).new_balance
            finally:
                db.close()

        balances, errors = _run_in_threads(self.WORKERS, buy)

        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientCreditsError)
        assert sorted(balances) == [40 * i for i in range(self.WORKERS - 1)]

        db = file_sessions()
        try:
            assert get_balance(db, org_id) == 0
            assert verify_balance(db, org_id).is_valid
            assert db.query(Promotion).count() == self.WORKERS - 1
        finally:
            db.close()

    def test_concurrent_cancels_refund_once(self, file_sessions, shop):
        org_id, package_id, caller = shop
        db = file_sessions()
        promotion_id = purchase_promotion(db, org_id, package_id, caller, now=T0).promotion.id
        db.close()

        def cancel(n):
            db = file_sessions()
            try:
                return cancel_promotion(db, promotion_id, caller, now=T0 + timedelta(days=5))
            finally:
                db.close()

        results, errors = _run_in_threads(self.WORKERS, cancel)

        assert len(results) == 1
        assert results[0].credits_refunded == 20
        assert len(errors) == self.WORKERS - 1
        assert all(isinstance(exc, PromotionAlreadyCancelled) for exc in errors)
        assert all(exc.new_balance == results[0].new_balance for exc in errors)

        db = file_sessions()
        try:
            assert len(_entries(db, org_id, "refund")) == 1
            assert get_balance(db, org_id) == 40 * (self.WORKERS - 2) + 20
            assert verify_balance(db, org_id).is_valid
        finally:
            db.close()


# ---------------------------------------------------------------------------
# Queries and settings
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_own_promotion(self, db, bought, sponsor_caller):
        assert get_promotion(db, bought.id, sponsor_caller).id == bought.id

    def test_other_org_promotion_looks_missing(self, db, other_org, bought, make_user):
        outsider = Caller.from_user(make_user(other_org.id))
        with pytest.raises(PromotionNotFound):
            get_promotion(db, bought.id, outsider)

    def test_list_filters_by_status(self, db, org, package, sponsor_caller, fund):
        fund(org.id, 200)
        first = purchase_promotion(
            db, org.id, package.id, sponsor_caller, request_token="a", now=T0
        ).promotion
        purchase_promotion(db, org.id, package.id, sponsor_caller, request_token="b", now=T0)
        cancel_promotion(db, first.id, sponsor_caller, now=T0 + timedelta(days=1))

        items, total = list_promotions(db, sponsor_caller)
        assert total == 2

        items, total = list_promotions(db, sponsor_caller, status="cancelled")
        assert total == 1
        assert items[0].id == first.id

    def test_list_requires_organization(self, db, admin_caller):
        with pytest.raises(Forbidden):
            list_promotions(db, admin_caller)


class TestAutoRenew:
    def test_toggle_auto_renew(self, db, bought, sponsor_caller):
        promotion = set_auto_renew(db, bought.id, sponsor_caller, True)
        assert promotion.auto_renew is True

    def test_cancelled_promotion_cannot_be_changed(self, db, bought, sponsor_caller):
        cancel_promotion(db, bought.id, sponsor_caller, now=T0 + timedelta(days=1))
        with pytest.raises(InvalidState):
            set_auto_renew(db, bought.id, sponsor_caller, True)
