from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from subscription_service.config import RazorpaySettings
from subscription_service.models.billing import Invoice, UserPlanHistory
from subscription_service.models.user import User
from subscription_service.services.payment_service import PaymentService
from subscription_service.services.result import ErrorKind

pytestmark = pytest.mark.asyncio


def make_service(db, gateway, clock, **overrides):
    options = RazorpaySettings(key_id="rzp_test_key", key_secret="rzp_test_secret", **overrides)
    return PaymentService(db, gateway, options=options, clock=clock, default_plan_id="growth")


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestCreateOrder:
    async def test_records_pending_order(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)

        result = await service.create_order(user.id, 49900, "growth", "Growth", "inr")

        assert result.ok
        assert result.value.order_id == "order_0001"
        assert result.value.amount == 49900
        assert result.value.currency == "INR"
        assert user.pending_order_id == "order_0001"
        assert user.pending_order_created_at == clock.now()
        assert user.pending_plan_id == "growth"
        assert user.pending_plan_name == "Growth"
        assert user.pending_plan_amount == Decimal("499.00")
        assert user.pending_plan_currency == "INR"

    async def test_defaults_amount_and_plan_name(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)

        result = await service.create_order(user.id, amount_in_paise=0, plan_id="growth")

        assert result.value.amount == 49900
        assert gateway.orders[0]["amount"] == 49900
        assert user.pending_plan_name == "Growth"

    async def test_unknown_plan(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        result = await make_service(db_session, gateway, clock).create_order(user.id, plan_id="enterprise")
        assert result.error == ErrorKind.PLAN_NOT_FOUND
        assert gateway.orders == []

    async def test_gateway_failure(self, db_session, gateway, clock, create_user):
        user = await create_user()
        gateway.fail_create = True
        result = await make_service(db_session, gateway, clock).create_order(user.id)
        assert result.error == ErrorKind.GATEWAY_UNAVAILABLE
        assert user.pending_order_id is None

    async def test_every_call_opens_a_new_order(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        first = await service.create_order(user.id, 49900, "growth")
        second = await service.create_order(user.id, 49900, "growth")
        assert first.value.order_id != second.value.order_id
        assert user.pending_order_id == second.value.order_id

    async def test_reuse_window(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock, order_reuse_minutes=30)
        first = await service.create_order(user.id, 49900, "growth")

        clock.advance(minutes=10)
        again = await service.create_order(user.id, 49900, "growth")
        assert again.value.reused is True
        assert again.value.order_id == first.value.order_id
        assert len(gateway.orders) == 1

        different_amount = await service.create_order(user.id, 99900, "growth")
        assert different_amount.value.reused is False

        clock.advance(minutes=31)
        stale = await service.create_order(user.id, 99900, "growth")
        assert stale.value.reused is False
        assert len(gateway.orders) == 3


class TestVerifyPayment:
    async def test_signed_checkout_activates_plan(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth", "Growth", "INR")).value

        result = await service.verify_payment(
            user.id, "pay_123", order.order_id, gateway.sign(order.order_id, "pay_123")
        )

        assert result.ok
        assert result.value.already_applied is False
        user = result.value.user
        assert user.is_subscribed is True
        assert user.subscription_id == "pay_123"
        assert user.is_registration_complete is True
        assert user.payment_verified_at == clock.now()
        assert user.active_plan_id == "growth"
        assert user.active_plan_name == "Growth"
        assert user.active_plan_amount == Decimal("499.00")
        assert user.active_plan_currency == "INR"
        assert user.pending_order_id is None
        assert user.pending_plan_id is None
        assert user.pending_plan_amount is None

        invoices = (await db_session.execute(select(Invoice))).scalars().all()
        assert len(invoices) == 1
        assert invoices[0].amount == Decimal("499.00")
        assert invoices[0].currency == "INR"
        assert invoices[0].order_id == order.order_id
        assert invoices[0].invoice_number.startswith(f"INV-{clock.now():%Y%m%d}-")

        history = (await db_session.execute(select(UserPlanHistory))).scalars().one()
        assert history.status == "active"
        assert history.plan_id == "growth"

    async def test_invalid_signature(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth")).value

        result = await service.verify_payment(user.id, "pay_123", order.order_id, "deadbeef")

        assert result.error == ErrorKind.INVALID_SIGNATURE
        assert user.is_subscribed is False
        assert user.pending_order_id == order.order_id
        assert await count(db_session, Invoice) == 0

    @pytest.mark.parametrize("payment_id", [None, "", "undefined", "null"])
    async def test_missing_payment_id(self, db_session, gateway, clock, create_user, payment_id):
        user = await create_user()
        result = await make_service(db_session, gateway, clock).verify_payment(user.id, payment_id)
        assert result.error == ErrorKind.MISSING_PARAMETERS

    async def test_repeat_verification_is_idempotent(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth")).value
        signature = gateway.sign(order.order_id, "pay_123")

        assert (await service.verify_payment(user.id, "pay_123", order.order_id, signature)).ok
        repeat = await service.verify_payment(user.id, "pay_123", order.order_id, signature)

        assert repeat.ok
        assert repeat.value.already_applied is True
        assert repeat.value.invoice.payment_id == "pay_123"
        assert await count(db_session, Invoice) == 1
        assert await count(db_session, UserPlanHistory) == 1

    async def test_authorized_payment_is_captured(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth")).value
        gateway.add_payment("pay_456", "authorized", order_id=order.order_id)

        result = await service.verify_payment(user.id, "pay_456")

        assert result.ok
        assert gateway.captured == [("pay_456", 49900, "INR")]
        assert result.value.invoice.order_id == order.order_id

    async def test_capture_failure_is_incomplete(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth")).value
        gateway.add_payment("pay_456", "authorized", order_id=order.order_id)
        gateway.fail_capture = True

        result = await service.verify_payment(user.id, "pay_456")

        assert result.error == ErrorKind.PAYMENT_INCOMPLETE
        assert user.is_subscribed is False
        assert await count(db_session, Invoice) == 0

    @pytest.mark.parametrize("status", ["created", "failed", "refunded"])
    async def test_uncaptured_status_is_incomplete(self, db_session, gateway, clock, create_user, growth_plan, status):
        user = await create_user()
        gateway.add_payment("pay_789", status)
        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_789")
        assert result.error == ErrorKind.PAYMENT_INCOMPLETE

    async def test_unknown_payment_is_incomplete(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_missing")
        assert result.error == ErrorKind.PAYMENT_INCOMPLETE

    async def test_order_mismatch_without_pending_order(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        gateway.add_payment("pay_321", "captured", order_id="order_other")

        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_321", "order_mine")

        assert result.error == ErrorKind.ORDER_MISMATCH
        assert user.is_subscribed is False

    async def test_mismatch_prefers_stored_pending_order(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user.id, 49900, "growth")).value
        gateway.add_payment("pay_321", "captured", order_id="order_other")

        result = await service.verify_payment(user.id, "pay_321")

        assert result.ok
        assert result.value.invoice.order_id == order.order_id

    async def test_catalog_plan_used_without_snapshot(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        gateway.add_payment("pay_555", "captured")

        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_555")

        assert result.ok
        assert result.value.user.active_plan_id == "growth"
        assert result.value.user.active_plan_amount == Decimal("499.00")
        assert result.value.invoice.order_id is None

    async def test_no_plan_available(self, db_session, gateway, clock, create_user):
        user = await create_user()
        gateway.add_payment("pay_555", "captured")

        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_555")

        assert result.error == ErrorKind.PLAN_NOT_FOUND
        assert user.is_subscribed is False

    async def test_new_payment_rotates_plan_history(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)

        first = (await service.create_order(user.id, 49900, "growth")).value
        await service.verify_payment(user.id, "pay_1", first.order_id, gateway.sign(first.order_id, "pay_1"))
        clock.advance(days=30)
        second = (await service.create_order(user.id, 59900, "growth")).value
        result = await service.verify_payment(user.id, "pay_2", second.order_id, gateway.sign(second.order_id, "pay_2"))

        assert result.ok
        assert result.value.user.active_plan_amount == Decimal("599.00")
        rows = (await db_session.execute(select(UserPlanHistory).order_by(UserPlanHistory.subscribed_at))).scalars().all()
        assert [row.status for row in rows] == ["ended", "active"]
        assert rows[0].cancelled_at == clock.now()
        assert await count(db_session, Invoice) == 2

    async def test_replaying_an_earlier_payment_changes_nothing(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        first = (await service.create_order(user.id, 49900, "growth")).value
        first_signature = gateway.sign(first.order_id, "pay_1")
        await service.verify_payment(user.id, "pay_1", first.order_id, first_signature)
        clock.advance(days=30)
        second = (await service.create_order(user.id, 59900, "growth")).value
        await service.verify_payment(user.id, "pay_2", second.order_id, gateway.sign(second.order_id, "pay_2"))

        replay = await service.verify_payment(user.id, "pay_1", first.order_id, first_signature)

        assert replay.ok
        assert replay.value.already_applied is True
        assert replay.value.invoice.payment_id == "pay_1"
        assert replay.value.user.subscription_id == "pay_2"
        assert replay.value.user.active_plan_amount == Decimal("599.00")
        assert await count(db_session, Invoice) == 2
        rows = (await db_session.execute(select(UserPlanHistory).order_by(UserPlanHistory.subscribed_at))).scalars().all()
        assert [row.status for row in rows] == ["ended", "active"]

    async def test_signed_order_of_another_user_is_rejected(self, db_session, gateway, clock, create_user, growth_plan):
        owner = await create_user()
        other = await create_user(phone_number="9123456780")
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(owner.id, 49900, "growth")).value
        signature = gateway.sign(order.order_id, "pay_123")

        without_pending = await service.verify_payment(other.id, "pay_123", order.order_id, signature)
        await service.create_order(other.id, 49900, "growth")
        with_own_pending = await service.verify_payment(other.id, "pay_123", order.order_id, signature)

        assert without_pending.error == ErrorKind.ORDER_MISMATCH
        assert with_own_pending.error == ErrorKind.ORDER_MISMATCH
        assert other.is_subscribed is False
        assert await count(db_session, Invoice) == 0

    async def test_payment_credited_to_another_account(self, db_session, gateway, clock, create_user, growth_plan):
        owner = await create_user()
        other = await create_user(phone_number="9123456780")
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(owner.id, 49900, "growth")).value
        assert (await service.verify_payment(owner.id, "pay_123", order.order_id, gateway.sign(order.order_id, "pay_123"))).ok
        gateway.add_payment("pay_123", "captured", order_id=order.order_id)

        result = await service.verify_payment(other.id, "pay_123")

        assert result.error == ErrorKind.ORDER_MISMATCH
        assert other.is_subscribed is False
        assert await count(db_session, Invoice) == 1

    async def test_capture_uses_pending_amount_when_gateway_omits_it(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        service = make_service(db_session, gateway, clock)
        await service.create_order(user.id, 59900, "growth")
        gateway.add_payment("pay_456", "authorized", amount=None, currency=None)

        result = await service.verify_payment(user.id, "pay_456")

        assert result.ok
        assert gateway.captured == [("pay_456", 59900, "INR")]

    async def test_capture_without_any_amount_is_incomplete(self, db_session, gateway, clock, create_user, growth_plan):
        user = await create_user()
        gateway.add_payment("pay_456", "authorized", amount=None)

        result = await make_service(db_session, gateway, clock).verify_payment(user.id, "pay_456")

        assert result.error == ErrorKind.PAYMENT_INCOMPLETE
        assert gateway.captured == []
        assert user.is_subscribed is False

    async def test_invoice_numbers_count_up_within_a_day(self, db_session, gateway, clock, create_user, growth_plan):
        service = make_service(db_session, gateway, clock)
        numbers = []
        for index, phone_number in enumerate(["9876543210", "9123456780", "9000000001"]):
            user = await create_user(phone_number=phone_number)
            order = (await service.create_order(user.id, 49900, "growth")).value
            payment_id = f"pay_{index}"
            result = await service.verify_payment(user.id, payment_id, order.order_id, gateway.sign(order.order_id, payment_id))
            numbers.append(result.value.invoice.invoice_number)

        prefix = f"INV-{clock.now():%Y%m%d}-"
        assert numbers == [f"{prefix}000001", f"{prefix}000002", f"{prefix}000003"]

        clock.advance(days=1)
        user = await create_user(phone_number="9000000002")
        order = (await service.create_order(user.id, 49900, "growth")).value
        result = await service.verify_payment(user.id, "pay_next", order.order_id, gateway.sign(order.order_id, "pay_next"))
        assert result.value.invoice.invoice_number == f"INV-{clock.now():%Y%m%d}-000001"
        assert result.value.invoice.invoice_number > numbers[-1]

    async def test_failed_commit_leaves_no_partial_entitlement(
        self, db_session, gateway, clock, create_user, growth_plan, monkeypatch
    ):
        user = await create_user()
        user_id = user.id
        db_session.add(Invoice(
            invoice_number="INV-TAKEN",
            user_id=user_id,
            plan_id="growth",
            amount=Decimal("1.00"),
            currency="INR",
            payment_id="pay_old",
            issued_at=clock.now(),
        ))
        await db_session.commit()
        service = make_service(db_session, gateway, clock)
        order = (await service.create_order(user_id, 49900, "growth")).value

        async def taken_number(now):
            return "INV-TAKEN"

        monkeypatch.setattr(service, "_next_invoice_number", taken_number)

        with pytest.raises(IntegrityError):
            await service.verify_payment(user_id, "pay_123", order.order_id, gateway.sign(order.order_id, "pay_123"))

        user = await db_session.get(User, user_id, populate_existing=True)
        assert user.is_subscribed is False
        assert user.subscription_id is None
        assert user.active_plan_id is None
        assert user.pending_order_id == order.order_id
        assert user.pending_plan_id == "growth"
        assert user.pending_plan_amount == Decimal("499.00")
        assert await count(db_session, Invoice) == 1
        assert await count(db_session, UserPlanHistory) == 0
