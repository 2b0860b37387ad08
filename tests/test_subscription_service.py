"""
Tests for the purchase, restore and re-validation flows.
"""

from datetime import timedelta

import pytest

from biztomate.catalog import PlanId
from biztomate.core.exceptions import PurchaseError, PurchaseErrorKind, VerificationNetworkError
from biztomate.core.clock import utcnow
from biztomate.purchases import PurchaseStatus, SubscriptionService, get_subscription_service
from biztomate.purchases.service import PENDING_VERIFICATION_MESSAGE
from biztomate.purchases.store import StoreError
from tests.conftest import USER_ID
from tests.fakes import (
    ScriptedValidator,
    SimulatedSuccessValidator,
    blob,
    make_result,
    make_transaction,
)

BASIC = "com.biztomate.scanner.basic"
STANDARD = "com.biztomate.scanner.standard"
PREMIUM = "com.biztomate.scanner.premium"


def future(days=30):
    return utcnow().replace(microsecond=0) + timedelta(days=days)


def past(days=1):
    return utcnow().replace(microsecond=0) - timedelta(days=days)


@pytest.fixture
def validator():
    return ScriptedValidator()


@pytest.fixture
def service(purchase_client, validator, receipt_cache, subscription_state):
    return SubscriptionService(
        client=purchase_client,
        validator=validator,
        cache=receipt_cache,
        state=subscription_state,
        restore_concurrency=2,
    )


class TestPurchasePlan:
    @pytest.mark.asyncio
    async def test_activates_plan(self, service, fake_store, validator, entitlement_store):
        fake_store.purchases[STANDARD] = make_transaction(STANDARD, transaction_id="t-1")
        validator.answers[blob("t-1")] = make_result(STANDARD, future(), transaction_id="t-1")

        outcome = await service.purchase_plan(PlanId.STANDARD)

        assert outcome.status == PurchaseStatus.ACTIVATED
        assert outcome.entitlement.plan_id == PlanId.STANDARD
        assert outcome.entitlement.card_quota == 250
        assert (await entitlement_store.get(USER_ID)).plan_id == PlanId.STANDARD

    @pytest.mark.asyncio
    async def test_network_failure_keeps_receipt_and_reports_success(
        self, service, fake_store, validator, receipt_cache
    ):
        fake_store.purchases[STANDARD] = make_transaction(STANDARD, transaction_id="t-1")
        validator.answers[blob("t-1")] = VerificationNetworkError("timed out", timed_out=True)

        outcome = await service.purchase_plan(PlanId.STANDARD)

        assert outcome.status == PurchaseStatus.PENDING_VERIFICATION
        assert outcome.message == PENDING_VERIFICATION_MESSAGE
        assert outcome.entitlement.plan_id == PlanId.FREE
        assert await receipt_cache.get("t-1") is not None
        assert [r.transaction_id for r in await receipt_cache.pending_verification(USER_ID)] == ["t-1"]

    @pytest.mark.asyncio
    async def test_retryable_status_is_pending(self, service, fake_store, validator):
        fake_store.purchases[STANDARD] = make_transaction(STANDARD, transaction_id="t-1")
        validator.answers[blob("t-1")] = make_result(None, None, is_valid=False, status_code=21005)

        outcome = await service.purchase_plan(PlanId.STANDARD)

        assert outcome.status == PurchaseStatus.PENDING_VERIFICATION

    @pytest.mark.asyncio
    async def test_expired_receipt(self, service, fake_store, validator):
        fake_store.purchases[STANDARD] = make_transaction(STANDARD, transaction_id="t-1")
        validator.answers[blob("t-1")] = make_result(
            STANDARD, past(), transaction_id="t-1", is_valid=False, status_code=21006, now=utcnow()
        )

        outcome = await service.purchase_plan(PlanId.STANDARD)

        assert outcome.status == PurchaseStatus.EXPIRED
        assert outcome.entitlement.effective_plan(utcnow()) == PlanId.FREE

    @pytest.mark.asyncio
    async def test_rejected_receipt_leaves_entitlement_untouched(
        self, service, fake_store, validator, subscription_state
    ):
        await subscription_state.apply([make_result(BASIC, future(), transaction_id="old")])
        fake_store.purchases[STANDARD] = make_transaction(STANDARD, transaction_id="t-1")
        validator.answers[blob("t-1")] = make_result(None, None, is_valid=False, status_code=21003)

        outcome = await service.purchase_plan(PlanId.STANDARD)

        assert outcome.status == PurchaseStatus.REJECTED
        assert outcome.entitlement.plan_id == PlanId.BASIC

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, service, fake_store, validator):
        fake_store.purchases[STANDARD] = StoreError("E_USER_CANCELLED")

        with pytest.raises(PurchaseError) as exc_info:
            await service.purchase_plan(PlanId.STANDARD)

        assert exc_info.value.kind == PurchaseErrorKind.USER_CANCELLED
        assert validator.calls == []

    @pytest.mark.asyncio
    async def test_free_plan_cannot_be_purchased(self, service):
        with pytest.raises(PurchaseError) as exc_info:
            await service.purchase_plan(PlanId.FREE)

        assert exc_info.value.kind == PurchaseErrorKind.PRODUCT_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_simulated_validator_in_test_builds(
        self, purchase_client, receipt_cache, subscription_state
    ):
        service = SubscriptionService(
            purchase_client,
            SimulatedSuccessValidator(PREMIUM, now=utcnow()),
            receipt_cache,
            subscription_state,
        )

        outcome = await service.purchase_plan(PlanId.PREMIUM)

        assert outcome.status == PurchaseStatus.ACTIVATED
        assert outcome.entitlement.plan_id == PlanId.PREMIUM


class TestRestorePurchases:
    @pytest.mark.asyncio
    async def test_best_plan_wins(self, service, fake_store, validator):
        fake_store.available = [
            make_transaction(BASIC, transaction_id="r-1"),
            make_transaction(PREMIUM, transaction_id="r-2"),
        ]
        validator.answers[blob("r-1")] = make_result(BASIC, future(300), transaction_id="r-1")
        validator.answers[blob("r-2")] = make_result(PREMIUM, future(20), transaction_id="r-2")

        outcome = await service.restore_purchases()

        assert outcome.restored_count == 2
        assert outcome.entitlement.plan_id == PlanId.PREMIUM
        assert not outcome.partial
        assert outcome.message == "Restored your Premium plan."

    @pytest.mark.asyncio
    async def test_partial_restore_keeps_validated_results(self, service, fake_store, validator):
        fake_store.available = [
            make_transaction(BASIC, transaction_id="r-1"),
            make_transaction(PREMIUM, transaction_id="r-2"),
        ]
        validator.answers[blob("r-1")] = make_result(BASIC, future(), transaction_id="r-1")
        validator.answers[blob("r-2")] = VerificationNetworkError("connection reset")

        outcome = await service.restore_purchases()

        assert outcome.partial
        assert outcome.entitlement.plan_id == PlanId.BASIC
        assert [f.transaction_id for f in outcome.failures] == ["r-2"]

    @pytest.mark.asyncio
    async def test_all_legs_failing_leaves_entitlement_untouched(
        self, service, fake_store, validator, subscription_state
    ):
        await subscription_state.apply([make_result(STANDARD, future(), transaction_id="old")])
        fake_store.available = [make_transaction(BASIC, transaction_id="r-1")]
        validator.answers[blob("r-1")] = VerificationNetworkError("down")

        outcome = await service.restore_purchases()

        assert outcome.entitlement.plan_id == PlanId.STANDARD
        assert outcome.partial

    @pytest.mark.asyncio
    async def test_failed_leg_keeps_its_cached_verification(self, service, fake_store, validator):
        fake_store.purchases[PREMIUM] = make_transaction(PREMIUM, transaction_id="t-p")
        validator.answers[blob("t-p")] = make_result(PREMIUM, future(), transaction_id="t-p")
        purchased = await service.purchase_plan(PlanId.PREMIUM)
        assert purchased.entitlement.plan_id == PlanId.PREMIUM

        fake_store.available = [
            make_transaction(BASIC, transaction_id="r-b"),
            make_transaction(PREMIUM, transaction_id="t-p"),
        ]
        validator.answers[blob("r-b")] = make_result(BASIC, future(300), transaction_id="r-b")
        validator.answers[blob("t-p")] = VerificationNetworkError("timed out", timed_out=True)

        outcome = await service.restore_purchases()

        assert outcome.partial
        assert [f.transaction_id for f in outcome.failures] == ["t-p"]
        assert outcome.entitlement.plan_id == PlanId.PREMIUM
        assert outcome.entitlement.card_quota == 500

    @pytest.mark.asyncio
    async def test_nothing_to_restore_resolves_free(self, service):
        outcome = await service.restore_purchases()

        assert outcome.restored_count == 0
        assert outcome.entitlement.plan_id == PlanId.FREE
        assert outcome.message == "No previous purchases found."

    @pytest.mark.asyncio
    async def test_shared_receipt_blob_is_validated_once(self, service, fake_store, validator):
        shared = blob("app-receipt")
        fake_store.available = [
            make_transaction(BASIC, transaction_id="r-1", receipt=shared),
            make_transaction(BASIC, transaction_id="r-2", receipt=shared),
        ]
        validator.answers[shared] = make_result(BASIC, future(), transaction_id="r-2")

        await service.restore_purchases()

        assert validator.calls == [shared]

    @pytest.mark.asyncio
    async def test_fan_out_is_bounded(self, service, fake_store, validator):
        fake_store.available = [make_transaction(BASIC, transaction_id=f"r-{i}") for i in range(6)]
        for i in range(6):
            validator.answers[blob(f"r-{i}")] = make_result(BASIC, future(), transaction_id=f"r-{i}")

        outcome = await service.restore_purchases()

        assert len(outcome.results) == 6
        assert validator.max_in_flight <= 2


class TestServiceFactory:
    @pytest.mark.asyncio
    async def test_factory_wires_a_working_service(self, session_factory, fake_store, validator):
        fake_store.purchases[BASIC] = make_transaction(BASIC, transaction_id="t-1")
        validator.answers[blob("t-1")] = make_result(BASIC, future(), transaction_id="t-1")

        service = get_subscription_service(
            USER_ID, fake_store, validator=validator, session_factory=session_factory
        )
        outcome = await service.purchase_plan(PlanId.BASIC)

        assert outcome.status == PurchaseStatus.ACTIVATED
        assert outcome.entitlement.card_quota == 100


class TestRevalidatePending:
    @pytest.mark.asyncio
    async def test_pending_purchase_is_activated_later(self, service, fake_store, validator):
        fake_store.purchases[PREMIUM] = make_transaction(PREMIUM, transaction_id="t-1")
        validator.answers[blob("t-1")] = VerificationNetworkError("offline")
        first = await service.purchase_plan(PlanId.PREMIUM)
        assert first.status == PurchaseStatus.PENDING_VERIFICATION

        validator.answers[blob("t-1")] = make_result(PREMIUM, future(), transaction_id="t-1")
        outcome = await service.revalidate_pending()

        assert outcome.entitlement.plan_id == PlanId.PREMIUM
        assert not outcome.failures

    @pytest.mark.asyncio
    async def test_nothing_pending(self, service):
        outcome = await service.revalidate_pending()

        assert outcome.restored_count == 0
        assert outcome.entitlement.plan_id == PlanId.FREE
