"""Tests for PayoutDispatcher."""
import uuid

import pytest
from sqlalchemy import select, update

from rewards_backend.models import InstantRewardWinner
from rewards_backend.models.base import PaymentStatus
from rewards_backend.services.payment_providers import MTNDisbursementClient, PaymentResult
from rewards_backend.services.payout_dispatcher import PayoutDispatcher
from rewards_backend.services.winner_allocator import WinnerAllocator
from rewards_backend.utils.exceptions import PaymentProviderError, PaymentTimeoutError, WinnerNotFoundError

from conftest import FakePaymentProvider, RecordedRequests


@pytest.fixture
def winner_factory(session_factory, user_factory, question_factory):
    """Allocate a PENDING winner on a fresh instant question."""

    async def _create_winner(payment_provider: str = "MTN"):
        user = await user_factory()
        question = await question_factory(payment_provider=payment_provider)
        user_id, question_id = user.user_id, question.question_id
        async with session_factory() as session:
            result = await WinnerAllocator(session).allocate(question_id, user_id, 500, 5)
        return result.winner_id

    return _create_winner


async def _load(session_factory, winner_id) -> InstantRewardWinner:
    async with session_factory() as session:
        result = await session.execute(
            select(InstantRewardWinner).where(InstantRewardWinner.winner_id == winner_id)
        )
        return result.scalar_one()


class TestDispatch:

    @pytest.mark.asyncio
    async def test_success_records_reference(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        provider = FakePaymentProvider(PaymentResult(success=True, reference="MTN-TXN-42"))

        async with session_factory() as session:
            result = await PayoutDispatcher(session, {"MTN": provider}).dispatch(winner_id)

        assert result.status == PaymentStatus.SUCCESSFUL.value
        assert result.reference == "MTN-TXN-42"
        assert provider.calls == [(500, "0772000000", str(winner_id))]

        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.SUCCESSFUL.value
        assert stored.payment_reference == "MTN-TXN-42"
        assert stored.paid_at is not None
        assert stored.payout_attempts == 1

    @pytest.mark.asyncio
    async def test_provider_error_marks_failed(self, session_factory, winner_factory, failing_providers):
        winner_id = await winner_factory()

        async with session_factory() as session:
            result = await PayoutDispatcher(session, failing_providers).dispatch(winner_id)

        assert result.status == PaymentStatus.FAILED.value
        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.FAILED.value
        assert stored.payment_reference is None

    @pytest.mark.asyncio
    async def test_declined_transfer_marks_failed(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        provider = FakePaymentProvider(PaymentResult(success=False, detail="FAILED"))

        async with session_factory() as session:
            result = await PayoutDispatcher(session, {"MTN": provider}).dispatch(winner_id)

        assert result.status == PaymentStatus.FAILED.value

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "provider",
        [
            FakePaymentProvider(error=PaymentTimeoutError("MTN request timed out")),
            FakePaymentProvider(PaymentResult(success=False, pending=True, detail="PENDING")),
        ],
        ids=["timeout", "pending"],
    )
    async def test_unknown_outcome_stays_pending(self, session_factory, winner_factory, provider):
        winner_id = await winner_factory()

        async with session_factory() as session:
            result = await PayoutDispatcher(session, {"MTN": provider}).dispatch(winner_id)

        assert result.status == PaymentStatus.PENDING.value
        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.PENDING.value
        assert stored.payout_attempts == 1

    @pytest.mark.asyncio
    async def test_settled_winner_is_not_paid_twice(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        provider = FakePaymentProvider()

        async with session_factory() as session:
            first = await PayoutDispatcher(session, {"MTN": provider}).dispatch(winner_id)
        async with session_factory() as session:
            second = await PayoutDispatcher(session, {"MTN": provider}).dispatch(winner_id)

        assert first.status == second.status == PaymentStatus.SUCCESSFUL.value
        assert second.reference == first.reference
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_provider_marks_failed(self, session_factory, winner_factory, fake_providers):
        winner_id = await winner_factory(payment_provider="AIRTEL")

        async with session_factory() as session:
            result = await PayoutDispatcher(session, {"MTN": fake_providers["MTN"]}).dispatch(winner_id)

        assert result.status == PaymentStatus.FAILED.value
        assert fake_providers["MTN"].calls == []

    @pytest.mark.asyncio
    async def test_unknown_winner(self, db_session, fake_providers):
        with pytest.raises(WinnerNotFoundError):
            await PayoutDispatcher(db_session, fake_providers).dispatch(uuid.uuid4())


class TestReconcile:

    @pytest.mark.asyncio
    async def test_retries_pending_with_same_reference(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        timeout_provider = FakePaymentProvider(error=PaymentTimeoutError("timed out"))
        async with session_factory() as session:
            await PayoutDispatcher(session, {"MTN": timeout_provider}).dispatch(winner_id)

        provider = FakePaymentProvider()
        async with session_factory() as session:
            results = await PayoutDispatcher(session, {"MTN": provider}).reconcile_pending(
                older_than_minutes=0, limit=500
            )

        assert winner_id in {result.winner_id for result in results}
        assert (500, "0772000000", str(winner_id)) in provider.calls
        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.SUCCESSFUL.value
        assert stored.payout_attempts == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_marked_failed(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        async with session_factory() as session:
            await session.execute(
                update(InstantRewardWinner)
                .where(InstantRewardWinner.winner_id == winner_id)
                .values(payout_attempts=5)
            )
            await session.commit()

        provider = FakePaymentProvider()
        async with session_factory() as session:
            await PayoutDispatcher(session, {"MTN": provider}).reconcile_pending(older_than_minutes=0, limit=500)

        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.FAILED.value
        assert all(call[2] != str(winner_id) for call in provider.calls)

    @pytest.mark.asyncio
    async def test_recent_pending_left_alone(self, session_factory, winner_factory):
        winner_id = await winner_factory()
        provider = FakePaymentProvider()

        async with session_factory() as session:
            await PayoutDispatcher(session, {"MTN": provider}).reconcile_pending(older_than_minutes=60, limit=500)

        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_retry_of_submitted_mtn_transfer_is_not_failed(self, session_factory, winner_factory, monkeypatch):
        winner_id = await winner_factory()
        reference = str(winner_id)
        token = ("POST", "/disbursement/token/")
        transfer = ("POST", "/disbursement/v1_0/transfer")
        not_found = PaymentProviderError("MTN API error: 404", status_code=404)

        # Accepted, but the status poll times out
        first_client = MTNDisbursementClient()
        first_requests = RecordedRequests({
            token: {"access_token": "tok", "expires_in": 3600},
            ("GET", f"/disbursement/v1_0/transfer/{reference}"): [not_found, PaymentTimeoutError("MTN request timed out")],
            transfer: {},
        })
        monkeypatch.setattr(first_client, "_request", first_requests)
        async with session_factory() as session:
            first = await PayoutDispatcher(session, {"MTN": first_client}).dispatch(winner_id)
        assert first.status == PaymentStatus.PENDING.value

        # MTN answers the resubmission with a duplicate-reference conflict
        retry_client = MTNDisbursementClient()
        retry_requests = RecordedRequests({
            token: {"access_token": "tok", "expires_in": 3600},
            ("GET", f"/disbursement/v1_0/transfer/{reference}"): [
                not_found,
                {"status": "SUCCESSFUL", "financialTransactionId": "FT-RETRY"},
            ],
            # Other pending winners in the sweep stay pending
            ("GET", "/disbursement/v1_0/transfer/"): PaymentTimeoutError("MTN request timed out"),
            transfer: PaymentProviderError("MTN API error: 409", status_code=409),
        })
        monkeypatch.setattr(retry_client, "_request", retry_requests)
        async with session_factory() as session:
            await PayoutDispatcher(session, {"MTN": retry_client}).reconcile_pending(older_than_minutes=0, limit=500)

        posts = first_requests.sent(*transfer) + retry_requests.sent(*transfer)
        assert len(posts) == 2
        assert all(call[2]["headers"]["X-Reference-Id"] == reference for call in posts)
        stored = await _load(session_factory, winner_id)
        assert stored.payment_status == PaymentStatus.SUCCESSFUL.value
        assert stored.payment_reference == "FT-RETRY"
        assert stored.payout_attempts == 2
