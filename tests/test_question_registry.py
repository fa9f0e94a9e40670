"""Tests for QuestionRegistry - creation rules and lifecycle validation."""
import uuid
from datetime import datetime, timedelta, UTC

import pytest

from rewards_backend.models.base import QuestionState
from rewards_backend.services.question_registry import QuestionRegistry, question_state
from rewards_backend.utils.exceptions import (
    QuestionCompletedError,
    QuestionExpiredError,
    QuestionInactiveError,
    QuestionNotFoundError,
    QuestionValidationError,
)


def _instant_kwargs(**overrides):
    kwargs = {
        "text": "Which lake feeds the Nile?",
        "options": ["Victoria", "Albert", "Kyoga"],
        "correct_answer": "Victoria",
        "reward_amount": 500,
        "expiry_time": datetime.now(UTC) + timedelta(hours=2),
        "is_instant_reward": True,
        "max_winners": 3,
        "payment_provider": "mtn",
        "phone_number": "0772000000",
    }
    kwargs.update(overrides)
    return kwargs


class TestValidate:
    """validate() reports the first reason a question cannot be answered."""

    @pytest.mark.asyncio
    async def test_active_question_passes(self, db_session, question_factory):
        question = await question_factory()

        validated = await QuestionRegistry(db_session).validate(question.question_id)

        assert validated.question_id == question.question_id

    @pytest.mark.asyncio
    async def test_unknown_question(self, db_session):
        with pytest.raises(QuestionNotFoundError):
            await QuestionRegistry(db_session).validate(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_inactive_question(self, db_session, question_factory):
        question = await question_factory(is_active=False)

        with pytest.raises(QuestionInactiveError):
            await QuestionRegistry(db_session).validate(question.question_id)

    @pytest.mark.asyncio
    async def test_expired_question(self, db_session, question_factory):
        question = await question_factory(expiry_time=datetime.now(UTC) - timedelta(minutes=1))

        with pytest.raises(QuestionExpiredError):
            await QuestionRegistry(db_session).validate(question.question_id)

    @pytest.mark.asyncio
    async def test_completed_question(self, db_session, question_factory):
        question = await question_factory(max_winners=2, winners_count=2)

        with pytest.raises(QuestionCompletedError):
            await QuestionRegistry(db_session).validate(question.question_id)

    @pytest.mark.asyncio
    async def test_completed_allowed_inside_settlement(self, db_session, question_factory):
        question = await question_factory(max_winners=2, winners_count=2)

        validated = await QuestionRegistry(db_session).validate(question.question_id, allow_completed=True)

        assert validated.is_completed is True

    @pytest.mark.asyncio
    async def test_allow_completed_still_rejects_expired(self, db_session, question_factory):
        question = await question_factory(
            max_winners=1,
            winners_count=1,
            expiry_time=datetime.now(UTC) - timedelta(minutes=1),
        )

        with pytest.raises(QuestionExpiredError):
            await QuestionRegistry(db_session).validate(question.question_id, allow_completed=True)

    @pytest.mark.asyncio
    async def test_expired_checked_before_completed(self, db_session, question_factory):
        question = await question_factory(
            max_winners=1,
            winners_count=1,
            expiry_time=datetime.now(UTC) - timedelta(minutes=1),
        )

        with pytest.raises(QuestionExpiredError):
            await QuestionRegistry(db_session).validate(question.question_id)

    @pytest.mark.asyncio
    async def test_validate_uses_explicit_now(self, db_session, question_factory):
        question = await question_factory(expiry_time=datetime.now(UTC) + timedelta(minutes=5))
        later = datetime.now(UTC) + timedelta(minutes=10)

        with pytest.raises(QuestionExpiredError):
            await QuestionRegistry(db_session).validate(question.question_id, now=later)


class TestQuestionState:

    @pytest.mark.asyncio
    async def test_states(self, question_factory):
        active = await question_factory()
        inactive = await question_factory(is_active=False, max_winners=1, winners_count=1)
        completed = await question_factory(max_winners=1, winners_count=1)
        expired = await question_factory(expiry_time=datetime.now(UTC) - timedelta(seconds=1))

        assert question_state(active) == QuestionState.ACTIVE
        assert question_state(inactive) == QuestionState.INACTIVE
        assert question_state(completed) == QuestionState.COMPLETED
        assert question_state(expired) == QuestionState.EXPIRED


class TestCreateQuestion:
    """create_question() rejects bad configuration before writing anything."""

    @pytest.mark.asyncio
    async def test_create_instant_question(self, db_session, user_factory):
        owner = await user_factory()
        registry = QuestionRegistry(db_session)

        question = await registry.create_question(owner.user_id, **_instant_kwargs())

        assert question.is_active is True
        assert question.is_completed is False
        assert question.winners_count == 0
        assert question.max_winners == 3
        assert question.payment_provider == "MTN"
        assert question.created_by_user_id == owner.user_id

    @pytest.mark.asyncio
    async def test_create_regular_question_drops_payout_fields(self, db_session, user_factory):
        owner = await user_factory()
        registry = QuestionRegistry(db_session)

        question = await registry.create_question(
            owner.user_id,
            **_instant_kwargs(is_instant_reward=False, payment_provider="MTN", phone_number="0772000000"),
        )

        assert question.is_instant_reward is False
        assert question.payment_provider is None
        assert question.phone_number is None

    @pytest.mark.asyncio
    async def test_default_max_winners(self, db_session, user_factory):
        owner = await user_factory()
        question = await QuestionRegistry(db_session).create_question(
            owner.user_id, **_instant_kwargs(max_winners=None)
        )

        assert question.max_winners == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, code",
        [
            ({"text": "  "}, "text_options_and_correct_answer_required"),
            ({"options": ["Victoria", " "]}, "options_must_not_be_blank"),
            ({"options": ["Victoria", "Victoria"]}, "options_must_be_unique"),
            ({"correct_answer": "Tanganyika"}, "correct_answer_not_in_options"),
            ({"reward_amount": 0}, "reward_amount_must_be_positive"),
            ({"expiry_time": datetime.now(UTC) - timedelta(hours=1)}, "expiry_time_in_past"),
            ({"payment_provider": None}, "payment_provider_and_phone_number_required"),
            ({"phone_number": ""}, "payment_provider_and_phone_number_required"),
            ({"payment_provider": "MPESA"}, "invalid_payment_provider"),
            ({"max_winners": 0}, "max_winners_out_of_range"),
            ({"max_winners": 11}, "max_winners_out_of_range"),
        ],
    )
    async def test_rejects_invalid_configuration(self, db_session, user_factory, overrides, code):
        owner = await user_factory()

        with pytest.raises(QuestionValidationError) as exc_info:
            await QuestionRegistry(db_session).create_question(owner.user_id, **_instant_kwargs(**overrides))

        assert str(exc_info.value) == code


class TestOwnerActions:

    @pytest.mark.asyncio
    async def test_deactivate_and_reactivate(self, db_session, question_factory):
        question = await question_factory()
        registry = QuestionRegistry(db_session)

        await registry.set_active(question.question_id, False)
        with pytest.raises(QuestionInactiveError):
            await registry.validate(question.question_id)

        await registry.set_active(question.question_id, True)
        assert (await registry.validate(question.question_id)).is_active is True

    @pytest.mark.asyncio
    async def test_set_active_unknown_question(self, db_session):
        with pytest.raises(QuestionNotFoundError):
            await QuestionRegistry(db_session).set_active(uuid.uuid4(), False)

    @pytest.mark.asyncio
    async def test_list_open_instant_questions(self, db_session, question_factory):
        open_question = await question_factory()
        completed = await question_factory(max_winners=1, winners_count=1)
        expired = await question_factory(expiry_time=datetime.now(UTC) - timedelta(minutes=1))
        regular = await question_factory(is_instant_reward=False)

        questions = await QuestionRegistry(db_session).list_open_instant_questions(limit=100)
        ids = {question.question_id for question in questions}

        assert open_question.question_id in ids
        assert completed.question_id not in ids
        assert expired.question_id not in ids
        assert regular.question_id not in ids
        listed = next(question for question in questions if question.question_id == open_question.question_id)
        assert listed.winners == []
