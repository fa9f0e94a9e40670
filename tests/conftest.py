"""Pytest configuration and fixtures."""
import os
import uuid
from datetime import datetime, timedelta, UTC
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Ensure the application uses a dedicated SQLite database during tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["ENVIRONMENT"] = "test"
# No real waiting on provider status polls or retry backoff
os.environ["PAYOUT_STATUS_POLL_DELAY_SECONDS"] = "0"
os.environ["ALLOCATION_RETRY_BACKOFF_MS"] = "1"

from rewards_backend.config import get_settings
from rewards_backend.models import RewardQuestion, UserAccount
from rewards_backend.services.payment_providers import PaymentResult
from rewards_backend.utils.exceptions import PaymentProviderError


BASE_DIR = Path(__file__).resolve().parent.parent
TEST_DB_PATH = BASE_DIR / "test.db"
settings = get_settings()


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply database migrations against the test database."""
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()

    alembic_cfg = AlembicConfig(str(BASE_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(alembic_cfg, "head")

    yield

    if TEST_DB_PATH.exists():
        try:
            TEST_DB_PATH.unlink()
        except PermissionError:
            # Still held open on Windows; removed on the next run
            pass


@pytest.fixture
async def test_engine():
    """Engine on the migrated test database."""
    engine = create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"timeout": 30},
    )

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory for tests that need one session per concurrent task."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()
        await session.close()


@pytest.fixture
async def user_factory(db_session):
    """Factory for creating users with unique emails."""

    async def _create_user(points: int = 0, phone_number: str | None = "0772123456") -> UserAccount:
        unique_id = uuid.uuid4().hex[:8]
        user = UserAccount(
            user_id=uuid.uuid4(),
            email=f"user_{unique_id}@example.com",
            phone_number=phone_number,
            points=points,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest.fixture
async def question_factory(db_session, user_factory):
    """Factory for reward questions stored directly, bypassing creation checks."""

    async def _create_question(
        *,
        is_instant_reward: bool = True,
        max_winners: int = 2,
        winners_count: int = 0,
        reward_amount: int = 500,
        is_active: bool = True,
        expiry_time: datetime | None = None,
        payment_provider: str | None = "MTN",
        phone_number: str | None = "0772000000",
        correct_answer: str = "Kampala",
    ) -> RewardQuestion:
        owner = await user_factory()
        question = RewardQuestion(
            question_id=uuid.uuid4(),
            text=f"What is the capital of Uganda? ({uuid.uuid4().hex[:6]})",
            options=["Kampala", "Entebbe", "Jinja", "Gulu"],
            correct_answer=correct_answer,
            reward_amount=reward_amount,
            is_instant_reward=is_instant_reward,
            max_winners=max_winners,
            winners_count=winners_count,
            is_completed=winners_count >= max_winners,
            is_active=is_active,
            expiry_time=expiry_time if expiry_time is not None else datetime.now(UTC) + timedelta(hours=1),
            payment_provider=payment_provider if is_instant_reward else None,
            phone_number=phone_number if is_instant_reward else None,
            created_by_user_id=owner.user_id,
        )
        db_session.add(question)
        await db_session.commit()
        return question

    return _create_question


class FakePaymentProvider:
    """In-memory provider recording every pay() call."""

    def __init__(self, result: PaymentResult | None = None, error: Exception | None = None):
        self.result = result or PaymentResult(success=True, reference="FAKE-TXN-1")
        self.error = error
        self.calls: list[tuple[int, str, str]] = []

    async def pay(self, amount: int, phone_number: str, reference: str) -> PaymentResult:
        self.calls.append((amount, phone_number, reference))
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self):
        pass


class RecordedRequests:
    """Stand-in for a client's ``_request`` replaying canned responses.

    Responses are keyed by ``(method, endpoint prefix)``. A list is served in
    order and its last item repeats; exceptions are raised instead of returned.
    """

    def __init__(self, responses: dict):
        self.responses = {key: list(value) if isinstance(value, list) else [value] for key, value in responses.items()}
        self.calls = []

    async def __call__(self, method, endpoint, *, expected=(200,), **kwargs):
        self.calls.append((method, endpoint, kwargs))
        for (route_method, prefix), queue in self.responses.items():
            if route_method == method and endpoint.startswith(prefix):
                response = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return {}

    def sent(self, method, endpoint):
        return [call for call in self.calls if call[0] == method and call[1] == endpoint]


@pytest.fixture
def fake_providers():
    """Providers keyed like the real ones; both succeed by default."""
    return {
        "MTN": FakePaymentProvider(),
        "AIRTEL": FakePaymentProvider(),
    }


@pytest.fixture
def failing_providers():
    """Providers that always reject the transfer."""
    error = PaymentProviderError("MTN API error: 500")
    return {
        "MTN": FakePaymentProvider(error=error),
        "AIRTEL": FakePaymentProvider(error=error),
    }


@pytest.fixture
async def test_app(session_factory, fake_providers):
    """Create test app with database and provider overrides."""
    from rewards_backend.main import app
    from rewards_backend.database import get_db, get_session_factory
    from rewards_backend.dependencies import get_payout_providers

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payout_providers] = lambda: fake_providers
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build a Bearer header for a user."""
    from rewards_backend.services.auth_service import AuthService

    def _headers(user: UserAccount) -> dict[str, str]:
        token, _ = AuthService().create_access_token(user.user_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
