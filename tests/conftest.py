"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, before the app reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./mimari_payments_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("FRONTEND_URL", "https://mimariproje.test")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

from app.main import app  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import Project, User  # noqa: E402
from app.models.api_key import ApiKey, ApiScope  # noqa: E402
from app.schemas.payment import PaymentRequest, PaymentResult, RefundRequest, RefundResult  # noqa: E402
from app.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./mimari_payments_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(prefix: str = "user", **fields) -> User:
        user = User(
            email=f"{prefix}-{uuid4().hex[:8]}@example.com",
            first_name=fields.pop("first_name", prefix.title()),
            last_name=fields.pop("last_name", "Test"),
            **fields,
        )
        db_session.add(user)
        db_session.flush()
        return user

    return _factory


@pytest.fixture
def make_project(db_session: Session) -> Callable[..., Project]:
    def _factory(owner: User, price: str = "1000.00", **fields) -> Project:
        project = Project(
            owner_id=owner.id,
            title=fields.pop("title", "Villa project"),
            price=Decimal(price),
            currency="TRY",
            **fields,
        )
        db_session.add(project)
        db_session.flush()
        return project

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., dict[str, str]]:
    """Create a key for ``user`` and return the matching auth headers."""

    def _factory(user: User, scope: ApiScope = ApiScope.user) -> dict[str, str]:
        token = f"{scope.value}-{uuid4().hex}"
        api_key = ApiKey(
            name=f"{scope.value}-{uuid4().hex}",
            prefix="test_" + scope.value,
            key_hash=hash_key(token),
            scope=scope,
            user_id=user.id,
            is_active=True,
        )
        db_session.add(api_key)
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def admin_user(make_user: Callable[..., User]) -> User:
    return make_user("admin")


@pytest.fixture
def admin_headers(admin_user: User, make_api_key: Callable[..., dict[str, str]]) -> dict[str, str]:
    return make_api_key(admin_user, ApiScope.admin)


class FakeGateway:
    """In-process gateway that records calls and returns preset results."""

    def __init__(self, name: str = "iyzico") -> None:
        self.name = name
        self.create_result = PaymentResult(
            success=True,
            payment_id="pay-1",
            conversation_id="conv-1",
            status="success",
            three_ds_html_content="<form></form>",
        )
        self.complete_result = PaymentResult(success=True, payment_id="pay-1", status="success")
        self.verify_result = PaymentResult(success=True, payment_id="pay-1", status="success")
        self.refund_result = RefundResult(success=True, refund_id="refund-1", message="Refund completed.")
        self.created: list[PaymentRequest] = []
        self.completed: list[str] = []
        self.verified: list[dict] = []
        self.refunds: list[RefundRequest] = []

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        self.created.append(request)
        return self.create_result

    def complete_payment(self, provider_payment_id: str) -> PaymentResult:
        self.completed.append(provider_payment_id)
        return self.complete_result

    def verify_callback(self, params) -> PaymentResult:
        self.verified.append(dict(params))
        return self.verify_result

    def refund(self, request: RefundRequest) -> RefundResult:
        self.refunds.append(request)
        return self.refund_result


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()
