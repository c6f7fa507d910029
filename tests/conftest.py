import os
import sqlite3
import uuid

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

import app.models  # noqa: E402,F401
from app.models.billing import PaymentGateway  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.gateways import GatewayRegistry  # noqa: E402
from app.services.gateways.card import CardAdapter  # noqa: E402
from app.services.gateways.easypaisa import EasypaisaAdapter  # noqa: E402
from app.services.gateways.jazzcash import JazzCashAdapter  # noqa: E402
from app.services.subscriptions import Plans  # noqa: E402
from tests.mocks import FakeNotificationDispatcher  # noqa: E402

JAZZCASH_SALT = "jc-integrity-salt"
EASYPAISA_HASH_KEY = "ep-hash-key"
CARD_WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
            },
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    Plans.seed(session)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


def make_user(db_session, role: UserRole = UserRole.agent, **kwargs) -> User:
    user = User(
        email=_unique_email(),
        first_name=kwargs.pop("first_name", "Test"),
        phone_number=kwargs.pop("phone_number", "03001234567"),
        role=role,
        **kwargs,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def agent(db_session):
    return make_user(db_session)


@pytest.fixture()
def admin(db_session):
    return make_user(db_session, role=UserRole.admin, first_name="Admin")


@pytest.fixture()
def notifier():
    return FakeNotificationDispatcher()


@pytest.fixture()
def jazzcash():
    return JazzCashAdapter(
        merchant_id="MC12345",
        password="jc-password",
        integrity_salt=JAZZCASH_SALT,
        api_url="https://sandbox.jazzcash.test/Purchase",
        notify_url="https://marketplace.test/api/v1/payments/callbacks/jazzcash",
    )


@pytest.fixture()
def easypaisa():
    return EasypaisaAdapter(
        store_id="STORE-1",
        hash_key=EASYPAISA_HASH_KEY,
        api_url="https://sandbox.easypaisa.test/create",
        notify_url="https://marketplace.test/api/v1/payments/callbacks/easypaisa",
    )


@pytest.fixture()
def card():
    return CardAdapter(
        secret_key="sk_test",
        webhook_secret=CARD_WEBHOOK_SECRET,
        api_base="https://cards.test",
        timeout=5,
    )


@pytest.fixture()
def registry(jazzcash, easypaisa, card):
    return GatewayRegistry([jazzcash, easypaisa, card])


@pytest.fixture()
def gateway_ids():
    return [PaymentGateway.jazzcash, PaymentGateway.easypaisa, PaymentGateway.card]


def make_payment(
    db_session,
    user,
    *,
    amount: int = 299900,
    gateway: PaymentGateway = PaymentGateway.jazzcash,
    purpose=None,
    reference: str | None = None,
):
    """Insert a committed PENDING payment, optionally with a gateway reference."""
    from app.services.billing import purposes
    from app.services.billing.ledger import PaymentLedger
    from app.services.billing.purposes import GenericPurchase

    payment = PaymentLedger.create(
        db_session,
        user_id=user.id,
        amount=amount,
        currency="PKR",
        gateway=gateway,
        description="Test payment",
    )
    purposes.assign(payment, purpose or GenericPurchase())
    if reference:
        payment.provider_reference = reference
    db_session.commit()
    db_session.refresh(payment)
    return payment
