import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from reservation_billing.config import Settings, get_settings
from reservation_billing.database import Base, get_db
from reservation_billing.main import app as fastapi_app
from reservation_billing.signature import generate_signature

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

API_KEY = "test-api-key"

TEST_SETTINGS = Settings(
    allpay_login="test-login",
    allpay_api_key=API_KEY,
    allpay_api_url="https://allpay.test/app/?show=getpayment&mode=api9",
    currency="ILS",
    lang="AUTO",
    base_url="https://reservations.example",
)


def signed(params):
    """Attach the signature Allpay would send with these params."""
    return {**params, "sign": generate_signature(params, API_KEY)}


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def client(settings):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def sign_params():
    return signed
