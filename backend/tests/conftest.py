"""Shared fixtures."""
import pytest
from fastapi.testclient import TestClient

from clickstream.config import Settings
from clickstream.database import Base, build_engine, build_session_factory
from clickstream.main import create_app
from factories import create_key, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client):
    return {"X-API-Key": create_key(client)}


@pytest.fixture
def db():
    engine = build_engine(make_settings())
    Base.metadata.create_all(bind=engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
