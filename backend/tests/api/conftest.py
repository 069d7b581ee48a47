"""API-specific test fixtures."""

import httpx
import pytest
from fastapi import FastAPI, HTTPException

from rendezvous.api.routes import api_router
from rendezvous.core.auth import AuthUser, require_auth
from rendezvous.core.exceptions import ClientError
from rendezvous.main import client_error_handler, generic_exception_handler, http_exception_handler
from rendezvous.middleware.correlation import setup_correlation_middleware


def override_auth(user: AuthUser):
    """Dependency override factory for require_auth."""

    async def _override():
        return user

    return _override


@pytest.fixture
def app(services):
    """App wired like create_app but without the lifespan; services come from the test fixtures."""
    app = FastAPI(title="Rendezvous - Test Client")
    setup_correlation_middleware(app)
    app.exception_handler(ClientError)(client_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)
    app.include_router(api_router, prefix="/api")
    app.state.services = services
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def login(app):
    def _login(user: AuthUser):
        app.dependency_overrides[require_auth] = override_auth(user)

    return _login


@pytest.fixture
async def api_client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
