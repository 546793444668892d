"""
Pytest configuration for spi_oauth. In-memory SQLite sessions, a fake cluster and a stubbed provider,
so tests never touch the filesystem, a cluster or the network.
"""
import os

# Set before spi_oauth.config is imported anywhere
os.environ["SPI_TOKEN_STORAGE"] = "memory"
os.environ["SPI_SESSION_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("SPI_STATE_SIGNING_SECRET_FILE", None)

import httpx
import pytest
from fastapi.testclient import TestClient

from spi_oauth.database import make_session_factory
from spi_oauth.exchange import ProviderConfig
from spi_oauth.main import create_app
from spi_oauth.session import SessionManager
from spi_oauth.state import AnonymousState, StateCodec
from spi_oauth.token_storage import MemoryTokenStorage

SECRET = b"test-state-signing-secret-0123456789abcdef"
BASE_URL = "http://testserver/oauth"

GITHUB = ProviderConfig(
    name="github",
    client_id="gh-client",
    client_secret="gh-secret",
    auth_url="https://github.example/login/oauth/authorize",
    token_url="https://github.example/login/oauth/access_token",
)


class FakeCluster:
    """Stands in for ClusterClient: records calls, answers from attributes."""

    def __init__(self):
        self.allowed = True
        self.review_error = None
        self.fetch_error = None
        self.reviews = []
        self.fetches = []

    async def create_self_subject_access_review(self, credential, resource_attributes):
        self.reviews.append((credential, resource_attributes))
        if self.review_error is not None:
            raise self.review_error
        return {"status": {"allowed": self.allowed}}

    async def get_access_token(self, credential, namespace, name):
        self.fetches.append((credential, namespace, name))
        if self.fetch_error is not None:
            raise self.fetch_error
        return {"metadata": {"namespace": namespace, "name": name, "uid": "uid-1"}}

    async def aclose(self):
        pass


class StubProvider:
    """Token endpoint stub behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.body = {
            "access_token": "T",
            "token_type": "Bearer",
            "refresh_token": "R",
            "expires_in": 3600,
        }
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def codec():
    return StateCodec(SECRET)


@pytest.fixture
def sessions():
    return SessionManager(make_session_factory("sqlite:///:memory:"), ttl_seconds=600)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def storage():
    return MemoryTokenStorage()


@pytest.fixture
def anonymous_state():
    return AnonymousState(
        token_name="my-token",
        token_namespace="team-a",
        service_provider_type="GitHub",
        scopes=["repo", "read:user"],
    )


@pytest.fixture
def app(sessions, cluster, provider, storage):
    return create_app(
        base_url=BASE_URL,
        providers=[GITHUB],
        signing_secret=SECRET,
        sessions=sessions,
        cluster=cluster,
        token_storage=storage,
        http=provider.client,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
