"""pytest fixtures for veostudio backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- settings: Test settings (validation skipped, fake service account)
- session_factory: Fresh SQLite database per test with all tables created
- uow_factory: Function-scoped UnitOfWork factory
- fake_vertex / vertex_transport: In-process stand-in for the Google token,
  Gemini and Veo endpoints, served through httpx.MockTransport
- make_job: Inserts a VideoJob row in a given state
"""

import json
import os

os.environ.setdefault("APP_ENV", "test")

from datetime import timedelta  # noqa: E402
from typing import Any, AsyncGenerator, Callable  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from veostudio.core.config import Settings  # noqa: E402
from veostudio.core.database import setup_db_session  # noqa: E402
from veostudio.core.timezone import utcnow  # noqa: E402
from veostudio.models import VideoJob, VideoJobStatus  # noqa: E402
from veostudio.uow import create_uow_factory  # noqa: E402

TOKEN_URI = "https://oauth2.googleapis.com/token"
SERVICE_ACCOUNT_EMAIL = "veo-runner@test-project.iam.gserviceaccount.com"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture(scope="session")
def rsa_private_key():
    """RSA key pair standing in for a service account key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key) -> bytes:
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture(scope="session")
def service_account_json(rsa_private_key) -> str:
    private_pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return json.dumps(
        {
            "type": "service_account",
            "project_id": "test-project",
            "client_email": SERVICE_ACCOUNT_EMAIL,
            "private_key": private_pem,
            "token_uri": TOKEN_URI,
        }
    )


@pytest.fixture
def settings(service_account_json: str, tmp_path) -> Settings:
    """Settings for tests; fail-fast validation is skipped for APP_ENV=test."""
    return Settings(  # type: ignore[call-arg]
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'veostudio.db'}",
        GCP_SERVICE_ACCOUNT=service_account_json,
        GCP_PROJECT_ID="test-project",
        VERTEX_LOCATION="us-central1",
    )


@pytest.fixture
def vertex_config(settings: Settings):
    return settings.vertex_config()


@pytest_asyncio.fixture
async def session_factory(
    settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh file-backed SQLite database per test.

    A file (not :memory:) gives every session its own connection, matching
    how concurrent reconciliations use the connection pool in production.
    """
    factory = setup_db_session(settings.database_url)
    engine = factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


class FakeVertex:
    """Scriptable stand-in for the Google token, Gemini and Veo endpoints.

    Attributes:
        token_status: HTTP status returned by the token endpoint
        enrichment_text: Text returned by generateContent (None -> 500 error)
        submit_status / submit_body: predictLongRunning response
        operations: operation handle -> poll response (dict, httpx.Response,
            or an exception instance to raise)
        requests: Every request received, for assertions
    """

    def __init__(self):
        self.token_status = 200
        self.access_token = "test-access-token"
        self.enrichment_text: str | None = "A cinematic shot of a red fox in fresh snow, 35mm lens."
        self.submit_status = 200
        self.submit_body: dict[str, Any] = {"name": "op-123"}
        self.operations: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url).endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == TOKEN_URI:
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200, json={"access_token": self.access_token, "token_type": "Bearer"}
            )

        if url.endswith(":generateContent"):
            if self.enrichment_text is None:
                return httpx.Response(500, json={"error": {"message": "internal"}})
            return httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": self.enrichment_text}]}}]},
            )

        if url.endswith(":predictLongRunning"):
            return httpx.Response(self.submit_status, json=self.submit_body)

        if url.endswith(":fetchPredictOperation"):
            handle = json.loads(request.content)["operationName"]
            outcome = self.operations.get(handle, {"name": handle, "done": False})
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, httpx.Response):
                return outcome
            return httpx.Response(200, json=outcome)

        return httpx.Response(404, json={"error": {"message": f"unexpected url {url}"}})


@pytest.fixture
def fake_vertex() -> FakeVertex:
    return FakeVertex()


@pytest.fixture
def vertex_transport(fake_vertex: FakeVertex) -> httpx.MockTransport:
    return httpx.MockTransport(fake_vertex.handler)


@pytest.fixture
def make_job(uow_factory) -> Callable[..., Any]:
    """Insert a VideoJob row and return it.

    Example:
        job = await make_job(operation_handle="op-1", progress=40)
    """

    async def _make_job(
        owner_id: str = "user-1",
        status: VideoJobStatus = VideoJobStatus.PROCESSING,
        progress: int = 10,
        operation_handle: str | None = "op-1",
        age: timedelta = timedelta(0),
        **fields: Any,
    ) -> VideoJob:
        job = VideoJob(
            owner_id=owner_id,
            prompt=fields.pop("prompt", "a red fox in the snow"),
            model=fields.pop("model", "veo-3.1-generate-001"),
            duration_seconds=fields.pop("duration_seconds", 5),
            frame_size=fields.pop("frame_size", "1280x720"),
            status=status,
            progress=progress,
            operation_handle=operation_handle,
            created_at=utcnow() - age,
            **fields,
        )
        async with await uow_factory() as uow:
            await uow.video_jobs.add(job)
        return job

    return _make_job
