"""Tests for the service account credential provider.

The token endpoint is served by httpx.MockTransport; the signed assertion is
verified with the public half of the test key.
"""

import json
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from veostudio.core.config import VertexConfig
from veostudio.services.vertex.credentials import (
    JWT_BEARER_GRANT,
    ServiceAccountCredentialProvider,
)


def decode_assertion(assertion: str, public_pem: bytes, audience: str, **options) -> dict:
    return jwt.decode(
        assertion, public_pem, algorithms=["RS256"], audience=audience, options=options
    )


def test_build_assertion_claims(vertex_config, service_account_json, rsa_public_pem):
    service_account = json.loads(service_account_json)
    provider = ServiceAccountCredentialProvider(vertex_config)

    assertion = provider.build_assertion(service_account, now=1_700_000_000)
    claims = decode_assertion(
        assertion, rsa_public_pem, vertex_config.token_uri, verify_exp=False
    )

    assert claims["iss"] == service_account["client_email"]
    assert claims["sub"] == service_account["client_email"]
    assert claims["aud"] == "https://oauth2.googleapis.com/token"
    assert claims["scope"] == "https://www.googleapis.com/auth/cloud-platform"
    assert claims["iat"] == 1_700_000_000
    assert claims["exp"] == 1_700_000_000 + 3600


@pytest.mark.asyncio
async def test_acquire_token_exchanges_signed_assertion(vertex_config, rsa_public_pem):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3599})

    provider = ServiceAccountCredentialProvider(
        vertex_config, transport=httpx.MockTransport(handler)
    )

    token = await provider.acquire_token()

    assert token == "ya29.token"
    assert captured["url"] == vertex_config.token_uri
    assert captured["form"]["grant_type"] == [JWT_BEARER_GRANT]
    claims = decode_assertion(
        captured["form"]["assertion"][0], rsa_public_pem, vertex_config.token_uri
    )
    assert claims["exp"] - claims["iat"] == 3600


@pytest.mark.asyncio
async def test_every_call_fetches_a_fresh_token(vertex_config, fake_vertex, vertex_transport):
    provider = ServiceAccountCredentialProvider(vertex_config, transport=vertex_transport)

    await provider.acquire_token()
    await provider.acquire_token()

    assert len(fake_vertex.requests_to("/token")) == 2


@pytest.mark.asyncio
async def test_rejected_assertion_returns_none(vertex_config, fake_vertex, vertex_transport):
    fake_vertex.token_status = 400
    provider = ServiceAccountCredentialProvider(vertex_config, transport=vertex_transport)

    assert await provider.acquire_token() is None


@pytest.mark.asyncio
async def test_network_error_returns_none(vertex_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = ServiceAccountCredentialProvider(
        vertex_config, transport=httpx.MockTransport(handler)
    )

    assert await provider.acquire_token() is None


@pytest.mark.asyncio
async def test_missing_access_token_returns_none(vertex_config):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"token_type": "x"}))
    provider = ServiceAccountCredentialProvider(vertex_config, transport=transport)

    assert await provider.acquire_token() is None


@pytest.mark.asyncio
async def test_non_json_token_response_returns_none(vertex_config):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
    provider = ServiceAccountCredentialProvider(vertex_config, transport=transport)

    assert await provider.acquire_token() is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw_service_account",
    [
        "not json at all",
        json.dumps({"private_key": "irrelevant"}),
        json.dumps({"client_email": "a@b.c", "private_key": "-----BEGIN NOTHING-----"}),
    ],
    ids=["unparseable", "missing-email", "bad-key"],
)
async def test_malformed_service_account_returns_none(
    raw_service_account, fake_vertex, vertex_transport
):
    config = VertexConfig(project_id="test-project", service_account_json=raw_service_account)
    provider = ServiceAccountCredentialProvider(config, transport=vertex_transport)

    assert await provider.acquire_token() is None
    assert fake_vertex.requests == []
