import asyncio
import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tutor_scheduler.auth import google_credentials
from tutor_scheduler.auth.google_credentials import (
    GOOGLE_TOKEN_URL,
    JWT_BEARER_GRANT,
    GoogleAuthError,
    RefreshTokenCredentials,
    ServiceAccountCredentials,
    load_credentials,
)
from tutor_scheduler.core import config


def token_handler(requests: list, status_code: int, payload: dict):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=payload)

    return handler


def fetch_tokens(credentials, handler, times: int = 1) -> list[str]:
    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return [await credentials.get_access_token(client) for _ in range(times)]

    return asyncio.run(runner())


def form_data(request: httpx.Request) -> dict:
    return dict(httpx.QueryParams(request.content.decode()))


@pytest.fixture(scope='module')
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def test_refresh_token_is_exchanged_once_and_cached() -> None:
    requests = []
    credentials = RefreshTokenCredentials('client-id', 'client-secret', 'refresh-token')
    handler = token_handler(requests, 200, {'access_token': 'ya29.token', 'expires_in': 3599})

    tokens = fetch_tokens(credentials, handler, times=2)

    assert tokens == ['ya29.token', 'ya29.token']
    assert len(requests) == 1
    assert str(requests[0].url) == GOOGLE_TOKEN_URL
    assert form_data(requests[0]) == {
        'client_id': 'client-id',
        'client_secret': 'client-secret',
        'refresh_token': 'refresh-token',
        'grant_type': 'refresh_token',
    }


def test_token_close_to_expiry_is_refreshed() -> None:
    requests = []
    credentials = RefreshTokenCredentials('client-id', 'client-secret', 'refresh-token')
    handler = token_handler(requests, 200, {'access_token': 'short-lived', 'expires_in': 60})

    fetch_tokens(credentials, handler, times=2)

    assert len(requests) == 2


@pytest.mark.parametrize(
    ('status_code', 'payload'),
    [
        (400, {'error': 'invalid_grant'}),
        (200, {'token_type': 'Bearer'}),
    ],
)
def test_token_endpoint_failure_raises_auth_error(status_code: int, payload: dict) -> None:
    credentials = RefreshTokenCredentials('client-id', 'client-secret', 'revoked')

    with pytest.raises(GoogleAuthError):
        fetch_tokens(credentials, token_handler([], status_code, payload))


def test_service_account_assertion_is_signed_for_the_token_endpoint(rsa_private_key) -> None:
    private_pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    credentials = ServiceAccountCredentials({
        'client_email': 'scheduler@project.iam.gserviceaccount.com',
        'private_key': private_pem,
        'private_key_id': 'key-1',
    })

    assertion = credentials.build_assertion()
    claims = jwt.decode(assertion, public_pem, algorithms=['RS256'], audience=GOOGLE_TOKEN_URL)

    assert jwt.get_unverified_header(assertion)['kid'] == 'key-1'
    assert claims['iss'] == 'scheduler@project.iam.gserviceaccount.com'
    assert claims['scope'] == google_credentials.CALENDAR_SCOPE
    assert claims['exp'] - claims['iat'] == 3600

    requests = []
    handler = token_handler(requests, 200, {'access_token': 'sa-token', 'expires_in': 3600})
    assert fetch_tokens(credentials, handler) == ['sa-token']
    assert form_data(requests[0])['grant_type'] == JWT_BEARER_GRANT


def test_load_credentials_prefers_refresh_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_REFRESH_TOKEN', 'refresh-token')
    monkeypatch.setattr(config, 'GOOGLE_SERVICE_ACCOUNT_KEY', json.dumps({'client_email': 'a', 'private_key': 'b'}))

    assert isinstance(load_credentials(), RefreshTokenCredentials)


def test_load_credentials_reads_service_account_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_REFRESH_TOKEN', '')
    monkeypatch.setattr(
        config,
        'GOOGLE_SERVICE_ACCOUNT_KEY',
        json.dumps({'client_email': 'scheduler@project.iam.gserviceaccount.com', 'private_key': 'pem'}),
    )

    credentials = load_credentials()

    assert isinstance(credentials, ServiceAccountCredentials)
    assert credentials.client_email == 'scheduler@project.iam.gserviceaccount.com'


def test_load_credentials_without_configuration_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_REFRESH_TOKEN', '')
    monkeypatch.setattr(config, 'GOOGLE_SERVICE_ACCOUNT_KEY', '')

    with pytest.raises(GoogleAuthError):
        load_credentials()
