from datetime import datetime, timedelta, timezone

import jwt
import pytest

from resilient_ai.config import DEFAULT_SETTINGS
from resilient_ai.credentials import (
    CredentialManager,
    LocalTokenIssuer,
    OwnerIdentity,
    RemoteTokenIssuer,
    build_issuer,
    parse_issuer_response,
)
from resilient_ai.llm.types import CredentialAcquisitionFailed

NOW = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
OWNER = OwnerIdentity(username="bob", device_id="ws-42", source_ip="203.0.113.7")


class StaticIssuer:
    def __init__(self, issued):
        self.issued = issued

    def issue(self, identity, now):
        return self.issued


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_local_issuer_binds_identity_into_signed_token():
    issuer = LocalTokenIssuer(secret="s3cret", validity=timedelta(hours=2))

    issued = issuer.issue(OWNER, NOW)
    claims = jwt.decode(issued.token, "s3cret", algorithms=["HS256"], options={"verify_exp": False})

    assert claims["sub"] == "bob"
    assert claims["device"] == "ws-42"
    assert claims["ip"] == "203.0.113.7"
    assert issued.expires_at == NOW + timedelta(hours=2)
    assert claims["exp"] == int((NOW + timedelta(hours=2)).timestamp())


def test_local_issuer_requires_secret():
    with pytest.raises(ValueError):
        LocalTokenIssuer(secret="")


def test_remote_issuer_parses_typed_schema(monkeypatch):
    def fake_post(url, json, headers, timeout):
        assert url == "https://issuer.example/api/token"
        assert json["Username"] == "bob"
        assert headers["x-functions-key"] == "fn-key"
        return DummyResponse(
            payload={
                "token": "abc.def.ghi",
                "expiresAt": "2026-03-02T08:30:00Z",
                "clientUsername": "bob",
                "clientDevice": "ws-42",
                "clientIp": "198.51.100.1",
            }
        )

    monkeypatch.setattr("resilient_ai.credentials.requests.post", fake_post)

    issued = RemoteTokenIssuer("https://issuer.example/api/token", api_key="fn-key").issue(OWNER, NOW)

    assert issued.token == "abc.def.ghi"
    assert issued.expires_at == datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)
    assert issued.owner.source_ip == "198.51.100.1"


def test_unparsable_expiry_falls_back_to_default_window():
    issued = parse_issuer_response({"token": "tok", "expiresAt": "next tuesday"}, OWNER)
    assert issued.expires_at is None

    manager = CredentialManager(
        issuer=StaticIssuer(issued),
        identity_provider=lambda: OWNER,
        clock=lambda: NOW,
        default_validity=timedelta(hours=24),
    )
    credential = manager.get_credential()

    assert credential.expires_at == NOW + timedelta(hours=24)
    assert credential.owner == OWNER


def test_response_without_token_is_rejected():
    with pytest.raises(ValueError):
        parse_issuer_response({"expiresAt": "2026-03-02T08:30:00Z"}, OWNER)


def test_remote_http_error_surfaces_as_acquisition_failure(monkeypatch):
    monkeypatch.setattr(
        "resilient_ai.credentials.requests.post",
        lambda url, json, headers, timeout: DummyResponse(status_code=500, text="boom"),
    )
    manager = CredentialManager(
        issuer=RemoteTokenIssuer("https://issuer.example/api/token"),
        identity_provider=lambda: OWNER,
        clock=lambda: NOW,
    )

    with pytest.raises(CredentialAcquisitionFailed, match="HTTP 500"):
        manager.get_credential()


def test_build_issuer_modes():
    local_settings = {**DEFAULT_SETTINGS, "credentials": {"issuer": "local"}}
    assert isinstance(build_issuer(local_settings, secret="x"), LocalTokenIssuer)
    assert isinstance(build_issuer(DEFAULT_SETTINGS, issuer_url="https://issuer.example"), RemoteTokenIssuer)

    with pytest.raises(CredentialAcquisitionFailed):
        build_issuer(local_settings)
    with pytest.raises(CredentialAcquisitionFailed):
        build_issuer(DEFAULT_SETTINGS)
