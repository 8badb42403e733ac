from datetime import datetime, timedelta, timezone
import threading

import pytest

from resilient_ai.credentials import Credential, CredentialManager, IssuedToken, OwnerIdentity
from resilient_ai.llm.types import CredentialAcquisitionFailed

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
OWNER = OwnerIdentity(username="alice", device_id="laptop-1", source_ip="10.0.0.5")


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class CountingIssuer:
    def __init__(self, validity=timedelta(hours=1)):
        self.calls = 0
        self.validity = validity

    def issue(self, identity, now):
        self.calls += 1
        expires_at = now + self.validity if self.validity is not None else None
        return IssuedToken(token=f"token-{self.calls}", expires_at=expires_at, owner=identity)


class FailingIssuer:
    def issue(self, identity, now):
        raise ConnectionError("token service unreachable")


def _manager(issuer, clock=None):
    return CredentialManager(issuer=issuer, identity_provider=lambda: OWNER, clock=clock or FakeClock())


def test_second_call_returns_cached_token():
    issuer = CountingIssuer()
    manager = _manager(issuer)

    first = manager.get_credential()
    second = manager.get_credential()

    assert first.token == second.token
    assert first is second
    assert issuer.calls == 1


def test_expiry_triggers_fresh_acquisition():
    issuer = CountingIssuer(validity=timedelta(hours=1))
    clock = FakeClock()
    manager = _manager(issuer, clock)

    first = manager.get_credential()
    clock.advance(hours=1)
    second = manager.get_credential()

    assert second.token != first.token
    assert issuer.calls == 2
    assert second.issued_at == clock.now


def test_force_refresh_replaces_valid_credential():
    issuer = CountingIssuer()
    manager = _manager(issuer)

    first = manager.get_credential()
    refreshed = manager.get_credential(force_refresh=True)

    assert refreshed.token != first.token
    assert manager.cached is refreshed
    # The old value is untouched for anyone still holding it.
    assert first.token == "token-1"


def test_missing_expiry_uses_default_window():
    issuer = CountingIssuer(validity=None)
    clock = FakeClock()
    manager = CredentialManager(
        issuer=issuer,
        identity_provider=lambda: OWNER,
        clock=clock,
        default_validity=timedelta(hours=24),
    )

    credential = manager.get_credential()

    assert credential.expires_at == START + timedelta(hours=24)
    assert credential.owner == OWNER


def test_acquisition_failure_is_explicit():
    manager = _manager(FailingIssuer())

    with pytest.raises(CredentialAcquisitionFailed) as excinfo:
        manager.get_credential()

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert manager.cached is None


def test_invalidate_drops_cache():
    issuer = CountingIssuer()
    manager = _manager(issuer)

    manager.get_credential()
    manager.invalidate()
    manager.get_credential()

    assert issuer.calls == 2


def test_credential_rejects_expiry_before_issue():
    with pytest.raises(ValueError):
        Credential(token="t", issued_at=START, expires_at=START, owner=OWNER)


def test_concurrent_callers_share_one_acquisition():
    issuer = CountingIssuer()
    manager = _manager(issuer)
    tokens = []

    def worker():
        tokens.append(manager.get_credential().token)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(tokens) == {"token-1"}
    assert issuer.calls == 1
