"""Bearer credential acquisition and caching for the hosted proxy."""

from __future__ import annotations

import getpass
import logging
import socket
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

import jwt
import requests

from .llm.types import CredentialAcquisitionFailed
from .utils import mask_secret, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class OwnerIdentity:
    username: str
    device_id: str
    source_ip: str


@dataclass(frozen=True)
class Credential:
    token: str
    issued_at: datetime
    expires_at: datetime
    owner: OwnerIdentity

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("Credential expiry must be after its issue time")

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def masked(self) -> str:
        return mask_secret(self.token)


@dataclass(frozen=True)
class IssuedToken:
    """What an issuer hands back before the manager stamps timestamps on it."""

    token: str
    expires_at: Optional[datetime]
    owner: OwnerIdentity


class TokenIssuer(Protocol):
    def issue(self, identity: OwnerIdentity, now: datetime) -> IssuedToken:
        ...


def detect_source_ip(echo_url: Optional[str], timeout: float = 5) -> str:
    if echo_url:
        try:
            res = requests.get(echo_url, timeout=timeout)
            if res.status_code < 400 and res.text.strip():
                return res.text.strip()
        except requests.RequestException as exc:
            logger.warning("Public IP lookup via %s failed: %s", echo_url, exc)
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "unknown"


def discover_identity(ip_echo_url: Optional[str] = None) -> OwnerIdentity:
    return OwnerIdentity(
        username=getpass.getuser(),
        device_id=socket.gethostname(),
        source_ip=detect_source_ip(ip_echo_url),
    )


class LocalTokenIssuer:
    """Derives a signed token from the caller's identity without a network call."""

    def __init__(self, secret: str, validity: timedelta = timedelta(hours=24), issuer: str = "resilient-ai") -> None:
        if not secret:
            raise ValueError("LocalTokenIssuer needs a signing secret")
        self.secret = secret
        self.validity = validity
        self.issuer = issuer

    def issue(self, identity: OwnerIdentity, now: datetime) -> IssuedToken:
        expires_at = now + self.validity
        claims = {
            "iss": self.issuer,
            "sub": identity.username,
            "device": identity.device_id,
            "ip": identity.source_ip,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(claims, self.secret, algorithm="HS256")
        return IssuedToken(token=token, expires_at=expires_at, owner=identity)


class RemoteTokenIssuer:
    """Requests a token from the issuing service.

    The reply must match a fixed schema::

        {"token": str, "expiresAt": str, "clientUsername": str,
         "clientDevice": str, "clientIp": str}

    The payload is read as data. Nothing in it is ever evaluated.
    """

    def __init__(self, url: str, timeout: float = 30, api_key: Optional[str] = None) -> None:
        if not url:
            raise ValueError("RemoteTokenIssuer needs a URL")
        self.url = url
        self.timeout = timeout
        self.api_key = api_key

    def issue(self, identity: OwnerIdentity, now: datetime) -> IssuedToken:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-functions-key"] = self.api_key
        res = requests.post(
            self.url,
            json={
                "Username": identity.username,
                "ComputerName": identity.device_id,
                "IPAddress": identity.source_ip,
            },
            headers=headers,
            timeout=self.timeout,
        )
        if res.status_code >= 400:
            body = (res.text or "").strip()
            raise RuntimeError(f"Token service returned HTTP {res.status_code}: {body[:400]}")
        return parse_issuer_response(res.json(), identity)


def parse_issuer_response(data: Any, fallback_owner: OwnerIdentity) -> IssuedToken:
    if not isinstance(data, dict):
        raise ValueError("Token service response is not a JSON object")
    token = data.get("token")
    if not isinstance(token, str) or not token.strip():
        raise ValueError("Token service response has no token")

    owner = OwnerIdentity(
        username=str(data.get("clientUsername") or fallback_owner.username),
        device_id=str(data.get("clientDevice") or fallback_owner.device_id),
        source_ip=str(data.get("clientIp") or fallback_owner.source_ip),
    )
    expires_at = parse_timestamp(data.get("expiresAt"))
    if expires_at is None and data.get("expiresAt") is not None:
        logger.warning("Unparsable expiresAt %r from token service; using default validity", data.get("expiresAt"))
    return IssuedToken(token=token.strip(), expires_at=expires_at, owner=owner)


class CredentialManager:
    def __init__(
        self,
        issuer: TokenIssuer,
        identity_provider: Optional[Callable[[], OwnerIdentity]] = None,
        clock: Optional[Clock] = None,
        default_validity: timedelta = timedelta(hours=24),
    ) -> None:
        self.issuer = issuer
        self.identity_provider = identity_provider or discover_identity
        self.clock = clock or utc_now
        self.default_validity = default_validity
        self._cached: Optional[Credential] = None
        self._lock = threading.Lock()

    @property
    def cached(self) -> Optional[Credential]:
        return self._cached

    def get_credential(self, force_refresh: bool = False) -> Credential:
        current = self._cached
        if not force_refresh and current is not None and current.is_valid(self.clock()):
            return current

        with self._lock:
            # Another thread may have refreshed while we waited.
            current = self._cached
            if not force_refresh and current is not None and current.is_valid(self.clock()):
                return current
            credential = self._acquire()
            self._cached = credential
            return credential

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def _acquire(self) -> Credential:
        now = self.clock()
        try:
            identity = self.identity_provider()
            issued = self.issuer.issue(identity, now)
        except Exception as exc:
            logger.error("Credential acquisition failed: %s", exc)
            raise CredentialAcquisitionFailed(f"Could not acquire credential: {exc}") from exc

        expires_at = issued.expires_at
        if expires_at is None or expires_at <= now:
            expires_at = now + self.default_validity
        credential = Credential(token=issued.token, issued_at=now, expires_at=expires_at, owner=issued.owner)
        logger.info(
            "Acquired credential for %s@%s valid until %s",
            credential.owner.username,
            credential.owner.device_id,
            credential.expires_at.isoformat(),
        )
        return credential


def build_issuer(
    settings: Dict[str, Any],
    secret: Optional[str] = None,
    issuer_url: Optional[str] = None,
    issuer_key: Optional[str] = None,
) -> TokenIssuer:
    cred_cfg = settings.get("credentials", {})
    validity = timedelta(hours=float(cred_cfg.get("default_validity_hours", 24)))
    mode = str(cred_cfg.get("issuer", "remote"))
    if mode == "local":
        if not secret:
            raise CredentialAcquisitionFailed("Local token issuer selected but no signing secret is set")
        return LocalTokenIssuer(secret=secret, validity=validity)
    if not issuer_url:
        raise CredentialAcquisitionFailed("Remote token issuer selected but no issuer URL is set")
    return RemoteTokenIssuer(
        url=issuer_url,
        timeout=float(cred_cfg.get("issuer_timeout_seconds", 30)),
        api_key=issuer_key,
    )
