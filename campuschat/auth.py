"""Credential hashing and bearer token verification.

Tokens are compact HS256 JWTs carrying the identity in ``sub``. Verification
is stateless: a shared secret plus the ``exp`` claim.
"""
import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Optional

from .errors import InvalidToken, Unauthorized

PBKDF2_ROUNDS = 200_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    if salt is None:
        salt = secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt}${dk.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, _, salt, _ = stored.split("$", 3)
    except (AttributeError, ValueError):
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64urldecode(data: str) -> bytes:
    pad = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + pad).encode("ascii"))


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, value = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer" or not value:
        return None
    return value


class SessionGate:
    """Issues and verifies bearer tokens for REST calls and WebSocket connects."""

    def __init__(self, secret: str, ttl_seconds: int = 7 * 24 * 3600, now=time.time):
        self._secret = secret.encode()
        self.ttl_seconds = ttl_seconds
        self._now = now

    def _sign(self, msg: bytes) -> str:
        return b64url(hmac.new(self._secret, msg, hashlib.sha256).digest())

    def issue(self, identity: str) -> str:
        now = int(self._now())
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {"sub": identity, "iat": now, "exp": now + self.ttl_seconds}
        header_b64 = b64url(json.dumps(header, separators=(",", ":")).encode())
        payload_b64 = b64url(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_b64}.{payload_b64}"
        return f"{signing_input}.{self._sign(signing_input.encode('ascii'))}"

    def authenticate(self, credential: Optional[str]) -> str:
        """Return the identity carried by ``credential``.

        Raises ``Unauthorized`` when no credential was supplied and
        ``InvalidToken`` when it is malformed, forged or expired.
        """
        if not credential:
            raise Unauthorized("Missing token")
        try:
            header_b64, payload_b64, sig_b64 = credential.split(".")
        except ValueError:
            raise InvalidToken("Malformed token")

        expected = self._sign(f"{header_b64}.{payload_b64}".encode("ascii", "replace"))
        if not hmac.compare_digest(expected.encode(), sig_b64.encode("utf-8", "replace")):
            raise InvalidToken("Bad signature")

        try:
            header = json.loads(b64urldecode(header_b64))
            payload = json.loads(b64urldecode(payload_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidToken("Malformed token")
        if not isinstance(header, dict) or header.get("alg") != "HS256" or not isinstance(payload, dict):
            raise InvalidToken("Malformed token")

        try:
            expires = int(payload.get("exp", 0))
        except (TypeError, ValueError):
            raise InvalidToken("Malformed token")
        if expires < int(self._now()):
            raise InvalidToken("Token expired")

        identity = payload.get("sub")
        if not isinstance(identity, str) or not identity:
            raise InvalidToken("Token has no identity")
        return identity
