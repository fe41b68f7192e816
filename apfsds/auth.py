"""Client authentication: HMAC-checked requests and signed one-time tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
import struct
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature as _BadSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

log = logging.getLogger(__name__)

SIGNATURE_LEN = 64
NONCE_LEN = 32
# user_id, nonce, issued_at, valid_until
_TOKEN_PAYLOAD = struct.Struct("<Q32sQQ")
_USER_ID = re.compile(r"\+?[0-9]+")


class AuthError(Exception):
    """Base class of authentication failures."""


class InvalidTimestamp(AuthError):
    def __init__(self, drift: int) -> None:
        super().__init__(f"Invalid timestamp: drift {drift}ms")
        self.drift = drift


class NonceReused(AuthError):
    def __init__(self) -> None:
        super().__init__("Nonce reused (replay attack)")


class InvalidHmac(AuthError):
    def __init__(self) -> None:
        super().__init__("Invalid HMAC signature")


class TokenExpired(AuthError):
    def __init__(self) -> None:
        super().__init__("Token expired")


class TokenAlreadyUsed(AuthError):
    def __init__(self) -> None:
        super().__init__("Token already used")


class InvalidSignature(AuthError):
    def __init__(self) -> None:
        super().__init__("Invalid signature")


@dataclass(frozen=True)
class AuthRequest:
    """An authentication request as sent by a client."""

    timestamp: int
    nonce: bytes
    hmac_base: bytes
    hmac_signature: bytes


def compute_hmac(secret: bytes, base: bytes, timestamp: int) -> bytes:
    """HMAC-SHA256 over ``base`` followed by the timestamp as a little-endian u64."""
    message = bytes(base) + struct.pack("<Q", timestamp)
    return hmac.new(bytes(secret), message, hashlib.sha256).digest()


class ReplayCache:
    """Remembers keys for a time-to-live so that each is accepted only once."""

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._expiry: dict[bytes, float] = {}
        self._lock = threading.Lock()

    def check_and_insert(self, key: bytes) -> bool:
        """Return True and remember ``key`` if it is new, False if it was seen within the TTL."""
        key = bytes(key)
        now = self._clock()
        with self._lock:
            expires = self._expiry.get(key)
            if expires is not None and now < expires:
                return False
            self._expiry[key] = now + self.ttl
            return True

    def cleanup(self) -> None:
        """Forget keys whose TTL has run out."""
        now = self._clock()
        with self._lock:
            self._expiry = {k: exp for k, exp in self._expiry.items() if now < exp}

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiry)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _extract_user_id(hmac_base: bytes) -> int:
    """The user id is the first ':'-separated field of the HMAC base."""
    try:
        text = bytes(hmac_base).decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidHmac() from None
    first = text.split(":", 1)[0]
    if not _USER_ID.fullmatch(first):
        raise InvalidHmac()
    user_id = int(first)
    if user_id >= 1 << 64:
        raise InvalidHmac()
    return user_id


class Authenticator:
    """Verifies authentication requests and issues and consumes one-time tokens."""

    def __init__(
        self,
        server_sk: bytes,
        hmac_secret: bytes,
        token_ttl_secs: int,
        *,
        clock: Callable[[], int] = _now_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._key = Ed25519PrivateKey.from_private_bytes(bytes(server_sk))
        self._hmac_secret = bytes(hmac_secret)
        self._clock = clock
        self.nonce_cache = ReplayCache(120.0, clock=monotonic)
        self.token_cache = ReplayCache(float(token_ttl_secs + 60), clock=monotonic)
        self.max_drift_ms = 30_000
        self.token_ttl_ms = token_ttl_secs * 1000

    def public_key(self) -> bytes:
        return self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def verify(self, auth: AuthRequest) -> int:
        """Check timestamp, nonce and HMAC of a request; return the user id."""
        drift = self._clock() - auth.timestamp
        if abs(drift) > self.max_drift_ms:
            raise InvalidTimestamp(drift)

        if not self.nonce_cache.check_and_insert(auth.nonce):
            raise NonceReused()

        expected = compute_hmac(self._hmac_secret, auth.hmac_base, auth.timestamp)
        if not hmac.compare_digest(expected, bytes(auth.hmac_signature)):
            raise InvalidHmac()

        user_id = _extract_user_id(auth.hmac_base)
        log.debug("Authenticated user %d", user_id)
        return user_id

    def generate_token(self, user_id: int, nonce: bytes) -> bytes:
        """Issue a signed, base64-encoded one-time token for ``user_id``."""
        nonce = bytes(nonce)
        if len(nonce) != NONCE_LEN:
            raise ValueError(f"nonce must be {NONCE_LEN} bytes")
        now = self._clock()
        payload = _TOKEN_PAYLOAD.pack(user_id, nonce, now, now + self.token_ttl_ms)
        signature = self._key.sign(payload)
        return base64.b64encode(payload + signature)

    def verify_and_consume_token(self, token: bytes | str) -> int:
        """Check a token's signature and expiry, mark it used, and return its user id."""
        try:
            decoded = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidSignature() from None

        if len(decoded) < SIGNATURE_LEN:
            raise InvalidSignature()

        payload, signature = decoded[:-SIGNATURE_LEN], decoded[-SIGNATURE_LEN:]
        try:
            Ed25519PublicKey.from_public_bytes(self.public_key()).verify(signature, payload)
        except _BadSignature:
            raise InvalidSignature() from None

        if len(payload) != _TOKEN_PAYLOAD.size:
            raise AuthError(f"Crypto error: token payload of {len(payload)} bytes")
        user_id, nonce, _issued_at, valid_until = _TOKEN_PAYLOAD.unpack(payload)

        if self._clock() > valid_until:
            raise TokenExpired()

        if not self.token_cache.check_and_insert(nonce[:16]):
            raise TokenAlreadyUsed()

        return user_id

    def cleanup(self) -> None:
        self.nonce_cache.cleanup()
        self.token_cache.cleanup()